"""Installment plan and student discount schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import DiscountType


# --- Installment Plan ---
class InstallmentPlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    bill_percent: int = Field(..., ge=1, le=100, description="Share of the month's net charge billed now")
    is_default: bool = False
    is_global: bool = Field(False, description="Platform-wide plan used when an institution has none")


class InstallmentPlanResponse(BaseModel):
    id: UUID
    institution_id: Optional[UUID] = None
    name: str
    bill_percent: int
    is_default: bool
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Student Discount ---
class StudentDiscountCreate(BaseModel):
    student_id: UUID
    fee_head_id: Optional[UUID] = Field(None, description="Empty for a discount on the whole voucher")
    discount_type: DiscountType
    value: Decimal = Field(..., ge=0)
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _percentage_range(self):
        if self.discount_type == DiscountType.percentage and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class StudentDiscountResponse(BaseModel):
    id: UUID
    institution_id: UUID
    student_id: UUID
    fee_head_id: Optional[UUID] = None
    discount_type: DiscountType
    value: Decimal
    reason: Optional[str] = None
    is_active: bool
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
