"""Fee head and class fee structure schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import FeeHeadAccountType, FeeHeadFrequency


# --- Fee Head ---
class FeeHeadCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    priority: int = Field(..., ge=1, description="Order of the head on vouchers")
    account_type: FeeHeadAccountType
    frequency: FeeHeadFrequency = FeeHeadFrequency.MONTHLY
    gl_account: Optional[str] = Field(None, max_length=50)


class FeeHeadResponse(BaseModel):
    id: UUID
    institution_id: UUID
    name: str
    priority: int
    account_type: FeeHeadAccountType
    frequency: FeeHeadFrequency
    gl_account: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# --- Class Fee Structure ---
class ClassFeeStructureCreate(BaseModel):
    academic_year_id: UUID
    class_id: UUID
    fee_head_id: UUID
    amount: Decimal = Field(..., ge=0)


class ClassFeeStructureResponse(BaseModel):
    id: UUID
    institution_id: UUID
    academic_year_id: UUID
    class_id: UUID
    fee_head_id: UUID
    amount: Decimal
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ClassFeeStructureItem(BaseModel):
    """Fee head row inside a class's fee structure (grouped read)."""

    id: UUID
    fee_head_id: UUID
    fee_head_name: str
    priority: int
    frequency: FeeHeadFrequency
    amount: Decimal
    is_active: bool


class ClassFeeStructureByClassResponse(BaseModel):
    academic_year_id: UUID
    class_id: UUID
    class_name: str
    items: List[ClassFeeStructureItem]
