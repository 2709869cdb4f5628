"""Suspense (unidentified payment) schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.v1.vouchers.schemas import FeeVoucherResponse, PaymentResponse
from app.core.enums import PaymentMethod, SuspenseStatus


class SuspenseEntryCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    transaction_reference: Optional[str] = Field(None, max_length=100)
    bank_name: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = None


class SuspenseEntryResponse(BaseModel):
    id: UUID
    institution_id: UUID
    amount: Decimal
    payment_date: datetime
    payment_method: str
    transaction_reference: Optional[str] = None
    bank_name: Optional[str] = None
    remarks: Optional[str] = None
    status: SuspenseStatus
    split_from_id: Optional[UUID] = None
    reconciled_student_id: Optional[UUID] = None
    reconciled_payment_id: Optional[UUID] = None
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SuspenseReconcileRequest(BaseModel):
    student_id: UUID
    remarks: Optional[str] = None


class SuspenseReconcileResult(BaseModel):
    """balance_entry holds the part of the deposit that exceeded the voucher's remaining amount."""

    entry: SuspenseEntryResponse
    balance_entry: Optional[SuspenseEntryResponse] = None
    payment: PaymentResponse
    voucher: FeeVoucherResponse
    message: str
