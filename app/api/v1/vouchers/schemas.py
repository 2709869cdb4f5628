"""Voucher, payment and report schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import PaymentMethod, PaymentStatus, VoucherStatus


# --- Generation ---
class _GenerationOptions(BaseModel):
    academic_year_id: UUID
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    due_date: Optional[date] = None
    due_day: Optional[int] = Field(None, ge=1, le=31, description="Used when due_date is not given")
    installment_plan_id: Optional[UUID] = Field(None, description="Overrides plan resolution")
    fee_head_ids: Optional[List[UUID]] = Field(
        None, description="Bill only these fee heads; AD_HOC heads are billed only when listed here"
    )


class VoucherGenerateRequest(_GenerationOptions):
    student_id: UUID


class VoucherBatchGenerateRequest(_GenerationOptions):
    student_ids: List[UUID] = Field(..., min_length=1)

    def for_student(self, student_id: UUID) -> VoucherGenerateRequest:
        return VoucherGenerateRequest(student_id=student_id, **self.model_dump(exclude={"student_ids"}))


class FeeVoucherItemResponse(BaseModel):
    fee_head_id: UUID
    position: int
    base_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal

    class Config:
        from_attributes = True


class FeeVoucherResponse(BaseModel):
    id: UUID
    institution_id: UUID
    student_id: UUID
    admission_id: Optional[UUID] = None
    academic_year_id: UUID
    class_id: UUID
    year: int
    month: int
    voucher_number: str
    generated_at: datetime
    due_date: Optional[date] = None
    installment_plan_id: Optional[UUID] = None
    bill_percent: int
    items: List[FeeVoucherItemResponse]
    current_month_amount: Decimal
    billed_amount: Decimal
    deferred_amount: Decimal
    arrears_brought_forward: Decimal
    total_due: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: VoucherStatus
    last_payment_date: Optional[datetime] = None
    created_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class BatchFailure(BaseModel):
    student_id: UUID
    error: str
    message: str


class BatchGenerateResponse(BaseModel):
    generated: List[FeeVoucherResponse]
    failed: List[BatchFailure]


# --- Payment ---
class PaymentCreate(BaseModel):
    # Validated by the service so a non-positive amount is reported as InvalidPaymentAmount
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    transaction_reference: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PaymentResponse(BaseModel):
    id: UUID
    institution_id: UUID
    voucher_id: Optional[UUID] = None
    voucher_number: str
    student_id: UUID
    receipt_number: str
    amount: Decimal
    payment_method: str
    transaction_reference: Optional[str] = None
    remarks: Optional[str] = None
    status: PaymentStatus
    paid_at: datetime
    collected_by: Optional[UUID] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentResult(BaseModel):
    payment: PaymentResponse
    voucher: FeeVoucherResponse


# --- Report ---
class OutstandingBalanceItem(BaseModel):
    """Per student: what the next voucher will bring forward from the latest one."""

    student_id: UUID
    student_name: Optional[str] = None
    voucher_id: UUID
    voucher_number: str
    year: int
    month: int
    total_due: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    deferred_amount: Decimal
    outstanding: Decimal
    status: VoucherStatus
