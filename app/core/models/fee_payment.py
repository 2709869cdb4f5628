"""Fee payment: one receipt against one voucher. Reversal flips status; rows are never deleted."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class FeePayment(Base):
    """Payment against a fee voucher. Several partial payments per voucher are expected."""

    __tablename__ = "fee_payments"
    __table_args__ = (
        UniqueConstraint("institution_id", "receipt_number", name="uq_fee_payment_receipt_number"),
        CheckConstraint("amount > 0", name="chk_fee_payment_amount"),
        CheckConstraint("status IN ('completed','reversed')", name="chk_fee_payment_status"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="RESTRICT"), nullable=False, index=True)
    voucher_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.fee_vouchers.id", ondelete="SET NULL"),
        nullable=True,  # cleared when a voucher is deleted after its payments were reversed
        index=True,
    )
    voucher_number = Column(String(50), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="RESTRICT"), nullable=False)
    receipt_number = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(30), nullable=False)  # CASH, CHEQUE, BANK_TRANSFER, ONLINE, CARD, UPI, OTHER
    transaction_reference = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="completed")  # completed, reversed
    paid_at = Column(DateTime(timezone=True), nullable=False)
    collected_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)