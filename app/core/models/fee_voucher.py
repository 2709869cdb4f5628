"""Fee voucher: one student's bill for one calendar month. Billed amounts are frozen at generation."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeVoucher(Base):
    """
    - current_month_amount: sum of items.final_amount (after persistent discounts)
    - billed_amount: portion billed now (installment plan)
    - deferred_amount: portion carried into the next voucher as arrears
    - arrears_brought_forward: previous voucher's remaining_amount + deferred_amount
    - total_due: billed_amount + arrears_brought_forward
    - paid_amount / remaining_amount / status / last_payment_date: the only mutable columns
    """

    __tablename__ = "fee_vouchers"
    __table_args__ = (
        UniqueConstraint("institution_id", "student_id", "year", "month", name="uq_fee_voucher_period"),
        UniqueConstraint("voucher_number", name="uq_fee_voucher_number"),
        CheckConstraint("month >= 1 AND month <= 12", name="chk_fee_voucher_month"),
        CheckConstraint("status IN ('generated','partial','paid')", name="chk_fee_voucher_status"),
        CheckConstraint("paid_amount >= 0 AND remaining_amount >= 0", name="chk_fee_voucher_payment_amounts"),
        Index("ix_fee_voucher_institution_period", "institution_id", "year", "month"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="RESTRICT"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="RESTRICT"), nullable=False, index=True)
    admission_id = Column(UUID(as_uuid=True), nullable=True)
    academic_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=False,
    )
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    voucher_number = Column(String(50), nullable=False)
    generated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    due_date = Column(Date, nullable=True)
    installment_plan_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.installment_plans.id", ondelete="RESTRICT"),
        nullable=True,
    )
    bill_percent = Column(Integer, nullable=False, default=100)  # percent actually applied

    current_month_amount = Column(Numeric(12, 2), nullable=False)
    billed_amount = Column(Numeric(12, 2), nullable=False)
    deferred_amount = Column(Numeric(12, 2), nullable=False)
    arrears_brought_forward = Column(Numeric(12, 2), nullable=False)
    total_due = Column(Numeric(12, 2), nullable=False)

    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="generated")
    last_payment_date = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship(
        "FeeVoucherItem",
        back_populates="voucher",
        cascade="all, delete-orphan",
        order_by="FeeVoucherItem.position",
        lazy="selectin",
    )
    installment_plan = relationship("InstallmentPlan")


class FeeVoucherItem(Base):
    """One billed fee head on a voucher. final_amount = base_amount - discount_amount, never negative."""

    __tablename__ = "fee_voucher_items"
    __table_args__ = (
        UniqueConstraint("voucher_id", "fee_head_id", name="uq_fee_voucher_item_head"),
        CheckConstraint(
            "discount_amount >= 0 AND final_amount >= 0 AND final_amount <= base_amount",
            name="chk_fee_voucher_item_amounts",
        ),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    voucher_id = Column(UUID(as_uuid=True), ForeignKey("school.fee_vouchers.id", ondelete="CASCADE"), nullable=False)
    fee_head_id = Column(UUID(as_uuid=True), ForeignKey("school.fee_heads.id", ondelete="RESTRICT"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    base_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)

    voucher = relationship("FeeVoucher", back_populates="items")
    fee_head = relationship("FeeHead")
