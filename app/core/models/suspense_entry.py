"""Suspense entry: money received (usually a bank deposit) before anyone knows whose fee it is."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class SuspenseEntry(Base):
    """
    Unidentified receipt held until it is reconciled to a student's latest voucher.
    Reconciling more than the voucher's remaining amount splits the excess into a new
    unidentified entry pointing back at this one through split_from_id.
    """

    __tablename__ = "suspense_entries"
    __table_args__ = (
        # NULL references are not compared, so entries without one never clash
        UniqueConstraint("institution_id", "transaction_reference", name="uq_suspense_entry_reference"),
        CheckConstraint("amount > 0", name="chk_suspense_entry_amount"),
        CheckConstraint("status IN ('unidentified','reconciled','cancelled')", name="chk_suspense_entry_status"),
        Index("ix_suspense_entry_institution_status", "institution_id", "status"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    payment_method = Column(String(30), nullable=False, default="BANK_TRANSFER")
    transaction_reference = Column(String(100), nullable=True)
    bank_name = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="unidentified")
    split_from_id = Column(UUID(as_uuid=True), ForeignKey("school.suspense_entries.id", ondelete="SET NULL"), nullable=True)

    reconciled_student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="RESTRICT"), nullable=True)
    reconciled_payment_id = Column(
        UUID(as_uuid=True), ForeignKey("school.fee_payments.id", ondelete="RESTRICT"), nullable=True
    )
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
    reconciled_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
