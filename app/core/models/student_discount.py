"""Student discount: persistent reduction applied to every future voucher until deactivated."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentDiscount(Base):
    """
    fee_head_id NULL -> applies to the voucher total (spread over items without a per-head discount).
    fee_head_id set  -> applies only to that fee head's item.
    Inactive rows are kept for audit and ignored by generation.
    """

    __tablename__ = "student_discounts"
    __table_args__ = (
        CheckConstraint("discount_type IN ('amount','percentage')", name="chk_student_discount_type"),
        CheckConstraint("value >= 0", name="chk_student_discount_value"),
        Index("ix_student_discount_lookup", "institution_id", "student_id", "is_active"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="CASCADE"), nullable=False)
    fee_head_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.fee_heads.id", ondelete="RESTRICT"),
        nullable=True,
    )
    discount_type = Column(String(20), nullable=False, default="amount")  # amount, percentage
    value = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fee_head = relationship("FeeHead")
    student = relationship("User", foreign_keys=[student_id])
