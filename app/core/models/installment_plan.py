"""Installment plan: share of a month's net charge billed now; the rest is deferred to the next voucher."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class InstallmentPlan(Base):
    """
    Example: bill_percent=60 bills 60% now and carries 40% forward as arrears.
    institution_id NULL marks a global plan used when the institution has none.
    """

    __tablename__ = "installment_plans"
    __table_args__ = (
        UniqueConstraint("institution_id", "name", name="uq_installment_plan_institution_name"),
        CheckConstraint("bill_percent >= 1 AND bill_percent <= 100", name="chk_installment_plan_bill_percent"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.institutions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name = Column(String(100), nullable=False)
    bill_percent = Column(Integer, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
