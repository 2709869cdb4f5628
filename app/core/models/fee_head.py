"""Fee head master (Tuition, Transport, Exam, Paper Charges). Institution-scoped."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeHead(Base):
    """Named charge category. priority orders voucher items. Soft delete via is_active."""

    __tablename__ = "fee_heads"
    __table_args__ = (
        UniqueConstraint("institution_id", "priority", name="uq_fee_head_institution_priority"),
        CheckConstraint(
            "account_type IN ('LIABILITIES','INCOME','OTHER_INCOME')",
            name="chk_fee_head_account_type",
        ),
        CheckConstraint(
            "frequency IN ('MONTHLY','ONE_TIME','AD_HOC')",
            name="chk_fee_head_frequency",
        ),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    priority = Column(Integer, nullable=False)
    # Stored as strings; constrained by the check constraints above
    account_type = Column(String(20), nullable=False)
    frequency = Column(String(20), nullable=False, default="MONTHLY")
    gl_account = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    institution = relationship("Institution", backref="fee_heads")
