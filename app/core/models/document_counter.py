"""Atomic per-(institution, year, type) sequence used for voucher and receipt numbers."""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class DocumentCounter(Base):
    __tablename__ = "document_counters"
    __table_args__ = (
        UniqueConstraint("institution_id", "year", "counter_type", name="uq_document_counter_key"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), ForeignKey("core.institutions.id", ondelete="CASCADE"), nullable=False)
    year = Column(Integer, nullable=False)
    counter_type = Column(String(10), nullable=False)  # VCH, RCP
    seq = Column(Integer, nullable=False, default=0)
