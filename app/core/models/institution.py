import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Institution(Base):
    """
    Institution (school campus) in the multi-tenant platform.

    - id: Internal primary key. Used for all FKs and every fee operation.
    - organization_code: Public human-readable identifier (e.g. SCH-A3K9).
      Prefixes voucher numbers; never used as a foreign key.
    """

    __tablename__ = "institutions"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_code = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    timezone = Column(String(100), nullable=False, default="Asia/Karachi")
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="institution", cascade="all, delete-orphan")
