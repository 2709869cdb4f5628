"""
Fee audit logging. Call on every financial state change, inside the same transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import FeeAuditLog


def jsonable(value: Any) -> Any:
    """JSON-column form of an audit value; Decimals stay exact as strings."""
    return jsonable_encoder(value, custom_encoder={Decimal: str})


async def log_fee_audit(
    db: AsyncSession,
    institution_id: UUID,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID],
) -> None:
    """Append one fee audit entry. Caller must commit."""
    entry = FeeAuditLog(
        institution_id=institution_id,
        reference_table=reference_table,
        reference_id=reference_id,
        action_type=action_type,
        old_value=jsonable(old_value),
        new_value=jsonable(new_value),
        changed_by=changed_by,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
