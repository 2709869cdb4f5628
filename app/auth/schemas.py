from typing import Dict
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    institution_id is the request-scoped institution every fee operation runs against.
    """

    id: UUID
    institution_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]]
