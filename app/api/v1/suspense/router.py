"""Suspense router: record, list and reconcile unidentified payments."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import SuspenseStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import SuspenseEntryCreate, SuspenseEntryResponse, SuspenseReconcileRequest, SuspenseReconcileResult
from . import service

router = APIRouter(prefix="/api/v1/suspense", tags=["suspense"])


@router.post(
    "",
    response_model=SuspenseEntryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def record_suspense_entry(
    payload: SuspenseEntryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> SuspenseEntryResponse:
    try:
        return await service.record_suspense_entry(
            db, current_user.institution_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[SuspenseEntryResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_suspense_entries(
    entry_status: Optional[SuspenseStatus] = Query(SuspenseStatus.unidentified, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[SuspenseEntryResponse]:
    return await service.list_suspense_entries(db, current_user.institution_id, entry_status)


@router.post(
    "/{entry_id}/reconcile",
    response_model=SuspenseReconcileResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def reconcile_suspense_entry(
    entry_id: UUID,
    payload: SuspenseReconcileRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> SuspenseReconcileResult:
    try:
        return await service.reconcile_suspense_entry(
            db,
            current_user.institution_id,
            entry_id,
            payload.student_id,
            remarks=payload.remarks,
            reconciled_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
