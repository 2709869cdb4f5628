"""Fees router: fee heads and class fee structures."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    ClassFeeStructureByClassResponse,
    ClassFeeStructureCreate,
    ClassFeeStructureResponse,
    FeeHeadCreate,
    FeeHeadResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# --- Fee Head ---
@router.post(
    "/heads",
    response_model=FeeHeadResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_fee_head(
    payload: FeeHeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeHeadResponse:
    try:
        return await service.create_fee_head(db, current_user.institution_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/heads",
    response_model=List[FeeHeadResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_fee_heads(
    active_only: bool = Query(True, description="Return only active fee heads by default"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeHeadResponse]:
    return await service.list_fee_heads(db, current_user.institution_id, active_only=active_only)


# --- Class Fee Structure ---
@router.post(
    "/structures",
    response_model=ClassFeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_class_fee_structure(
    payload: ClassFeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ClassFeeStructureResponse:
    try:
        return await service.create_class_fee_structure(
            db, current_user.institution_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/structures",
    response_model=List[ClassFeeStructureByClassResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_class_fee_structures(
    academic_year_id: UUID,
    class_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ClassFeeStructureByClassResponse]:
    return await service.list_class_fee_structures(
        db, current_user.institution_id, academic_year_id, class_id=class_id
    )
