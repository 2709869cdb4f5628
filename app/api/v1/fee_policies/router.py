"""Fee policies router: installment plans and student discounts."""

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
    InstallmentPlanCreate,
    InstallmentPlanResponse,
    StudentDiscountCreate,
    StudentDiscountResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fee-policies"])

# Roles allowed to manage platform-wide (global) installment plans
PLATFORM_ROLES = ("SUPER_ADMIN", "PLATFORM_ADMIN")


# --- Installment Plan ---
@router.post(
    "/installment-plans",
    response_model=InstallmentPlanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_installment_plan(
    payload: InstallmentPlanCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> InstallmentPlanResponse:
    try:
        return await service.create_installment_plan(
            db,
            current_user.institution_id,
            payload,
            created_by=current_user.id,
            allow_global=current_user.role in PLATFORM_ROLES,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/installment-plans",
    response_model=List[InstallmentPlanResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_installment_plans(
    include_global: bool = Query(True),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[InstallmentPlanResponse]:
    return await service.list_installment_plans(
        db, current_user.institution_id, include_global=include_global, active_only=active_only
    )


@router.patch(
    "/installment-plans/{plan_id}/deactivate",
    response_model=InstallmentPlanResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def deactivate_installment_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> InstallmentPlanResponse:
    try:
        result = await service.deactivate_installment_plan(
            db,
            current_user.institution_id,
            plan_id,
            changed_by=current_user.id,
            allow_global=current_user.role in PLATFORM_ROLES,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Installment plan not found")
    return result


# --- Student Discount ---
@router.post(
    "/discounts",
    response_model=StudentDiscountResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_student_discount(
    payload: StudentDiscountCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentDiscountResponse:
    try:
        return await service.create_student_discount(
            db, current_user.institution_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/discounts",
    response_model=List[StudentDiscountResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_student_discounts(
    student_id: Optional[UUID] = Query(None),
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[StudentDiscountResponse]:
    return await service.list_student_discounts(
        db, current_user.institution_id, student_id=student_id, active_only=active_only
    )


@router.patch(
    "/discounts/{discount_id}/deactivate",
    response_model=StudentDiscountResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def deactivate_student_discount(
    discount_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentDiscountResponse:
    result = await service.deactivate_student_discount(
        db, current_user.institution_id, discount_id, changed_by=current_user.id
    )
    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Discount not found")
    return result
