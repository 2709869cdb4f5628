"""Installment plans and persistent student discounts: the policy inputs of voucher generation."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.audit_service import log_fee_audit
from app.core.exceptions import ServiceError
from app.core.models import FeeHead, InstallmentPlan, StudentDiscount

from .schemas import (
    InstallmentPlanCreate,
    InstallmentPlanResponse,
    StudentDiscountCreate,
    StudentDiscountResponse,
)

logger = logging.getLogger(__name__)


# --- Installment Plan ---
def _plan_scope(institution_id: Optional[UUID]):
    if institution_id is None:
        return InstallmentPlan.institution_id.is_(None)
    return InstallmentPlan.institution_id == institution_id


async def create_installment_plan(
    db: AsyncSession,
    institution_id: UUID,
    payload: InstallmentPlanCreate,
    created_by: Optional[UUID],
    allow_global: bool = False,
) -> InstallmentPlanResponse:
    if payload.is_global and not allow_global:
        raise ServiceError("Only platform admins can create global installment plans", status.HTTP_403_FORBIDDEN)
    owner = None if payload.is_global else institution_id
    name = payload.name.strip()

    # NULL institution_id is not covered by the unique constraint
    clash = (
        await db.execute(select(InstallmentPlan.id).where(_plan_scope(owner), InstallmentPlan.name == name))
    ).first()
    if clash:
        raise ServiceError("An installment plan with this name already exists", status.HTTP_409_CONFLICT)

    try:
        if payload.is_default:
            await db.execute(
                update(InstallmentPlan)
                .where(_plan_scope(owner), InstallmentPlan.is_default.is_(True))
                .values(is_default=False)
                .execution_options(synchronize_session=False)
            )
        plan = InstallmentPlan(
            institution_id=owner,
            name=name,
            bill_percent=payload.bill_percent,
            is_default=payload.is_default,
            is_active=True,
            created_by=created_by,
        )
        db.add(plan)
        await db.flush()
        await log_fee_audit(
            db, institution_id, "installment_plans", plan.id,
            "CREATE", None,
            {"name": name, "bill_percent": payload.bill_percent, "is_default": payload.is_default, "global": owner is None},
            created_by,
        )
        await db.commit()
        await db.refresh(plan)
    except IntegrityError:
        await db.rollback()
        raise ServiceError("An installment plan with this name already exists", status.HTTP_409_CONFLICT)
    logger.info("Created installment plan %s (%s%%) for %s", name, payload.bill_percent, owner or "all institutions")
    return InstallmentPlanResponse.model_validate(plan)


async def list_installment_plans(
    db: AsyncSession,
    institution_id: UUID,
    include_global: bool = True,
    active_only: bool = False,
) -> List[InstallmentPlanResponse]:
    scope = _plan_scope(institution_id)
    if include_global:
        scope = or_(scope, InstallmentPlan.institution_id.is_(None))
    stmt = select(InstallmentPlan).where(scope)
    if active_only:
        stmt = stmt.where(InstallmentPlan.is_active.is_(True))
    stmt = stmt.order_by(InstallmentPlan.institution_id.is_(None), InstallmentPlan.name)
    result = await db.execute(stmt)
    return [InstallmentPlanResponse.model_validate(p) for p in result.scalars().all()]


async def deactivate_installment_plan(
    db: AsyncSession,
    institution_id: UUID,
    plan_id: UUID,
    changed_by: Optional[UUID],
    allow_global: bool = False,
) -> Optional[InstallmentPlanResponse]:
    plan = await db.get(InstallmentPlan, plan_id)
    if not plan:
        return None
    if plan.institution_id is None:
        if not allow_global:
            raise ServiceError("Only platform admins can change global installment plans", status.HTTP_403_FORBIDDEN)
    elif plan.institution_id != institution_id:
        return None
    plan.is_active = False
    plan.is_default = False
    await log_fee_audit(
        db, institution_id, "installment_plans", plan.id,
        "DEACTIVATE",
        {"is_active": True},
        {"is_active": False},
        changed_by,
    )
    await db.commit()
    await db.refresh(plan)
    return InstallmentPlanResponse.model_validate(plan)


# --- Student Discount ---
async def create_student_discount(
    db: AsyncSession,
    institution_id: UUID,
    payload: StudentDiscountCreate,
    created_by: Optional[UUID],
) -> StudentDiscountResponse:
    student = await db.get(User, payload.student_id)
    if not student or student.institution_id != institution_id:
        raise ServiceError("Invalid student", status.HTTP_400_BAD_REQUEST)
    if payload.fee_head_id is not None:
        head = await db.get(FeeHead, payload.fee_head_id)
        if not head or head.institution_id != institution_id or not head.is_active:
            raise ServiceError("Invalid fee head", status.HTTP_400_BAD_REQUEST)

    discount = StudentDiscount(
        institution_id=institution_id,
        student_id=payload.student_id,
        fee_head_id=payload.fee_head_id,
        discount_type=payload.discount_type.value,
        value=payload.value,
        reason=(payload.reason or "").strip() or None,
        is_active=True,
        created_by=created_by,
    )
    db.add(discount)
    await db.flush()
    await log_fee_audit(
        db, institution_id, "student_discounts", discount.id,
        "CREATE", None,
        {
            "student_id": payload.student_id,
            "fee_head_id": payload.fee_head_id,
            "discount_type": payload.discount_type.value,
            "value": payload.value,
        },
        created_by,
    )
    await db.commit()
    await db.refresh(discount)
    return StudentDiscountResponse.model_validate(discount)


async def list_student_discounts(
    db: AsyncSession,
    institution_id: UUID,
    student_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[StudentDiscountResponse]:
    stmt = select(StudentDiscount).where(StudentDiscount.institution_id == institution_id)
    if student_id is not None:
        stmt = stmt.where(StudentDiscount.student_id == student_id)
    if active_only:
        stmt = stmt.where(StudentDiscount.is_active.is_(True))
    stmt = stmt.order_by(StudentDiscount.created_at)
    result = await db.execute(stmt)
    return [StudentDiscountResponse.model_validate(d) for d in result.scalars().all()]


async def deactivate_student_discount(
    db: AsyncSession,
    institution_id: UUID,
    discount_id: UUID,
    changed_by: Optional[UUID],
) -> Optional[StudentDiscountResponse]:
    discount = (
        await db.execute(
            select(StudentDiscount).where(
                StudentDiscount.id == discount_id,
                StudentDiscount.institution_id == institution_id,
            )
        )
    ).scalar_one_or_none()
    if not discount:
        return None
    discount.is_active = False
    await log_fee_audit(
        db, institution_id, "student_discounts", discount.id,
        "DEACTIVATE",
        {"is_active": True, "value": discount.value},
        {"is_active": False},
        changed_by,
    )
    await db.commit()
    await db.refresh(discount)
    return StudentDiscountResponse.model_validate(discount)
