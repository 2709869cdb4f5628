"""Fees service: fee heads and the class fee structure matrix that voucher generation reads."""

from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit_service import log_fee_audit
from app.core.exceptions import ServiceError
from app.core.models import AcademicYear, ClassFeeStructure, FeeHead, SchoolClass
from app.core.money import to_decimal

from .schemas import (
    ClassFeeStructureByClassResponse,
    ClassFeeStructureCreate,
    ClassFeeStructureItem,
    ClassFeeStructureResponse,
    FeeHeadCreate,
    FeeHeadResponse,
)


# --- Fee Head ---
async def create_fee_head(
    db: AsyncSession,
    institution_id: UUID,
    payload: FeeHeadCreate,
) -> FeeHeadResponse:
    try:
        head = FeeHead(
            institution_id=institution_id,
            name=payload.name.strip(),
            priority=payload.priority,
            account_type=payload.account_type.value,
            frequency=payload.frequency.value,
            gl_account=(payload.gl_account or "").strip() or None,
            is_active=True,
        )
        db.add(head)
        await db.commit()
        await db.refresh(head)
        return FeeHeadResponse.model_validate(head)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Another fee head already uses this priority",
            status.HTTP_409_CONFLICT,
        )


async def list_fee_heads(
    db: AsyncSession,
    institution_id: UUID,
    active_only: bool = True,
) -> List[FeeHeadResponse]:
    stmt = select(FeeHead).where(FeeHead.institution_id == institution_id)
    if active_only:
        stmt = stmt.where(FeeHead.is_active.is_(True))
    stmt = stmt.order_by(FeeHead.priority)
    result = await db.execute(stmt)
    return [FeeHeadResponse.model_validate(h) for h in result.scalars().all()]


# --- Class Fee Structure ---
def _cfs_to_response(cfs: ClassFeeStructure) -> ClassFeeStructureResponse:
    return ClassFeeStructureResponse(
        id=cfs.id,
        institution_id=cfs.institution_id,
        academic_year_id=cfs.academic_year_id,
        class_id=cfs.class_id,
        fee_head_id=cfs.fee_head_id,
        amount=to_decimal(cfs.amount),
        is_active=cfs.is_active,
        created_at=cfs.created_at,
        updated_at=cfs.updated_at,
    )


async def create_class_fee_structure(
    db: AsyncSession,
    institution_id: UUID,
    payload: ClassFeeStructureCreate,
    changed_by: Optional[UUID] = None,
) -> ClassFeeStructureResponse:
    ay = await db.get(AcademicYear, payload.academic_year_id)
    if not ay or ay.institution_id != institution_id:
        raise ServiceError("Invalid academic year", status.HTTP_400_BAD_REQUEST)
    if ay.status != "ACTIVE":
        raise ServiceError("Cannot modify fee structure for a CLOSED academic year", status.HTTP_400_BAD_REQUEST)
    cl = await db.get(SchoolClass, payload.class_id)
    if not cl or cl.institution_id != institution_id:
        raise ServiceError("Invalid class", status.HTTP_400_BAD_REQUEST)
    head = await db.get(FeeHead, payload.fee_head_id)
    if not head or head.institution_id != institution_id or not head.is_active:
        raise ServiceError("Invalid fee head", status.HTTP_400_BAD_REQUEST)
    try:
        cfs = ClassFeeStructure(
            institution_id=institution_id,
            academic_year_id=payload.academic_year_id,
            class_id=payload.class_id,
            fee_head_id=payload.fee_head_id,
            amount=payload.amount,
            is_active=True,
        )
        db.add(cfs)
        await db.flush()
        await log_fee_audit(
            db, institution_id, "class_fee_structures", cfs.id,
            "CREATE", None,
            {"amount": payload.amount, "class_id": payload.class_id, "fee_head_id": payload.fee_head_id},
            changed_by,
        )
        await db.commit()
        await db.refresh(cfs)
        return _cfs_to_response(cfs)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "This class already has this fee head for this academic year",
            status.HTTP_409_CONFLICT,
        )


async def list_class_fee_structures(
    db: AsyncSession,
    institution_id: UUID,
    academic_year_id: UUID,
    class_id: Optional[UUID] = None,
) -> List[ClassFeeStructureByClassResponse]:
    """
    Active fee structure rows for an academic year, grouped by class, heads in priority order.
    """
    stmt = (
        select(ClassFeeStructure, SchoolClass.name.label("class_name"), FeeHead)
        .join(SchoolClass, ClassFeeStructure.class_id == SchoolClass.id)
        .join(FeeHead, ClassFeeStructure.fee_head_id == FeeHead.id)
        .where(
            ClassFeeStructure.institution_id == institution_id,
            ClassFeeStructure.academic_year_id == academic_year_id,
            ClassFeeStructure.is_active.is_(True),
        )
    )
    if class_id is not None:
        stmt = stmt.where(ClassFeeStructure.class_id == class_id)
    stmt = stmt.order_by(SchoolClass.display_order, SchoolClass.name, FeeHead.priority)

    result = await db.execute(stmt)
    grouped: Dict[UUID, ClassFeeStructureByClassResponse] = {}
    for cfs, class_name, head in result.all():
        if cfs.class_id not in grouped:
            grouped[cfs.class_id] = ClassFeeStructureByClassResponse(
                academic_year_id=cfs.academic_year_id,
                class_id=cfs.class_id,
                class_name=class_name,
                items=[],
            )
        grouped[cfs.class_id].items.append(
            ClassFeeStructureItem(
                id=cfs.id,
                fee_head_id=head.id,
                fee_head_name=head.name,
                priority=head.priority,
                frequency=head.frequency,
                amount=to_decimal(cfs.amount),
                is_active=cfs.is_active,
            )
        )
    return list(grouped.values())
