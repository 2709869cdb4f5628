"""
Voucher generation: one student's bill for one month, and batches of them.

Reads the fee structure matrix, the student's active discounts, the applicable installment plan
and the student's previous voucher, computes the amounts (see calculator) and writes the voucher
through the ledger in a single transaction.
"""

import asyncio
import calendar
import logging
from datetime import date
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.audit_service import log_fee_audit
from app.core.config import settings
from app.core.enums import FeeHeadFrequency
from app.core.exceptions import (
    DuplicatePeriod,
    NoFeeStructure,
    PeriodOutOfSequence,
    ServiceError,
    StudentNotEnrolled,
)
from app.core.models import (
    AcademicYear,
    ClassFeeStructure,
    FeeHead,
    FeeVoucher,
    FeeVoucherItem,
    InstallmentPlan,
    StudentAcademicRecord,
    StudentDiscount,
)

from . import ledger
from .calculator import ChargeLine, DiscountRule, PriorBalance, compute_voucher
from .numbering import next_voucher_number
from .schemas import (
    BatchFailure,
    BatchGenerateResponse,
    FeeVoucherResponse,
    VoucherBatchGenerateRequest,
    VoucherGenerateRequest,
)
from .service import voucher_snapshot, voucher_to_response

logger = logging.getLogger(__name__)

INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"


def resolve_due_date(year: int, month: int, due_date: Optional[date] = None, due_day: Optional[int] = None) -> date:
    """Explicit date wins; otherwise the configured day of the billed month, clamped to its length."""
    if due_date is not None:
        return due_date
    day = due_day or settings.voucher_default_due_day
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


async def resolve_installment_plan(
    db: AsyncSession,
    institution_id: UUID,
    installment_plan_id: Optional[UUID] = None,
) -> Optional[InstallmentPlan]:
    """
    Explicit plan if requested; else the institution's active plans (default first, newest first);
    else the global plans in the same order; else None (bill everything).
    """
    if installment_plan_id is not None:
        plan = await db.get(InstallmentPlan, installment_plan_id)
        if (
            not plan
            or not plan.is_active
            or (plan.institution_id is not None and plan.institution_id != institution_id)
        ):
            raise ServiceError("Invalid installment plan", status.HTTP_400_BAD_REQUEST)
        return plan

    ordering = (InstallmentPlan.is_default.desc(), InstallmentPlan.created_at.desc())
    for scope in (InstallmentPlan.institution_id == institution_id, InstallmentPlan.institution_id.is_(None)):
        stmt = select(InstallmentPlan).where(scope, InstallmentPlan.is_active.is_(True)).order_by(*ordering).limit(1)
        plan = (await db.execute(stmt)).scalar_one_or_none()
        if plan is not None:
            return plan
    return None


async def _load_enrollment(
    db: AsyncSession, institution_id: UUID, payload: VoucherGenerateRequest
) -> StudentAcademicRecord:
    stmt = select(StudentAcademicRecord).where(
        StudentAcademicRecord.institution_id == institution_id,
        StudentAcademicRecord.student_id == payload.student_id,
        StudentAcademicRecord.academic_year_id == payload.academic_year_id,
        StudentAcademicRecord.status == "ACTIVE",
    )
    record = (await db.execute(stmt)).scalar_one_or_none()
    if record is None:
        raise StudentNotEnrolled(payload.student_id, payload.academic_year_id, payload.year, payload.month)
    return record


async def _load_charge_lines(
    db: AsyncSession,
    institution_id: UUID,
    payload: VoucherGenerateRequest,
    class_id: UUID,
) -> List[ChargeLine]:
    """Fee heads to bill this period, in priority order, after frequency and filter rules."""
    stmt = (
        select(ClassFeeStructure, FeeHead)
        .join(FeeHead, ClassFeeStructure.fee_head_id == FeeHead.id)
        .where(
            ClassFeeStructure.institution_id == institution_id,
            ClassFeeStructure.academic_year_id == payload.academic_year_id,
            ClassFeeStructure.class_id == class_id,
            ClassFeeStructure.is_active.is_(True),
            FeeHead.is_active.is_(True),
        )
        .order_by(FeeHead.priority)
    )
    rows: Sequence[Tuple[ClassFeeStructure, FeeHead]] = (await db.execute(stmt)).all()
    if not rows:
        raise NoFeeStructure(payload.student_id, class_id, payload.academic_year_id, payload.year, payload.month)

    requested = set(payload.fee_head_ids) if payload.fee_head_ids is not None else None
    candidates: List[Tuple[ClassFeeStructure, FeeHead]] = []
    for cfs, head in rows:
        if cfs.amount is None or cfs.amount <= 0:
            continue
        if requested is not None and head.id not in requested:
            continue
        if head.frequency == FeeHeadFrequency.AD_HOC.value and requested is None:
            continue
        candidates.append((cfs, head))

    one_time = [head.id for _, head in candidates if head.frequency == FeeHeadFrequency.ONE_TIME.value]
    already_billed = await ledger.billed_fee_heads_before(
        db, institution_id, payload.student_id, payload.year, payload.month, one_time
    )
    return [ChargeLine(head.id, cfs.amount) for cfs, head in candidates if head.id not in already_billed]


async def _load_discount_rules(db: AsyncSession, institution_id: UUID, student_id: UUID) -> List[DiscountRule]:
    stmt = (
        select(StudentDiscount)
        .where(
            StudentDiscount.institution_id == institution_id,
            StudentDiscount.student_id == student_id,
            StudentDiscount.is_active.is_(True),
        )
        .order_by(StudentDiscount.created_at)
    )
    return [
        DiscountRule(d.fee_head_id, d.discount_type, d.value)
        for d in (await db.execute(stmt)).scalars().all()
    ]


async def generate_voucher(
    db: AsyncSession,
    institution_id: UUID,
    payload: VoucherGenerateRequest,
    created_by: Optional[UUID] = None,
) -> FeeVoucherResponse:
    """Generate and persist one voucher. Raises a ServiceError subclass when the period cannot be billed."""
    student_id, year, month = payload.student_id, payload.year, payload.month

    ay = await db.get(AcademicYear, payload.academic_year_id)
    if not ay or ay.institution_id != institution_id:
        raise ServiceError("Invalid academic year", status.HTTP_400_BAD_REQUEST)
    if ay.status == "CLOSED":
        raise ServiceError("Cannot generate vouchers for a CLOSED academic year", status.HTTP_400_BAD_REQUEST)

    enrollment = await _load_enrollment(db, institution_id, payload)

    existing = await ledger.find_by_period(db, institution_id, student_id, year, month)
    if existing is not None:
        logger.warning("Voucher already exists for student %s %04d-%02d: %s", student_id, year, month, existing.voucher_number)
        raise DuplicatePeriod(student_id, year, month, existing.voucher_number)

    latest = await ledger.find_latest_for_student(db, institution_id, student_id)
    if latest is not None and (latest.year, latest.month) > (year, month):
        logger.warning(
            "Out-of-sequence generation for student %s %04d-%02d: latest voucher is %04d-%02d",
            student_id, year, month, latest.year, latest.month,
        )
        raise PeriodOutOfSequence(student_id, year, month, latest.year, latest.month)

    lines = await _load_charge_lines(db, institution_id, payload, enrollment.class_id)
    rules = await _load_discount_rules(db, institution_id, student_id)
    plan = await resolve_installment_plan(db, institution_id, payload.installment_plan_id)
    prior = await ledger.find_latest_before_period(db, institution_id, student_id, year, month)

    amounts = compute_voucher(
        lines,
        rules,
        plan.bill_percent if plan is not None else None,
        PriorBalance(prior.remaining_amount, prior.deferred_amount) if prior is not None else None,
        settings.payment_rounding_epsilon,
    )

    try:
        voucher = FeeVoucher(
            institution_id=institution_id,
            student_id=student_id,
            admission_id=enrollment.admission_id,
            academic_year_id=payload.academic_year_id,
            class_id=enrollment.class_id,
            year=year,
            month=month,
            voucher_number=await next_voucher_number(db, institution_id, year, month),
            due_date=resolve_due_date(year, month, payload.due_date, payload.due_day),
            installment_plan_id=plan.id if plan is not None else None,
            bill_percent=amounts.bill_percent,
            current_month_amount=amounts.current_month_amount,
            billed_amount=amounts.billed_amount,
            deferred_amount=amounts.deferred_amount,
            arrears_brought_forward=amounts.arrears_brought_forward,
            total_due=amounts.total_due,
            paid_amount=amounts.paid_amount,
            remaining_amount=amounts.remaining_amount,
            status=amounts.status.value,
            created_by=created_by,
            items=[
                FeeVoucherItem(
                    fee_head_id=item.fee_head_id,
                    position=position,
                    base_amount=item.base_amount,
                    discount_amount=item.discount_amount,
                    final_amount=item.final_amount,
                )
                for position, item in enumerate(amounts.items, start=1)
            ],
        )
        await ledger.insert(db, voucher)
        await log_fee_audit(
            db, institution_id, "fee_vouchers", voucher.id,
            "CREATE", None, voucher_snapshot(voucher),
            created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        winner = await ledger.find_by_period(db, institution_id, student_id, year, month)
        if winner is not None:
            logger.warning("Lost generation race for student %s %04d-%02d to %s", student_id, year, month, winner.voucher_number)
            raise DuplicatePeriod(student_id, year, month, winner.voucher_number)
        raise ServiceError("Voucher could not be saved: conflicting record", status.HTTP_409_CONFLICT)

    logger.info(
        "Generated voucher %s for student %s %04d-%02d: billed=%s deferred=%s arrears=%s total_due=%s",
        voucher.voucher_number, student_id, year, month,
        amounts.billed_amount, amounts.deferred_amount, amounts.arrears_brought_forward, amounts.total_due,
    )
    return voucher_to_response(voucher)


async def generate_vouchers_batch(
    session_factory: async_sessionmaker,
    institution_id: UUID,
    payload: VoucherBatchGenerateRequest,
    created_by: Optional[UUID] = None,
) -> BatchGenerateResponse:
    """
    Generate one period for many students. Each student runs in its own session and transaction,
    at most VOUCHER_GENERATION_CONCURRENCY at a time; a failure is recorded and the rest carry on.
    """
    semaphore = asyncio.Semaphore(settings.voucher_generation_concurrency)
    student_ids = list(dict.fromkeys(payload.student_ids))

    async def _one(student_id: UUID):
        async with semaphore:
            async with session_factory() as db:
                try:
                    return await generate_voucher(db, institution_id, payload.for_student(student_id), created_by)
                except ServiceError as e:
                    return BatchFailure(student_id=student_id, error=e.code, message=e.message)
                except Exception:
                    logger.exception("Voucher generation failed for student %s", student_id)
                    return BatchFailure(
                        student_id=student_id,
                        error=INFRASTRUCTURE_ERROR,
                        message="Voucher generation failed due to an internal error",
                    )

    results = await asyncio.gather(*(_one(sid) for sid in student_ids))
    generated = [r for r in results if isinstance(r, FeeVoucherResponse)]
    failed = [r for r in results if isinstance(r, BatchFailure)]
    logger.info(
        "Batch generation %04d-%02d: %d generated, %d failed",
        payload.year, payload.month, len(generated), len(failed),
    )
    return BatchGenerateResponse(generated=generated, failed=failed)
