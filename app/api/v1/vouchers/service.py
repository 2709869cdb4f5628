"""Voucher queries, delete-and-regenerate and the outstanding balance report."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit_service import log_fee_audit
from app.core.enums import PaymentStatus, VoucherStatus
from app.core.exceptions import VoucherHasPayments, VoucherNotFound, VoucherNotLatest
from app.core.models import FeePayment, FeeVoucher
from app.core.money import to_decimal

from . import ledger
from .schemas import FeeVoucherItemResponse, FeeVoucherResponse, OutstandingBalanceItem

logger = logging.getLogger(__name__)


def _to_uuid(val):
    if val is None:
        return None
    return val if isinstance(val, UUID) else UUID(str(val))


def voucher_to_response(v: FeeVoucher) -> FeeVoucherResponse:
    return FeeVoucherResponse(
        id=_to_uuid(v.id),
        institution_id=_to_uuid(v.institution_id),
        student_id=_to_uuid(v.student_id),
        admission_id=_to_uuid(v.admission_id),
        academic_year_id=_to_uuid(v.academic_year_id),
        class_id=_to_uuid(v.class_id),
        year=v.year,
        month=v.month,
        voucher_number=v.voucher_number,
        generated_at=v.generated_at,
        due_date=v.due_date,
        installment_plan_id=_to_uuid(v.installment_plan_id),
        bill_percent=v.bill_percent,
        items=[
            FeeVoucherItemResponse(
                fee_head_id=_to_uuid(i.fee_head_id),
                position=i.position,
                base_amount=to_decimal(i.base_amount),
                discount_amount=to_decimal(i.discount_amount),
                final_amount=to_decimal(i.final_amount),
            )
            for i in v.items
        ],
        current_month_amount=to_decimal(v.current_month_amount),
        billed_amount=to_decimal(v.billed_amount),
        deferred_amount=to_decimal(v.deferred_amount),
        arrears_brought_forward=to_decimal(v.arrears_brought_forward),
        total_due=to_decimal(v.total_due),
        paid_amount=to_decimal(v.paid_amount),
        remaining_amount=to_decimal(v.remaining_amount),
        status=VoucherStatus(v.status),
        last_payment_date=v.last_payment_date,
        created_by=_to_uuid(v.created_by),
    )


def voucher_snapshot(v: FeeVoucher) -> dict:
    """Full voucher state for the audit log."""
    return voucher_to_response(v).model_dump(mode="json")


# --- Lookups ---
async def get_voucher(db: AsyncSession, institution_id: UUID, voucher_id: UUID) -> FeeVoucherResponse:
    voucher = await ledger.get_by_id(db, institution_id, voucher_id)
    if voucher is None:
        raise VoucherNotFound(str(voucher_id))
    return voucher_to_response(voucher)


async def get_voucher_by_number(db: AsyncSession, institution_id: UUID, voucher_number: str) -> FeeVoucherResponse:
    voucher = await ledger.find_by_voucher_number(db, institution_id, voucher_number)
    if voucher is None:
        raise VoucherNotFound(voucher_number)
    return voucher_to_response(voucher)


async def get_voucher_for_period(
    db: AsyncSession, institution_id: UUID, student_id: UUID, year: int, month: int
) -> FeeVoucherResponse:
    voucher = await ledger.find_by_period(db, institution_id, student_id, year, month)
    if voucher is None:
        raise VoucherNotFound(f"student {student_id} period {year:04d}-{month:02d}")
    return voucher_to_response(voucher)


async def list_period_vouchers(
    db: AsyncSession,
    institution_id: UUID,
    year: int,
    month: int,
    status: Optional[VoucherStatus] = None,
) -> List[FeeVoucherResponse]:
    vouchers = await ledger.list_for_period(db, institution_id, year, month, status=status)
    return [voucher_to_response(v) for v in vouchers]


async def list_student_vouchers(db: AsyncSession, institution_id: UUID, student_id: UUID) -> List[FeeVoucherResponse]:
    return [voucher_to_response(v) for v in await ledger.list_for_student(db, institution_id, student_id)]


# --- Delete (explicit regeneration path) ---
async def delete_voucher(
    db: AsyncSession,
    institution_id: UUID,
    voucher_id: UUID,
    changed_by: Optional[UUID],
) -> None:
    """
    Remove a voucher so the period can be generated again.
    Only the student's latest voucher may go (a later voucher already carries its balance forward),
    and only once every payment on it has been reversed.
    """
    voucher = await ledger.get_by_id(db, institution_id, voucher_id)
    if voucher is None:
        raise VoucherNotFound(str(voucher_id))

    latest = await ledger.find_latest_for_student(db, institution_id, voucher.student_id)
    if latest is not None and latest.id != voucher.id:
        logger.warning(
            "Refused to delete voucher %s: later voucher %s exists",
            voucher.voucher_number,
            latest.voucher_number,
        )
        raise VoucherNotLatest(voucher.voucher_number)

    completed = (
        await db.execute(
            select(func.count(FeePayment.id)).where(
                FeePayment.voucher_id == voucher.id,
                FeePayment.status == PaymentStatus.completed.value,
            )
        )
    ).scalar_one()
    if completed:
        logger.warning("Refused to delete voucher %s: %s completed payment(s)", voucher.voucher_number, completed)
        raise VoucherHasPayments(voucher.voucher_number)

    snapshot = voucher_snapshot(voucher)
    await db.execute(
        update(FeePayment)
        .where(FeePayment.voucher_id == voucher.id)
        .values(voucher_id=None)
        .execution_options(synchronize_session=False)
    )
    await log_fee_audit(
        db, institution_id, "fee_vouchers", voucher.id,
        "DELETE", snapshot, None,
        changed_by,
    )
    await db.delete(voucher)
    await db.commit()
    logger.info(
        "Deleted voucher %s (student %s, %04d-%02d)",
        snapshot["voucher_number"],
        snapshot["student_id"],
        snapshot["year"],
        snapshot["month"],
    )


# --- Report ---
async def outstanding_balances(db: AsyncSession, institution_id: UUID) -> List[OutstandingBalanceItem]:
    """Students whose latest voucher still leaves something to carry forward."""
    report: List[OutstandingBalanceItem] = []
    for voucher, student_name in await ledger.latest_per_student(db, institution_id):
        remaining = to_decimal(voucher.remaining_amount)
        deferred = to_decimal(voucher.deferred_amount)
        outstanding = remaining + deferred
        if outstanding <= 0:
            continue
        report.append(
            OutstandingBalanceItem(
                student_id=_to_uuid(voucher.student_id),
                student_name=student_name,
                voucher_id=_to_uuid(voucher.id),
                voucher_number=voucher.voucher_number,
                year=voucher.year,
                month=voucher.month,
                total_due=to_decimal(voucher.total_due),
                paid_amount=to_decimal(voucher.paid_amount),
                remaining_amount=remaining,
                deferred_amount=deferred,
                outstanding=outstanding,
                status=VoucherStatus(voucher.status),
            )
        )
    return report
