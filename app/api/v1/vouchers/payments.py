"""
Payment application and reversal.

The voucher's payment fields are changed with a conditional update keyed on the paid_amount that
was read; when another payment lands in between, the transaction is rolled back and the whole
read-check-write cycle is retried, up to PAYMENT_MAX_RETRIES times.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit_service import log_fee_audit
from app.core.config import settings
from app.core.enums import PaymentStatus
from app.core.exceptions import (
    ConcurrentUpdateConflict,
    InvalidPaymentAmount,
    OverpaymentRejected,
    PaymentAlreadyReversed,
    PaymentNotFound,
    VoucherNotFound,
    VoucherSuperseded,
)
from app.core.models import FeePayment, FeeVoucher
from app.core.money import ZERO, round_money, to_decimal

from . import ledger
from .calculator import derive_status, remaining_after
from .numbering import next_receipt_number
from .schemas import PaymentCreate, PaymentResponse, PaymentResult
from .service import voucher_to_response

logger = logging.getLogger(__name__)


def _payment_to_response(p: FeePayment) -> PaymentResponse:
    return PaymentResponse(
        id=p.id,
        institution_id=p.institution_id,
        voucher_id=p.voucher_id,
        voucher_number=p.voucher_number,
        student_id=p.student_id,
        receipt_number=p.receipt_number,
        amount=to_decimal(p.amount),
        payment_method=p.payment_method,
        transaction_reference=p.transaction_reference,
        remarks=p.remarks,
        status=PaymentStatus(p.status),
        paid_at=p.paid_at,
        collected_by=p.collected_by,
        reversed_at=p.reversed_at,
        reversal_reason=p.reversal_reason,
        created_at=p.created_at,
    )


def _validate_amount(amount: Optional[Decimal], voucher: FeeVoucher) -> Decimal:
    def _reject(reason: str = "must be greater than zero") -> InvalidPaymentAmount:
        return InvalidPaymentAmount(
            voucher.voucher_number, amount, to_decimal(voucher.total_due), to_decimal(voucher.remaining_amount), reason
        )

    if amount is None:
        raise _reject()
    value = to_decimal(amount)
    if not value.is_finite() or value <= 0:
        raise _reject()
    if round_money(value) != value:
        raise _reject("must not have more than two decimal places")
    return round_money(value)


async def _load_voucher(db: AsyncSession, institution_id: UUID, voucher_id: UUID) -> FeeVoucher:
    voucher = await ledger.get_by_id(db, institution_id, voucher_id, fresh=True)
    if voucher is None:
        raise VoucherNotFound(str(voucher_id))
    return voucher


async def _ensure_latest(db: AsyncSession, institution_id: UUID, voucher: FeeVoucher) -> None:
    """Balances of earlier vouchers are frozen into the arrears of the later one."""
    latest = await ledger.find_latest_for_student(db, institution_id, voucher.student_id)
    if latest is not None and latest.id != voucher.id:
        logger.warning(
            "Rejected payment change on voucher %s: carried forward into %s",
            voucher.voucher_number, latest.voucher_number,
        )
        raise VoucherSuperseded(voucher.voucher_number, latest.voucher_number)


async def apply_payment(
    db: AsyncSession,
    institution_id: UUID,
    voucher_id: UUID,
    payload: PaymentCreate,
    collected_by: Optional[UUID] = None,
    before_commit: Optional[Callable[[FeePayment], Awaitable[None]]] = None,
) -> PaymentResult:
    """
    Add a payment to a voucher and record its receipt. Overpayment beyond the allowance is rejected,
    as is paying a voucher whose balance has already been carried into a later voucher.

    before_commit runs with the flushed payment inside the same transaction; raising from it
    leaves nothing committed.
    """
    paid_at = payload.paid_at or datetime.now(timezone.utc)
    voucher_number = str(voucher_id)

    for attempt in range(1, settings.payment_max_retries + 1):
        voucher = await _load_voucher(db, institution_id, voucher_id)
        voucher_number = voucher.voucher_number
        amount = _validate_amount(payload.amount, voucher)
        await _ensure_latest(db, institution_id, voucher)
        total_due = to_decimal(voucher.total_due)
        old_paid = to_decimal(voucher.paid_amount)
        old_status = voucher.status
        new_paid = old_paid + amount

        if new_paid > total_due + settings.overpayment_allowance:
            logger.warning(
                "Overpayment rejected on voucher %s: amount=%s total_due=%s remaining=%s",
                voucher_number, amount, total_due, voucher.remaining_amount,
            )
            raise OverpaymentRejected(voucher_number, amount, total_due, to_decimal(voucher.remaining_amount))

        remaining = remaining_after(total_due, new_paid)
        new_status = derive_status(total_due, new_paid, settings.payment_rounding_epsilon)
        applied = await ledger.update_payment_fields(
            db, voucher.id, old_paid, new_paid, remaining, new_status, paid_at
        )
        if not applied:
            await db.rollback()
            logger.warning(
                "Concurrent update on voucher %s, retrying payment (attempt %d/%d)",
                voucher_number, attempt, settings.payment_max_retries,
            )
            continue

        payment = FeePayment(
            institution_id=institution_id,
            voucher_id=voucher.id,
            voucher_number=voucher_number,
            student_id=voucher.student_id,
            receipt_number=await next_receipt_number(db, institution_id, paid_at.year),
            amount=amount,
            payment_method=payload.payment_method.value,
            transaction_reference=(payload.transaction_reference or "").strip() or None,
            remarks=(payload.remarks or "").strip() or None,
            status=PaymentStatus.completed.value,
            paid_at=paid_at,
            collected_by=collected_by,
            created_at=datetime.utcnow(),
        )
        db.add(payment)
        await db.flush()
        await log_fee_audit(
            db, institution_id, "fee_payments", payment.id,
            "PAYMENT",
            {"voucher_number": voucher_number, "paid_amount": old_paid, "status": old_status},
            {
                "voucher_number": voucher_number,
                "receipt_number": payment.receipt_number,
                "amount": amount,
                "paid_amount": new_paid,
                "remaining_amount": remaining,
                "status": new_status.value,
            },
            collected_by,
        )
        if before_commit is not None:
            await before_commit(payment)
        await db.commit()
        await db.refresh(voucher)
        await db.refresh(payment)
        logger.info(
            "Applied payment %s of %s to voucher %s: paid=%s remaining=%s status=%s",
            payment.receipt_number, amount, voucher_number, new_paid, remaining, new_status.value,
        )
        return PaymentResult(payment=_payment_to_response(payment), voucher=voucher_to_response(voucher))

    logger.warning("Giving up on payment for voucher %s after %d attempts", voucher_number, settings.payment_max_retries)
    raise ConcurrentUpdateConflict(voucher_number)


async def reverse_payment(
    db: AsyncSession,
    institution_id: UUID,
    payment_id: UUID,
    reason: str,
    changed_by: Optional[UUID] = None,
) -> PaymentResult:
    """Mark a completed payment reversed and take its amount back off the voucher."""
    voucher_number = str(payment_id)

    for attempt in range(1, settings.payment_max_retries + 1):
        payment = (
            await db.execute(
                select(FeePayment)
                .where(FeePayment.id == payment_id, FeePayment.institution_id == institution_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFound(payment_id)
        if payment.status == PaymentStatus.reversed.value:
            raise PaymentAlreadyReversed(payment.receipt_number)
        if payment.voucher_id is None:
            raise VoucherNotFound(payment.voucher_number)

        voucher = await _load_voucher(db, institution_id, payment.voucher_id)
        await _ensure_latest(db, institution_id, voucher)
        voucher_number = voucher.voucher_number
        amount = to_decimal(payment.amount)
        total_due = to_decimal(voucher.total_due)
        old_paid = to_decimal(voucher.paid_amount)
        old_status = voucher.status
        new_paid = max(ZERO, old_paid - amount)
        remaining = remaining_after(total_due, new_paid)
        new_status = derive_status(total_due, new_paid, settings.payment_rounding_epsilon)
        last_payment_date = (
            await db.execute(
                select(func.max(FeePayment.paid_at)).where(
                    FeePayment.voucher_id == voucher.id,
                    FeePayment.status == PaymentStatus.completed.value,
                    FeePayment.id != payment.id,
                )
            )
        ).scalar()

        applied = await ledger.update_payment_fields(
            db, voucher.id, old_paid, new_paid, remaining, new_status, last_payment_date
        )
        if not applied:
            await db.rollback()
            logger.warning(
                "Concurrent update on voucher %s, retrying reversal (attempt %d/%d)",
                voucher_number, attempt, settings.payment_max_retries,
            )
            continue

        payment.status = PaymentStatus.reversed.value
        payment.reversed_at = datetime.now(timezone.utc)
        payment.reversal_reason = reason.strip()
        await log_fee_audit(
            db, institution_id, "fee_payments", payment.id,
            "REVERSAL",
            {"status": PaymentStatus.completed.value, "paid_amount": old_paid, "voucher_status": old_status},
            {
                "status": PaymentStatus.reversed.value,
                "reason": payment.reversal_reason,
                "paid_amount": new_paid,
                "remaining_amount": remaining,
                "voucher_status": new_status.value,
            },
            changed_by,
        )
        await db.commit()
        await db.refresh(voucher)
        await db.refresh(payment)
        logger.info(
            "Reversed payment %s of %s on voucher %s: paid=%s remaining=%s status=%s",
            payment.receipt_number, amount, voucher_number, new_paid, remaining, new_status.value,
        )
        return PaymentResult(payment=_payment_to_response(payment), voucher=voucher_to_response(voucher))

    raise ConcurrentUpdateConflict(voucher_number)


async def list_payments(db: AsyncSession, institution_id: UUID, voucher_id: UUID) -> List[PaymentResponse]:
    voucher = await ledger.get_by_id(db, institution_id, voucher_id)
    if voucher is None:
        raise VoucherNotFound(str(voucher_id))
    stmt = (
        select(FeePayment)
        .where(FeePayment.institution_id == institution_id, FeePayment.voucher_id == voucher.id)
        .order_by(FeePayment.paid_at, FeePayment.created_at)
    )
    return [_payment_to_response(p) for p in (await db.execute(stmt)).scalars().all()]
