"""
Suspense account: deposits received without a known student.

An entry is recorded as unidentified, then reconciled to a student by paying it into the
student's latest voucher through apply_payment. At most the voucher's remaining amount is
applied; any excess stays in suspense as a new unidentified entry split from the original.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.vouchers import ledger, payments
from app.api.v1.vouchers.schemas import PaymentCreate
from app.auth.models import User
from app.core.audit_service import log_fee_audit
from app.core.enums import PaymentMethod, SuspenseStatus
from app.core.exceptions import NothingToReconcile, ServiceError, SuspenseEntryNotFound, VoucherNotFound
from app.core.models import FeePayment, SuspenseEntry
from app.core.money import ZERO, to_decimal

from .schemas import SuspenseEntryCreate, SuspenseEntryResponse, SuspenseReconcileResult

logger = logging.getLogger(__name__)


def _entry_to_response(e: SuspenseEntry) -> SuspenseEntryResponse:
    return SuspenseEntryResponse(
        id=e.id,
        institution_id=e.institution_id,
        amount=to_decimal(e.amount),
        payment_date=e.payment_date,
        payment_method=e.payment_method,
        transaction_reference=e.transaction_reference,
        bank_name=e.bank_name,
        remarks=e.remarks,
        status=SuspenseStatus(e.status),
        split_from_id=e.split_from_id,
        reconciled_student_id=e.reconciled_student_id,
        reconciled_payment_id=e.reconciled_payment_id,
        reconciled_at=e.reconciled_at,
        reconciled_by=e.reconciled_by,
        created_at=e.created_at,
    )


async def record_suspense_entry(
    db: AsyncSession,
    institution_id: UUID,
    payload: SuspenseEntryCreate,
    created_by: Optional[UUID] = None,
) -> SuspenseEntryResponse:
    entry = SuspenseEntry(
        institution_id=institution_id,
        amount=payload.amount,
        payment_date=payload.payment_date or datetime.now(timezone.utc),
        payment_method=payload.payment_method.value,
        transaction_reference=(payload.transaction_reference or "").strip() or None,
        bank_name=(payload.bank_name or "").strip() or None,
        remarks=(payload.remarks or "").strip() or None,
        status=SuspenseStatus.unidentified.value,
        created_by=created_by,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "An unidentified payment with this transaction reference is already recorded",
            status.HTTP_409_CONFLICT,
        )
    await log_fee_audit(
        db, institution_id, "suspense_entries", entry.id,
        "CREATE",
        None,
        {
            "amount": payload.amount,
            "payment_method": entry.payment_method,
            "transaction_reference": entry.transaction_reference,
            "bank_name": entry.bank_name,
        },
        created_by,
    )
    await db.commit()
    await db.refresh(entry)
    logger.info("Recorded unidentified payment %s of %s (ref=%s)", entry.id, payload.amount, entry.transaction_reference)
    return _entry_to_response(entry)


async def list_suspense_entries(
    db: AsyncSession,
    institution_id: UUID,
    entry_status: Optional[SuspenseStatus] = SuspenseStatus.unidentified,
) -> List[SuspenseEntryResponse]:
    stmt = select(SuspenseEntry).where(SuspenseEntry.institution_id == institution_id)
    if entry_status is not None:
        stmt = stmt.where(SuspenseEntry.status == entry_status.value)
    stmt = stmt.order_by(SuspenseEntry.payment_date.desc(), SuspenseEntry.created_at.desc())
    return [_entry_to_response(e) for e in (await db.execute(stmt)).scalars().all()]


async def _get_entry(db: AsyncSession, institution_id: UUID, entry_id: UUID, fresh: bool = False) -> Optional[SuspenseEntry]:
    stmt = select(SuspenseEntry).where(SuspenseEntry.id == entry_id, SuspenseEntry.institution_id == institution_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def reconcile_suspense_entry(
    db: AsyncSession,
    institution_id: UUID,
    entry_id: UUID,
    student_id: UUID,
    remarks: Optional[str] = None,
    reconciled_by: Optional[UUID] = None,
) -> SuspenseReconcileResult:
    """
    Pay an unidentified entry into the student's latest voucher. The payment, the entry's
    status change, any balance entry and the audit rows commit together or not at all.
    """
    entry = await _get_entry(db, institution_id, entry_id, fresh=True)
    if entry is None or entry.status != SuspenseStatus.unidentified.value:
        raise SuspenseEntryNotFound(entry_id)

    student = await db.get(User, student_id)
    if not student or student.institution_id != institution_id:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)

    latest = await ledger.find_latest_for_student(db, institution_id, student_id)
    voucher = await ledger.get_by_id(db, institution_id, latest.id, fresh=True) if latest is not None else None
    if voucher is None:
        raise VoucherNotFound(f"latest voucher of student {student_id}")
    remaining = to_decimal(voucher.remaining_amount)
    if remaining <= ZERO:
        raise NothingToReconcile(voucher.voucher_number)

    # Plain values: a retried payment rolls back and expires the loaded rows
    voucher_id, voucher_number = voucher.id, voucher.voucher_number
    entry_amount = to_decimal(entry.amount)
    pay_amount = min(entry_amount, remaining)
    balance = entry_amount - pay_amount
    payment_date = entry.payment_date
    payment_method = entry.payment_method
    bank_name = entry.bank_name
    note = (remarks or "").strip()

    payment_remarks = " ".join(
        part for part in ("[Reconciled from suspense]", note, f"Bank: {bank_name}" if bank_name else "") if part
    )
    payload = PaymentCreate(
        amount=pay_amount,
        payment_method=PaymentMethod(payment_method),
        transaction_reference=entry.transaction_reference,
        remarks=payment_remarks,
        paid_at=payment_date,
    )
    balance_ids: List[UUID] = []

    async def _settle(payment: FeePayment) -> None:
        now = datetime.now(timezone.utc)
        claimed = await db.execute(
            update(SuspenseEntry)
            .where(SuspenseEntry.id == entry_id, SuspenseEntry.status == SuspenseStatus.unidentified.value)
            .values(
                status=SuspenseStatus.reconciled.value,
                amount=pay_amount,
                reconciled_student_id=student_id,
                reconciled_payment_id=payment.id,
                reconciled_at=now,
                reconciled_by=reconciled_by,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise SuspenseEntryNotFound(entry_id)

        if balance > ZERO:
            rest = SuspenseEntry(
                institution_id=institution_id,
                amount=balance,
                payment_date=payment_date,
                payment_method=payment_method,
                bank_name=bank_name,
                remarks=f"Balance of suspense entry {entry_id} after paying {pay_amount} into voucher {voucher_number}",
                status=SuspenseStatus.unidentified.value,
                split_from_id=entry_id,
                created_by=reconciled_by,
            )
            db.add(rest)
            await db.flush()
            balance_ids.append(rest.id)

        await log_fee_audit(
            db, institution_id, "suspense_entries", entry_id,
            "RECONCILE",
            {"status": SuspenseStatus.unidentified.value, "amount": entry_amount},
            {
                "status": SuspenseStatus.reconciled.value,
                "amount": pay_amount,
                "student_id": student_id,
                "voucher_number": voucher_number,
                "receipt_number": payment.receipt_number,
                "balance_amount": balance,
                "balance_entry_id": balance_ids[0] if balance_ids else None,
            },
            reconciled_by,
        )

    try:
        result = await payments.apply_payment(
            db, institution_id, voucher_id, payload, collected_by=reconciled_by, before_commit=_settle
        )
    except ServiceError:
        await db.rollback()
        raise

    reconciled = await _get_entry(db, institution_id, entry_id, fresh=True)
    balance_entry = await _get_entry(db, institution_id, balance_ids[0]) if balance_ids else None
    if balance_entry is not None:
        message = f"Reconciled {pay_amount} to voucher {voucher_number}; {balance} remains unidentified"
    else:
        message = f"Reconciled {pay_amount} to voucher {voucher_number}"
    logger.info("Suspense entry %s: %s (receipt %s)", entry_id, message, result.payment.receipt_number)
    return SuspenseReconcileResult(
        entry=_entry_to_response(reconciled),
        balance_entry=_entry_to_response(balance_entry) if balance_entry is not None else None,
        payment=result.payment,
        voucher=result.voucher,
        message=message,
    )
