"""Unidentified payments: recording, listing and reconciliation to a student's latest voucher."""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.suspense import service
from app.api.v1.suspense.schemas import SuspenseEntryCreate
from app.api.v1.vouchers import generator, ledger, payments
from app.api.v1.vouchers.schemas import PaymentCreate, VoucherGenerateRequest
from app.core.enums import SuspenseStatus
from app.core.exceptions import (
    ConcurrentUpdateConflict,
    NothingToReconcile,
    ServiceError,
    SuspenseEntryNotFound,
    VoucherNotFound,
)
from app.core.models import FeeAuditLog, FeePayment, SuspenseEntry

from tests.factories import SeedData, add_student


async def _voucher(db: AsyncSession, seed: SeedData, month: int = 4):
    return await generator.generate_voucher(
        db,
        seed.institution_id,
        VoucherGenerateRequest(
            student_id=seed.student_id, academic_year_id=seed.academic_year_id, year=2025, month=month
        ),
    )


async def _deposit(db: AsyncSession, seed: SeedData, amount: str, reference: str = "HBL-889100", **kwargs):
    payload = SuspenseEntryCreate(
        amount=Decimal(amount),
        transaction_reference=reference,
        payment_date=kwargs.pop("payment_date", datetime(2025, 4, 12, 9, 0)),
        **kwargs,
    )
    return await service.record_suspense_entry(db, seed.institution_id, payload, created_by=seed.admin_id)


@pytest.mark.asyncio
async def test_record_and_list_unidentified(db_session: AsyncSession, seed: SeedData) -> None:
    older = await _deposit(db_session, seed, "1500", "REF-1", payment_date=datetime(2025, 4, 2), bank_name="HBL")
    newer = await _deposit(db_session, seed, "700.50", "REF-2", payment_date=datetime(2025, 4, 9))

    assert older.status == "unidentified"
    assert older.amount == Decimal("1500")
    assert older.payment_method == "BANK_TRANSFER"
    assert older.bank_name == "HBL"

    listed = await service.list_suspense_entries(db_session, seed.institution_id)
    assert [e.id for e in listed] == [newer.id, older.id]
    assert await service.list_suspense_entries(db_session, seed.institution_id, SuspenseStatus.reconciled) == []

    audit = (
        await db_session.execute(
            select(FeeAuditLog).where(FeeAuditLog.reference_id == older.id, FeeAuditLog.action_type == "CREATE")
        )
    ).scalar_one()
    assert audit.new_value["transaction_reference"] == "REF-1"


@pytest.mark.asyncio
async def test_duplicate_reference_rejected(db_session: AsyncSession, seed: SeedData) -> None:
    await _deposit(db_session, seed, "1000", "HBL-1")
    with pytest.raises(ServiceError) as exc:
        await _deposit(db_session, seed, "2000", "HBL-1")
    assert exc.value.status_code == 409

    # Entries without a reference never clash
    await _deposit(db_session, seed, "10", None)
    await _deposit(db_session, seed, "20", None)
    assert len(await service.list_suspense_entries(db_session, seed.institution_id)) == 3


@pytest.mark.asyncio
async def test_reconcile_within_remaining_amount(db_session: AsyncSession, seed: SeedData) -> None:
    v = await _voucher(db_session, seed)
    entry = await _deposit(db_session, seed, "2000")

    result = await service.reconcile_suspense_entry(
        db_session, seed.institution_id, entry.id, seed.student_id, remarks="Parent called", reconciled_by=seed.admin_id
    )
    assert result.balance_entry is None
    assert result.entry.status == "reconciled"
    assert result.entry.amount == Decimal("2000")
    assert result.entry.reconciled_student_id == seed.student_id
    assert result.entry.reconciled_payment_id == result.payment.id
    assert result.entry.reconciled_by == seed.admin_id

    assert result.payment.amount == Decimal("2000")
    assert result.payment.voucher_id == v.id
    assert result.payment.payment_method == "BANK_TRANSFER"
    assert result.payment.transaction_reference == "HBL-889100"
    assert result.payment.remarks.startswith("[Reconciled from suspense] Parent called")
    assert result.payment.paid_at.replace(tzinfo=None) == datetime(2025, 4, 12, 9, 0)

    assert result.voucher.paid_amount == Decimal("2000")
    assert result.voucher.remaining_amount == Decimal("3000")
    assert result.voucher.status == "partial"
    assert await service.list_suspense_entries(db_session, seed.institution_id) == []


@pytest.mark.asyncio
async def test_reconcile_splits_excess_into_new_entry(db_session: AsyncSession, seed: SeedData) -> None:
    v = await _voucher(db_session, seed)
    await payments.apply_payment(db_session, seed.institution_id, v.id, PaymentCreate(amount=Decimal("1000")))
    entry = await _deposit(db_session, seed, "6000", bank_name="Meezan")

    result = await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)

    assert result.payment.amount == Decimal("4000")
    assert result.voucher.paid_amount == Decimal("5000")
    assert result.voucher.remaining_amount == 0
    assert result.voucher.status == "paid"

    assert result.entry.amount == Decimal("4000")
    assert result.entry.status == "reconciled"

    balance = result.balance_entry
    assert balance is not None
    assert balance.amount == Decimal("2000")
    assert balance.status == "unidentified"
    assert balance.split_from_id == entry.id
    assert balance.transaction_reference is None
    assert balance.bank_name == "Meezan"
    assert "2000" in result.message

    open_entries = await service.list_suspense_entries(db_session, seed.institution_id)
    assert [e.id for e in open_entries] == [balance.id]


@pytest.mark.asyncio
async def test_reconcile_twice_rejected(db_session: AsyncSession, seed: SeedData) -> None:
    await _voucher(db_session, seed)
    entry = await _deposit(db_session, seed, "500")
    await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)

    with pytest.raises(SuspenseEntryNotFound) as exc:
        await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)
    assert exc.value.status_code == 404
    count = len((await db_session.execute(select(FeePayment))).scalars().all())
    assert count == 1


@pytest.mark.asyncio
async def test_reconcile_unknown_entry(db_session: AsyncSession, seed: SeedData) -> None:
    with pytest.raises(SuspenseEntryNotFound):
        await service.reconcile_suspense_entry(db_session, seed.institution_id, uuid4(), seed.student_id)


@pytest.mark.asyncio
async def test_reconcile_targets_latest_voucher(db_session: AsyncSession, seed: SeedData) -> None:
    await _voucher(db_session, seed, month=4)
    may = await _voucher(db_session, seed, month=5)
    entry = await _deposit(db_session, seed, "1000")

    result = await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)
    assert result.voucher.id == may.id
    assert result.voucher.paid_amount == Decimal("1000")


@pytest.mark.asyncio
async def test_reconcile_without_voucher_or_balance(db_session: AsyncSession, seed: SeedData) -> None:
    entry = await _deposit(db_session, seed, "1000")
    with pytest.raises(VoucherNotFound):
        await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)

    other = await add_student(db_session, seed, "Sara Khan", "sara@acme.test")
    other_voucher = await generator.generate_voucher(
        db_session,
        seed.institution_id,
        VoucherGenerateRequest(student_id=other, academic_year_id=seed.academic_year_id, year=2025, month=4),
    )
    await payments.apply_payment(
        db_session, seed.institution_id, other_voucher.id, PaymentCreate(amount=Decimal("5000"))
    )
    with pytest.raises(NothingToReconcile):
        await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, other)

    with pytest.raises(ServiceError) as exc:
        await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, uuid4())
    assert exc.value.status_code == 404

    stored = (await db_session.execute(select(SuspenseEntry).where(SuspenseEntry.id == entry.id))).scalar_one()
    assert stored.status == "unidentified"


@pytest.mark.asyncio
async def test_failed_payment_leaves_entry_unidentified(
    db_session: AsyncSession, seed: SeedData, monkeypatch
) -> None:
    v = await _voucher(db_session, seed)
    entry = await _deposit(db_session, seed, "6000")

    async def always_stale(*args, **kwargs):
        return False

    monkeypatch.setattr(ledger, "update_payment_fields", always_stale)
    with pytest.raises(ConcurrentUpdateConflict):
        await service.reconcile_suspense_entry(db_session, seed.institution_id, entry.id, seed.student_id)

    stored = (
        await db_session.execute(
            select(SuspenseEntry).where(SuspenseEntry.id == entry.id).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert stored.status == "unidentified"
    assert Decimal(str(stored.amount)) == Decimal("6000")
    assert len(await service.list_suspense_entries(db_session, seed.institution_id)) == 1
    assert (await db_session.execute(select(FeePayment))).scalars().all() == []
    stored_voucher = await ledger.get_by_id(db_session, seed.institution_id, v.id, fresh=True)
    assert stored_voucher.paid_amount == 0


@pytest.mark.asyncio
async def test_suspense_http_flow(client: AsyncClient, auth_headers: dict, db_session: AsyncSession, seed: SeedData) -> None:
    v = await _voucher(db_session, seed)

    created = await client.post(
        "/api/v1/suspense",
        json={"amount": "1200.00", "transaction_reference": "UBL-42", "payment_date": "2025-04-15T10:00:00"},
        headers=auth_headers,
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["status"] == "unidentified"

    duplicate = await client.post(
        "/api/v1/suspense", json={"amount": "5", "transaction_reference": "UBL-42"}, headers=auth_headers
    )
    assert duplicate.status_code == 409

    zero = await client.post("/api/v1/suspense", json={"amount": "0"}, headers=auth_headers)
    assert zero.status_code == 422

    listed = await client.get("/api/v1/suspense", headers=auth_headers)
    assert [e["id"] for e in listed.json()] == [entry["id"]]

    reconciled = await client.post(
        f"/api/v1/suspense/{entry['id']}/reconcile",
        json={"student_id": str(seed.student_id)},
        headers=auth_headers,
    )
    assert reconciled.status_code == 200
    body = reconciled.json()
    assert body["entry"]["status"] == "reconciled"
    assert body["voucher"]["id"] == str(v.id)
    assert Decimal(body["voucher"]["paid_amount"]) == Decimal("1200")

    again = await client.post(
        f"/api/v1/suspense/{entry['id']}/reconcile",
        json={"student_id": str(seed.student_id)},
        headers=auth_headers,
    )
    assert again.status_code == 404

    done = await client.get("/api/v1/suspense", params={"status": "reconciled"}, headers=auth_headers)
    assert [e["id"] for e in done.json()] == [entry["id"]]

    anonymous = await client.get("/api/v1/suspense")
    assert anonymous.status_code in (401, 403)
