"""Voucher and receipt numbers backed by per-(institution, year, type) counter rows."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import CounterType
from app.core.models import DocumentCounter, Institution


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    return sqlite_insert if dialect == "sqlite" else pg_insert


async def next_sequence(db: AsyncSession, institution_id: UUID, year: int, counter_type: CounterType) -> int:
    """
    Increment and return the counter inside the caller's transaction.
    The UPDATE holds the row lock until commit, so two writers never read the same value;
    a rolled-back transaction gives its number back.
    """
    insert = _insert_for(db)
    await db.execute(
        insert(DocumentCounter)
        .values(institution_id=institution_id, year=year, counter_type=counter_type.value, seq=0)
        .on_conflict_do_nothing(index_elements=["institution_id", "year", "counter_type"])
    )
    key = (
        DocumentCounter.institution_id == institution_id,
        DocumentCounter.year == year,
        DocumentCounter.counter_type == counter_type.value,
    )
    await db.execute(
        update(DocumentCounter)
        .where(*key)
        .values(seq=DocumentCounter.seq + 1)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(select(DocumentCounter.seq).where(*key))).scalar_one()


async def _organization_code(db: AsyncSession, institution_id: UUID) -> str:
    code = (
        await db.execute(select(Institution.organization_code).where(Institution.id == institution_id))
    ).scalar_one_or_none()
    return (code or "INST").strip().upper()


async def next_voucher_number(db: AsyncSession, institution_id: UUID, year: int, month: int) -> str:
    """<ORGCODE>-<YYYY><MM>-<seq:05d>; the sequence restarts every calendar year."""
    seq = await next_sequence(db, institution_id, year, CounterType.VOUCHER)
    org_code = await _organization_code(db, institution_id)
    return f"{org_code}-{year:04d}{month:02d}-{seq:05d}"


async def next_receipt_number(db: AsyncSession, institution_id: UUID, year: int) -> str:
    seq = await next_sequence(db, institution_id, year, CounterType.RECEIPT)
    return f"RCP-{year:04d}-{seq:06d}"
