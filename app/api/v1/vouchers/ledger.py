"""
Voucher ledger: storage and lookup of fee vouchers.

Uniqueness of (institution, student, year, month) and of voucher_number is enforced by table
constraints; insert() lets the IntegrityError through so callers can report the duplicate.
After insert, only the payment fields change, and only through update_payment_fields().
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import VoucherStatus
from app.core.models import FeeVoucher, FeeVoucherItem


def _period_key(year: int, month: int) -> int:
    return year * 12 + month


_voucher_period = FeeVoucher.year * 12 + FeeVoucher.month


def _student_vouchers(institution_id: UUID, student_id: UUID):
    return select(FeeVoucher).where(
        FeeVoucher.institution_id == institution_id,
        FeeVoucher.student_id == student_id,
    )


async def get_by_id(
    db: AsyncSession, institution_id: UUID, voucher_id: UUID, fresh: bool = False
) -> Optional[FeeVoucher]:
    """fresh=True overwrites any copy already held by the session with the stored row."""
    stmt = select(FeeVoucher).where(FeeVoucher.id == voucher_id, FeeVoucher.institution_id == institution_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_by_period(
    db: AsyncSession, institution_id: UUID, student_id: UUID, year: int, month: int
) -> Optional[FeeVoucher]:
    stmt = _student_vouchers(institution_id, student_id).where(FeeVoucher.year == year, FeeVoucher.month == month)
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_latest_before_period(
    db: AsyncSession, institution_id: UUID, student_id: UUID, year: int, month: int
) -> Optional[FeeVoucher]:
    """The student's voucher with the greatest (year, month) strictly before the given period."""
    stmt = (
        _student_vouchers(institution_id, student_id)
        .where(_voucher_period < _period_key(year, month))
        .order_by(FeeVoucher.year.desc(), FeeVoucher.month.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_latest_for_student(db: AsyncSession, institution_id: UUID, student_id: UUID) -> Optional[FeeVoucher]:
    stmt = (
        _student_vouchers(institution_id, student_id)
        .order_by(FeeVoucher.year.desc(), FeeVoucher.month.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_by_voucher_number(db: AsyncSession, institution_id: UUID, voucher_number: str) -> Optional[FeeVoucher]:
    stmt = select(FeeVoucher).where(
        FeeVoucher.institution_id == institution_id,
        FeeVoucher.voucher_number == voucher_number,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_for_period(
    db: AsyncSession,
    institution_id: UUID,
    year: int,
    month: int,
    status: Optional[VoucherStatus] = None,
) -> List[FeeVoucher]:
    stmt = select(FeeVoucher).where(
        FeeVoucher.institution_id == institution_id,
        FeeVoucher.year == year,
        FeeVoucher.month == month,
    )
    if status is not None:
        stmt = stmt.where(FeeVoucher.status == status.value)
    stmt = stmt.order_by(FeeVoucher.voucher_number)
    return list((await db.execute(stmt)).scalars().all())


async def list_for_student(db: AsyncSession, institution_id: UUID, student_id: UUID) -> List[FeeVoucher]:
    stmt = _student_vouchers(institution_id, student_id).order_by(FeeVoucher.year, FeeVoucher.month)
    return list((await db.execute(stmt)).scalars().all())


async def billed_fee_heads_before(
    db: AsyncSession,
    institution_id: UUID,
    student_id: UUID,
    year: int,
    month: int,
    fee_head_ids: Iterable[UUID],
) -> Set[UUID]:
    """Which of the given fee heads already appear on one of the student's earlier vouchers."""
    ids = list(fee_head_ids)
    if not ids:
        return set()
    stmt = (
        select(FeeVoucherItem.fee_head_id)
        .join(FeeVoucher, FeeVoucherItem.voucher_id == FeeVoucher.id)
        .where(
            FeeVoucher.institution_id == institution_id,
            FeeVoucher.student_id == student_id,
            _voucher_period < _period_key(year, month),
            FeeVoucherItem.fee_head_id.in_(ids),
        )
        .distinct()
    )
    return set((await db.execute(stmt)).scalars().all())


async def insert(db: AsyncSession, voucher: FeeVoucher) -> FeeVoucher:
    """Stage the voucher and its items and flush; raises IntegrityError on a duplicate period or number."""
    db.add(voucher)
    await db.flush()
    return voucher


async def update_payment_fields(
    db: AsyncSession,
    voucher_id: UUID,
    expected_paid_amount: Decimal,
    paid_amount: Decimal,
    remaining_amount: Decimal,
    status: VoucherStatus,
    last_payment_date: Optional[datetime],
) -> bool:
    """
    Conditional update of the payment fields only.
    Applies only if paid_amount still equals expected_paid_amount; returns False when another
    writer got there first (nothing is changed in that case).
    """
    stmt = (
        update(FeeVoucher)
        .where(FeeVoucher.id == voucher_id, FeeVoucher.paid_amount == expected_paid_amount)
        .values(
            paid_amount=paid_amount,
            remaining_amount=remaining_amount,
            status=status.value,
            last_payment_date=last_payment_date,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def latest_per_student(db: AsyncSession, institution_id: UUID) -> List[Tuple[FeeVoucher, Optional[str]]]:
    """Each student's latest voucher with the student's name."""
    latest = (
        select(FeeVoucher.student_id, func.max(_voucher_period).label("period_key"))
        .where(FeeVoucher.institution_id == institution_id)
        .group_by(FeeVoucher.student_id)
        .subquery()
    )
    stmt = (
        select(FeeVoucher, User.full_name)
        .join(
            latest,
            and_(
                FeeVoucher.student_id == latest.c.student_id,
                FeeVoucher.year * 12 + FeeVoucher.month == latest.c.period_key,
            ),
        )
        .outerjoin(User, User.id == FeeVoucher.student_id)
        .where(FeeVoucher.institution_id == institution_id)
        .order_by(User.full_name, FeeVoucher.voucher_number)
    )
    return [(voucher, name) for voucher, name in (await db.execute(stmt)).all()]
