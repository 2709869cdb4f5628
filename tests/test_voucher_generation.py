"""Voucher generation against a real (SQLite) database."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.vouchers import generator
from app.api.v1.vouchers.schemas import VoucherBatchGenerateRequest, VoucherGenerateRequest
from app.core.exceptions import (
    DuplicatePeriod,
    NoFeeStructure,
    PeriodOutOfSequence,
    ServiceError,
    StudentNotEnrolled,
)
from app.core.models import (
    AcademicYear,
    FeeAuditLog,
    FeeVoucher,
    InstallmentPlan,
    SchoolClass,
    StudentAcademicRecord,
    StudentDiscount,
)

from tests.factories import SeedData, add_fee_head, add_student


def _request(seed: SeedData, year: int = 2025, month: int = 4, **kwargs) -> VoucherGenerateRequest:
    return VoucherGenerateRequest(
        student_id=kwargs.pop("student_id", seed.student_id),
        academic_year_id=seed.academic_year_id,
        year=year,
        month=month,
        **kwargs,
    )


async def _add_plan(db: AsyncSession, seed: SeedData, bill_percent: int, name: str = "60/40", **kwargs) -> InstallmentPlan:
    plan = InstallmentPlan(
        institution_id=kwargs.pop("institution_id", seed.institution_id),
        name=name,
        bill_percent=bill_percent,
        is_active=True,
        **kwargs,
    )
    db.add(plan)
    await db.commit()
    return plan


@pytest.mark.asyncio
async def test_first_voucher_bills_structure_amount(db_session: AsyncSession, seed: SeedData) -> None:
    v = await generator.generate_voucher(db_session, seed.institution_id, _request(seed), created_by=seed.admin_id)

    assert v.current_month_amount == Decimal("5000")
    assert v.billed_amount == Decimal("5000")
    assert v.deferred_amount == 0
    assert v.arrears_brought_forward == 0
    assert v.total_due == Decimal("5000")
    assert v.remaining_amount == Decimal("5000")
    assert v.status == "generated"
    assert v.voucher_number == "SCH-A3K9-202504-00001"
    assert v.due_date == date(2025, 4, 20)
    assert v.installment_plan_id is None
    assert v.bill_percent == 100
    assert [i.fee_head_id for i in v.items] == [seed.tuition_head_id]
    assert v.created_by == seed.admin_id

    audit = (
        await db_session.execute(select(FeeAuditLog).where(FeeAuditLog.reference_id == v.id))
    ).scalar_one()
    assert audit.action_type == "CREATE"
    assert audit.new_value["voucher_number"] == v.voucher_number
    # Money is stored as exact decimal strings, not floats
    assert isinstance(audit.new_value["total_due"], str)
    assert Decimal(audit.new_value["total_due"]) == v.total_due


@pytest.mark.asyncio
async def test_installment_plan_defers_and_next_month_carries_arrears(db_session: AsyncSession, seed: SeedData) -> None:
    plan = await _add_plan(db_session, seed, 60)

    april = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=4))
    assert april.installment_plan_id == plan.id
    assert april.billed_amount == Decimal("3000")
    assert april.deferred_amount == Decimal("2000")
    assert april.total_due == Decimal("3000")

    may = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=5))
    assert may.arrears_brought_forward == Decimal("5000")
    assert may.billed_amount == Decimal("3000")
    assert may.total_due == Decimal("8000")
    assert may.voucher_number == "SCH-A3K9-202505-00002"


@pytest.mark.asyncio
async def test_arrears_come_from_latest_earlier_voucher_across_gaps(db_session: AsyncSession, seed: SeedData) -> None:
    await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=4))
    june = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=6))
    assert june.arrears_brought_forward == Decimal("5000")
    assert june.total_due == Decimal("10000")


@pytest.mark.asyncio
async def test_duplicate_period_rejected_and_single_row_kept(db_session: AsyncSession, seed: SeedData) -> None:
    first = await generator.generate_voucher(db_session, seed.institution_id, _request(seed))

    with pytest.raises(DuplicatePeriod) as exc:
        await generator.generate_voucher(db_session, seed.institution_id, _request(seed))
    assert exc.value.status_code == 409
    assert exc.value.voucher_number == first.voucher_number
    assert str(seed.student_id) in exc.value.message
    assert "2025-04" in exc.value.message

    count = (
        await db_session.execute(select(func.count(FeeVoucher.id)).where(FeeVoucher.student_id == seed.student_id))
    ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_earlier_period_after_later_voucher_is_rejected(db_session: AsyncSession, seed: SeedData) -> None:
    await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=6))
    with pytest.raises(PeriodOutOfSequence) as exc:
        await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=5))
    assert (exc.value.latest_year, exc.value.latest_month) == (2025, 6)


@pytest.mark.asyncio
async def test_missing_fee_structure_is_reported(db_session: AsyncSession, seed: SeedData) -> None:
    other_class = SchoolClass(institution_id=seed.institution_id, name="Grade 6", display_order=6)
    db_session.add(other_class)
    await db_session.flush()
    student_id = await add_student(db_session, seed, "Sara Khan", "sara@acme.test", enrolled=False)
    db_session.add(
        StudentAcademicRecord(
            institution_id=seed.institution_id,
            student_id=student_id,
            academic_year_id=seed.academic_year_id,
            class_id=other_class.id,
            status="ACTIVE",
        )
    )
    await db_session.commit()

    with pytest.raises(NoFeeStructure) as exc:
        await generator.generate_voucher(db_session, seed.institution_id, _request(seed, student_id=student_id))
    assert exc.value.class_id == other_class.id
    assert exc.value.status_code == 400
    assert str(student_id) in exc.value.message


@pytest.mark.asyncio
async def test_student_without_enrollment_is_rejected(db_session: AsyncSession, seed: SeedData) -> None:
    student_id = await add_student(db_session, seed, "Not Enrolled", "ne@acme.test", enrolled=False)
    with pytest.raises(StudentNotEnrolled) as exc:
        await generator.generate_voucher(db_session, seed.institution_id, _request(seed, student_id=student_id))
    assert exc.value.student_id == student_id
    assert "2025-04" in exc.value.message


@pytest.mark.asyncio
async def test_closed_academic_year_is_rejected(db_session: AsyncSession, seed: SeedData) -> None:
    ay = await db_session.get(AcademicYear, seed.academic_year_id)
    ay.status = "CLOSED"
    await db_session.commit()
    with pytest.raises(ServiceError) as exc:
        await generator.generate_voucher(db_session, seed.institution_id, _request(seed))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_discounts_are_applied_per_head_and_overall(db_session: AsyncSession, seed: SeedData) -> None:
    transport = await add_fee_head(db_session, seed, "Transport", 2, Decimal("1000.00"))
    db_session.add_all(
        [
            StudentDiscount(
                institution_id=seed.institution_id,
                student_id=seed.student_id,
                fee_head_id=seed.tuition_head_id,
                discount_type="percentage",
                value=Decimal("15"),
            ),
            StudentDiscount(
                institution_id=seed.institution_id,
                student_id=seed.student_id,
                fee_head_id=None,
                discount_type="amount",
                value=Decimal("100"),
            ),
            StudentDiscount(
                institution_id=seed.institution_id,
                student_id=seed.student_id,
                fee_head_id=None,
                discount_type="amount",
                value=Decimal("900"),
                is_active=False,
            ),
        ]
    )
    await db_session.commit()

    v = await generator.generate_voucher(db_session, seed.institution_id, _request(seed))
    tuition, transport_item = v.items
    assert tuition.discount_amount == Decimal("750")
    assert tuition.final_amount == Decimal("4250")
    assert transport_item.fee_head_id == transport
    assert transport_item.discount_amount == Decimal("100")
    assert v.current_month_amount == Decimal("5150")


@pytest.mark.asyncio
async def test_one_time_head_billed_only_on_first_voucher(db_session: AsyncSession, seed: SeedData) -> None:
    admission = await add_fee_head(db_session, seed, "Admission Fee", 2, Decimal("2500.00"), frequency="ONE_TIME")

    april = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=4))
    may = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=5))

    assert admission in [i.fee_head_id for i in april.items]
    assert admission not in [i.fee_head_id for i in may.items]
    assert may.current_month_amount == Decimal("5000")


@pytest.mark.asyncio
async def test_ad_hoc_head_only_when_requested(db_session: AsyncSession, seed: SeedData) -> None:
    paper = await add_fee_head(db_session, seed, "Paper Charges", 3, Decimal("300.00"), frequency="AD_HOC")

    april = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, month=4))
    assert [i.fee_head_id for i in april.items] == [seed.tuition_head_id]

    may = await generator.generate_voucher(
        db_session,
        seed.institution_id,
        _request(seed, month=5, fee_head_ids=[seed.tuition_head_id, paper]),
    )
    assert [i.fee_head_id for i in may.items] == [seed.tuition_head_id, paper]
    assert may.current_month_amount == Decimal("5300")


@pytest.mark.asyncio
async def test_plan_resolution_prefers_institution_default_over_global(db_session: AsyncSession, seed: SeedData) -> None:
    await _add_plan(db_session, seed, 50, name="Global half", institution_id=None, is_default=True)
    await _add_plan(db_session, seed, 80, name="Eighty")
    default = await _add_plan(db_session, seed, 70, name="Seventy", is_default=True)

    v = await generator.generate_voucher(db_session, seed.institution_id, _request(seed))
    assert v.installment_plan_id == default.id
    assert v.billed_amount == Decimal("3500")


@pytest.mark.asyncio
async def test_global_plan_used_when_institution_has_none(db_session: AsyncSession, seed: SeedData) -> None:
    glob = await _add_plan(db_session, seed, 50, name="Global half", institution_id=None)
    v = await generator.generate_voucher(db_session, seed.institution_id, _request(seed))
    assert v.installment_plan_id == glob.id
    assert v.deferred_amount == Decimal("2500")


@pytest.mark.asyncio
async def test_explicit_due_date_and_due_day_clamp(db_session: AsyncSession, seed: SeedData) -> None:
    feb = await generator.generate_voucher(db_session, seed.institution_id, _request(seed, year=2026, month=2, due_day=31))
    assert feb.due_date == date(2026, 2, 28)
    march = await generator.generate_voucher(
        db_session, seed.institution_id, _request(seed, year=2026, month=3, due_date=date(2026, 3, 5))
    )
    assert march.due_date == date(2026, 3, 5)


@pytest.mark.asyncio
async def test_batch_collects_failures_and_keeps_successes(
    db_session: AsyncSession, session_factory, seed: SeedData
) -> None:
    second = await add_student(db_session, seed, "Hina Shah", "hina@acme.test")
    not_enrolled = await add_student(db_session, seed, "Left School", "left@acme.test", enrolled=False)
    await generator.generate_voucher(db_session, seed.institution_id, _request(seed, student_id=second))

    result = await generator.generate_vouchers_batch(
        session_factory,
        seed.institution_id,
        VoucherBatchGenerateRequest(
            student_ids=[seed.student_id, second, not_enrolled, seed.student_id],
            academic_year_id=seed.academic_year_id,
            year=2025,
            month=4,
        ),
    )

    assert [v.student_id for v in result.generated] == [seed.student_id]
    errors = {f.student_id: f.error for f in result.failed}
    assert errors == {second: "DUPLICATE_PERIOD", not_enrolled: "STUDENT_NOT_ENROLLED"}


@pytest.mark.asyncio
async def test_batch_reports_infrastructure_errors(
    db_session: AsyncSession, session_factory, seed: SeedData, monkeypatch
) -> None:
    async def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(generator, "generate_voucher", broken)
    result = await generator.generate_vouchers_batch(
        session_factory,
        seed.institution_id,
        VoucherBatchGenerateRequest(
            student_ids=[seed.student_id],
            academic_year_id=seed.academic_year_id,
            year=2025,
            month=4,
        ),
    )
    assert result.generated == []
    assert result.failed[0].error == generator.INFRASTRUCTURE_ERROR
