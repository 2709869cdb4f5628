"""HTTP tests for fee heads, class fee structures, installment plans and student discounts."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.security import create_access_token
from app.core.models import FeeAuditLog

from tests.factories import SeedData

FEES = "/api/v1/fees"


async def _platform_headers(db: AsyncSession, seed: SeedData) -> dict:
    owner = User(
        institution_id=seed.institution_id,
        full_name="Platform Owner",
        email="owner@platform.test",
        role="SUPER_ADMIN",
        status="ACTIVE",
    )
    db.add(owner)
    await db.commit()
    token = create_access_token(
        subject={"user_id": str(owner.id), "institution_id": str(seed.institution_id), "role": "SUPER_ADMIN"}
    )
    return {"Authorization": f"Bearer {token}"}


# --- Fee heads and structures ---
@pytest.mark.asyncio
async def test_fee_heads_are_ordered_by_priority(client: AsyncClient, auth_headers: dict, seed: SeedData) -> None:
    resp = await client.post(
        f"{FEES}/heads",
        json={"name": "Transport Fee", "priority": 2, "account_type": "INCOME"},
        headers=auth_headers,
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["frequency"] == "MONTHLY"

    clash = await client.post(
        f"{FEES}/heads",
        json={"name": "Library Fee", "priority": 1, "account_type": "INCOME"},
        headers=auth_headers,
    )
    assert clash.status_code == 409

    heads = (await client.get(f"{FEES}/heads", headers=auth_headers)).json()
    assert [h["name"] for h in heads] == ["Tuition Fee", "Transport Fee"]


@pytest.mark.asyncio
async def test_class_fee_structure_grouped_by_class(client: AsyncClient, auth_headers: dict, seed: SeedData) -> None:
    head = (
        await client.post(
            f"{FEES}/heads",
            json={"name": "Exam Fee", "priority": 3, "account_type": "INCOME", "frequency": "ONE_TIME"},
            headers=auth_headers,
        )
    ).json()
    created = await client.post(
        f"{FEES}/structures",
        json={
            "academic_year_id": str(seed.academic_year_id),
            "class_id": str(seed.class_id),
            "fee_head_id": head["id"],
            "amount": "750.00",
        },
        headers=auth_headers,
    )
    assert created.status_code == 201, created.text

    duplicate = await client.post(
        f"{FEES}/structures",
        json={
            "academic_year_id": str(seed.academic_year_id),
            "class_id": str(seed.class_id),
            "fee_head_id": head["id"],
            "amount": "800.00",
        },
        headers=auth_headers,
    )
    assert duplicate.status_code == 409

    unknown_class = await client.post(
        f"{FEES}/structures",
        json={
            "academic_year_id": str(seed.academic_year_id),
            "class_id": str(uuid4()),
            "fee_head_id": head["id"],
            "amount": "10",
        },
        headers=auth_headers,
    )
    assert unknown_class.status_code == 400

    listed = await client.get(
        f"{FEES}/structures", params={"academic_year_id": str(seed.academic_year_id)}, headers=auth_headers
    )
    groups = listed.json()
    assert len(groups) == 1
    assert groups[0]["class_name"] == "Grade 5"
    assert [i["fee_head_name"] for i in groups[0]["items"]] == ["Tuition Fee", "Exam Fee"]
    assert Decimal(groups[0]["items"][1]["amount"]) == Decimal("750")


# --- Installment plans ---
@pytest.mark.asyncio
async def test_only_one_default_plan_per_institution(client: AsyncClient, auth_headers: dict, seed: SeedData) -> None:
    first = await client.post(
        f"{FEES}/installment-plans",
        json={"name": "Sixty-forty", "bill_percent": 60, "is_default": True},
        headers=auth_headers,
    )
    assert first.status_code == 201, first.text
    second = await client.post(
        f"{FEES}/installment-plans",
        json={"name": "Half", "bill_percent": 50, "is_default": True},
        headers=auth_headers,
    )
    assert second.status_code == 201

    plans = {p["name"]: p for p in (await client.get(f"{FEES}/installment-plans", headers=auth_headers)).json()}
    assert plans["Half"]["is_default"] is True
    assert plans["Sixty-forty"]["is_default"] is False

    same_name = await client.post(
        f"{FEES}/installment-plans", json={"name": "Half", "bill_percent": 40}, headers=auth_headers
    )
    assert same_name.status_code == 409

    out_of_range = await client.post(
        f"{FEES}/installment-plans", json={"name": "Nothing", "bill_percent": 0}, headers=auth_headers
    )
    assert out_of_range.status_code == 422


@pytest.mark.asyncio
async def test_global_plans_need_platform_role(
    client: AsyncClient, auth_headers: dict, seed: SeedData, db_session: AsyncSession
) -> None:
    denied = await client.post(
        f"{FEES}/installment-plans",
        json={"name": "Platform default", "bill_percent": 70, "is_global": True},
        headers=auth_headers,
    )
    assert denied.status_code == 403

    platform = await _platform_headers(db_session, seed)
    created = await client.post(
        f"{FEES}/installment-plans",
        json={"name": "Platform default", "bill_percent": 70, "is_global": True, "is_default": True},
        headers=platform,
    )
    assert created.status_code == 201, created.text
    plan = created.json()
    assert plan["institution_id"] is None

    visible = await client.get(f"{FEES}/installment-plans", headers=auth_headers)
    assert [p["id"] for p in visible.json()] == [plan["id"]]
    hidden = await client.get(f"{FEES}/installment-plans", params={"include_global": False}, headers=auth_headers)
    assert hidden.json() == []

    blocked = await client.patch(f"{FEES}/installment-plans/{plan['id']}/deactivate", headers=auth_headers)
    assert blocked.status_code == 403
    done = await client.patch(f"{FEES}/installment-plans/{plan['id']}/deactivate", headers=platform)
    assert done.status_code == 200
    assert done.json()["is_active"] is False
    assert done.json()["is_default"] is False


@pytest.mark.asyncio
async def test_deactivate_unknown_plan_is_404(client: AsyncClient, auth_headers: dict, seed: SeedData) -> None:
    resp = await client.patch(f"{FEES}/installment-plans/{uuid4()}/deactivate", headers=auth_headers)
    assert resp.status_code == 404


# --- Student discounts ---
@pytest.mark.asyncio
async def test_student_discount_lifecycle(
    client: AsyncClient, auth_headers: dict, seed: SeedData, db_session: AsyncSession
) -> None:
    created = await client.post(
        f"{FEES}/discounts",
        json={
            "student_id": str(seed.student_id),
            "fee_head_id": str(seed.tuition_head_id),
            "discount_type": "percentage",
            "value": "15",
            "reason": " Sibling ",
        },
        headers=auth_headers,
    )
    assert created.status_code == 201, created.text
    discount = created.json()
    assert discount["reason"] == "Sibling"

    listed = await client.get(f"{FEES}/discounts", params={"student_id": str(seed.student_id)}, headers=auth_headers)
    assert [d["id"] for d in listed.json()] == [discount["id"]]

    deactivated = await client.patch(f"{FEES}/discounts/{discount['id']}/deactivate", headers=auth_headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    active = await client.get(f"{FEES}/discounts", headers=auth_headers)
    assert active.json() == []
    everything = await client.get(f"{FEES}/discounts", params={"active_only": False}, headers=auth_headers)
    assert len(everything.json()) == 1

    actions = (
        await db_session.execute(
            select(FeeAuditLog.action_type).where(FeeAuditLog.reference_table == "student_discounts")
        )
    ).scalars().all()
    assert sorted(actions) == ["CREATE", "DEACTIVATE"]


@pytest.mark.asyncio
async def test_discount_validation(client: AsyncClient, auth_headers: dict, seed: SeedData) -> None:
    too_much = await client.post(
        f"{FEES}/discounts",
        json={"student_id": str(seed.student_id), "discount_type": "percentage", "value": "120"},
        headers=auth_headers,
    )
    assert too_much.status_code == 422

    flat_is_fine = await client.post(
        f"{FEES}/discounts",
        json={"student_id": str(seed.student_id), "discount_type": "amount", "value": "1200"},
        headers=auth_headers,
    )
    assert flat_is_fine.status_code == 201
    assert flat_is_fine.json()["fee_head_id"] is None

    unknown_student = await client.post(
        f"{FEES}/discounts",
        json={"student_id": str(uuid4()), "discount_type": "amount", "value": "100"},
        headers=auth_headers,
    )
    assert unknown_student.status_code == 400

    unknown_head = await client.post(
        f"{FEES}/discounts",
        json={
            "student_id": str(seed.student_id),
            "fee_head_id": str(uuid4()),
            "discount_type": "amount",
            "value": "100",
        },
        headers=auth_headers,
    )
    assert unknown_head.status_code == 400

    missing = await client.patch(f"{FEES}/discounts/{uuid4()}/deactivate", headers=auth_headers)
    assert missing.status_code == 404
