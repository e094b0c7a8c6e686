"""
tests/test_ops.py
Operator console: verification queue, expertise requests, registry changes, audit trail,
dashboard, leaderboard and practitioner detail.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.case.service import accept_case, decline_case
from services.practitioner.service import request_expertise_tag, review_expertise_request
from shared.errors.errors import AlreadyReviewed
from shared.models.models import (
    CaseStatus,
    ExpertiseTag,
    Notification,
    NotificationType,
    OperatorAuditLog,
    Payout,
    PayoutStatus,
    Practitioner,
    User,
    VerificationStatus,
)
from tests.conftest import auth_headers


# ── Verification Queue ────────────────────────────────────────

@pytest.mark.asyncio
async def test_pending_queue_oldest_first(client: AsyncClient, operator: User, make_practitioner):
    first = await make_practitioner(name="Adv. First", status=VerificationStatus.PENDING)
    second = await make_practitioner(name="Adv. Second", status=VerificationStatus.PENDING)
    await make_practitioner(name="Adv. Verified")

    response = await client.get("/ops/practitioners/pending", headers=auth_headers(operator))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["total_pages"] == 1
    assert [p["id"] for p in data["items"]] == [str(first.id), str(second.id)]


@pytest.mark.asyncio
async def test_verify_practitioner(
    client: AsyncClient, db: AsyncSession, operator: User, make_practitioner
):
    pending = await make_practitioner(status=VerificationStatus.PENDING)
    response = await client.post(
        f"/ops/practitioners/{pending.id}/verify",
        headers=auth_headers(operator),
        json={"notes": "Enrolment checked with the bar council"},
    )
    assert response.status_code == 200
    assert response.json()["verification_status"] == "VERIFIED"
    assert response.json()["verified_at"] is not None

    log = await db.scalar(select(OperatorAuditLog).where(OperatorAuditLog.action == "VERIFY_PRACTITIONER"))
    assert log.operator_id == operator.id
    assert log.entity_id == str(pending.id)

    notification = await db.scalar(
        select(Notification).where(
            Notification.user_id == pending.user_id,
            Notification.type == NotificationType.ACCOUNT_VERIFIED,
        )
    )
    assert notification is not None


@pytest.mark.asyncio
async def test_verify_twice_rejected(client: AsyncClient, operator: User, practitioner: Practitioner):
    response = await client.post(
        f"/ops/practitioners/{practitioner.id}/verify", headers=auth_headers(operator), json={}
    )
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_VERIFIED"


@pytest.mark.asyncio
async def test_reject_practitioner(client: AsyncClient, operator: User, make_practitioner):
    pending = await make_practitioner(status=VerificationStatus.PENDING)
    response = await client.post(
        f"/ops/practitioners/{pending.id}/reject",
        headers=auth_headers(operator),
        json={"reason": "Enrolment number does not match"},
    )
    assert response.status_code == 200
    assert response.json()["verification_status"] == "REJECTED"
    assert response.json()["verification_notes"] == "Enrolment number does not match"


# ── Registry Changes ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_expertise_keeps_order_and_drops_duplicates(
    client: AsyncClient, operator: User, practitioner: Practitioner
):
    response = await client.put(
        f"/ops/practitioners/{practitioner.id}/expertise",
        headers=auth_headers(operator),
        json={"tags": ["RERA_MATTERS", "TITLE_OPINIONS", "RERA_MATTERS"]},
    )
    assert response.status_code == 200
    assert response.json()["expertise_tags"] == ["RERA_MATTERS", "TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_assign_unknown_tag_rejected(client: AsyncClient, operator: User, practitioner: Practitioner):
    response = await client.put(
        f"/ops/practitioners/{practitioner.id}/expertise",
        headers=auth_headers(operator),
        json={"tags": ["MARITIME_LAW"]},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_assign_expertise_needs_verified_practitioner(
    client: AsyncClient, operator: User, make_practitioner
):
    pending = await make_practitioner(status=VerificationStatus.PENDING)
    response = await client.put(
        f"/ops/practitioners/{pending.id}/expertise",
        headers=auth_headers(operator),
        json={"tags": [ExpertiseTag.RERA_MATTERS.value]},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "PRACTITIONER_NOT_VERIFIED"


@pytest.mark.asyncio
async def test_update_commission_rate(
    client: AsyncClient, db: AsyncSession, operator: User, practitioner: Practitioner
):
    response = await client.patch(
        f"/ops/practitioners/{practitioner.id}/commission",
        headers=auth_headers(operator),
        json={"commission_rate": 14},
    )
    assert response.status_code == 200
    assert response.json()["commission_rate"] == 14
    assert response.json()["tier"] == "PREFERRED"

    log = await db.scalar(select(OperatorAuditLog).where(OperatorAuditLog.action == "UPDATE_COMMISSION"))
    assert log.payload == {"commission_rate": 14, "tier": "PREFERRED"}


@pytest.mark.asyncio
async def test_commission_rate_out_of_bounds(
    client: AsyncClient, db: AsyncSession, operator: User, practitioner: Practitioner
):
    response = await client.patch(
        f"/ops/practitioners/{practitioner.id}/commission",
        headers=auth_headers(operator),
        json={"commission_rate": 35},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "RATE_OUT_OF_BOUNDS"

    await db.refresh(practitioner)
    assert practitioner.commission_rate == 20
    assert await db.scalar(select(OperatorAuditLog)) is None


@pytest.mark.asyncio
async def test_suspend_blocked_by_active_cases(
    client: AsyncClient, operator: User, practitioner: Practitioner, make_case
):
    await make_case(practitioner, status=CaseStatus.IN_PROGRESS)
    response = await client.post(
        f"/ops/practitioners/{practitioner.id}/suspend",
        headers=auth_headers(operator),
        json={"reason": "Repeated missed deadlines"},
    )
    assert response.status_code == 409
    assert response.json()["code"] == "HAS_ACTIVE_CASES"


@pytest.mark.asyncio
async def test_suspend_and_reinstate(
    client: AsyncClient, operator: User, practitioner: Practitioner, make_case
):
    await make_case(practitioner, status=CaseStatus.COMPLETED)
    suspended = await client.post(
        f"/ops/practitioners/{practitioner.id}/suspend",
        headers=auth_headers(operator),
        json={"reason": "Repeated missed deadlines"},
    )
    assert suspended.status_code == 200
    assert suspended.json()["verification_status"] == "SUSPENDED"

    reinstated = await client.post(
        f"/ops/practitioners/{practitioner.id}/reinstate", headers=auth_headers(operator)
    )
    assert reinstated.status_code == 200
    assert reinstated.json()["verification_status"] == "VERIFIED"

    logs = await client.get(
        "/ops/audit-logs", headers=auth_headers(operator), params={"entity_type": "practitioner"}
    )
    assert {log["action"] for log in logs.json()} == {"SUSPEND_PRACTITIONER", "REINSTATE_PRACTITIONER"}


@pytest.mark.asyncio
async def test_operator_sets_dnd(client: AsyncClient, operator: User, practitioner: Practitioner):
    response = await client.patch(
        f"/ops/practitioners/{practitioner.id}/dnd", headers=auth_headers(operator), json={"enabled": True}
    )
    assert response.status_code == 200
    assert response.json()["dnd_enabled"] is True


# ── Dashboard & Leaderboard ───────────────────────────────────

@pytest.mark.asyncio
async def test_dashboard_counts(
    client: AsyncClient, db: AsyncSession, operator: User, practitioner: Practitioner, make_practitioner, make_case
):
    await make_case(practitioner, status=CaseStatus.ASSIGNED)
    await make_case(practitioner, status=CaseStatus.IN_PROGRESS)
    await make_case(practitioner, status=CaseStatus.OPINION_SUBMITTED)
    completed = await make_case(practitioner, status=CaseStatus.COMPLETED)
    await make_practitioner(name="Adv. Pending", status=VerificationStatus.PENDING)
    db.add(
        Payout(
            case_id=completed.id,
            practitioner_id=practitioner.id,
            gross_fee=500000,
            commission_rate=20,
            commission_amount=100000,
            net_amount=400000,
            status=PayoutStatus.PENDING,
        )
    )
    await db.commit()

    response = await client.get("/ops/dashboard", headers=auth_headers(operator))
    assert response.status_code == 200
    assert response.json() == {
        "assigned": 1,
        "in_progress": 1,
        "awaiting_review": 1,
        "completed_this_month": 1,
        "pending_verifications": 1,
        "payouts_pending": 1,
    }


@pytest.mark.asyncio
async def test_leaderboard(client: AsyncClient, operator: User, make_practitioner):
    busy = await make_practitioner(name="Adv. Busy", completed_case_count=40, rating_avg="4.10")
    star = await make_practitioner(name="Adv. Star", completed_case_count=40, rating_avg="4.90")
    await make_practitioner(name="Adv. New", completed_case_count=2, rating_avg="5.00")
    await make_practitioner(name="Adv. Mysuru", city="Mysuru", completed_case_count=90)

    response = await client.get(
        "/ops/leaderboard", headers=auth_headers(operator), params={"city": "bengaluru", "limit": 2}
    )
    assert response.status_code == 200
    assert [row["practitioner_id"] for row in response.json()] == [str(star.id), str(busy.id)]
    assert response.json()[0]["name"] == "Adv. Star"


# ── Practitioner Detail ───────────────────────────────────────

@pytest.mark.asyncio
async def test_practitioner_detail(
    client: AsyncClient,
    db: AsyncSession,
    operator: User,
    practitioner: Practitioner,
    practitioner_user: User,
    make_case,
):
    first = await make_case(practitioner)
    second = await make_case(practitioner)
    third = await make_case(practitioner)
    await make_case(practitioner)
    await accept_case(db, first.id, practitioner, practitioner_user)
    await decline_case(db, second.id, practitioner, "Workload full", practitioner_user)
    await decline_case(db, third.id, practitioner, "Other: Travelling", practitioner_user)
    await db.commit()

    response = await client.get(f"/ops/practitioners/{practitioner.id}", headers=auth_headers(operator))
    assert response.status_code == 200
    data = response.json()
    assert data["practitioner"]["decline_count"] == 2
    assert data["active_case_count"] == 2
    assert data["acceptance_rate"] == pytest.approx(0.25)
    assert data["decline_rate"] == pytest.approx(0.5)
    assert data["decline_reasons"] == {"Workload full": 1, "Other": 1}
    assert data["rating_summary"]["rating_count"] == 0


# ── Access ────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/ops/dashboard"),
        ("get", "/ops/leaderboard"),
        ("get", "/ops/audit-logs"),
        ("get", "/ops/practitioners/pending"),
        ("get", "/ops/expertise-requests/pending"),
    ],
)
async def test_console_is_operator_only(client: AsyncClient, customer: User, method, path):
    response = await getattr(client, method)(path, headers=auth_headers(customer))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_console_requires_authentication(client: AsyncClient):
    response = await client.get("/ops/dashboard")
    assert response.status_code == 401


# ── Expertise Requests ────────────────────────────────────────

@pytest.mark.asyncio
async def test_expertise_queue_oldest_first(
    client: AsyncClient, db: AsyncSession, operator: User, practitioner: Practitioner
):
    first = await request_expertise_tag(db, practitioner, "RERA_MATTERS")
    second = await request_expertise_tag(db, practitioner, "LDA_DISPUTES")
    await db.commit()

    response = await client.get("/ops/expertise-requests/pending", headers=auth_headers(operator))
    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == [str(first.id), str(second.id)]


@pytest.mark.asyncio
async def test_approve_expertise_request_appends_tag(
    client: AsyncClient, db: AsyncSession, session_factory, operator: User, practitioner: Practitioner
):
    request = await request_expertise_tag(db, practitioner, "RERA_MATTERS")
    await db.commit()

    response = await client.post(
        f"/ops/expertise-requests/{request.id}/review",
        headers=auth_headers(operator),
        json={"action": "approve"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "APPROVED"
    assert data["reviewed_by_id"] == str(operator.id)
    assert data["reviewed_at"] is not None

    async with session_factory() as fresh:
        stored = await fresh.get(Practitioner, practitioner.id)
        assert stored.expertise_tags == ["TITLE_OPINIONS", "RERA_MATTERS"]
        log = await fresh.scalar(
            select(OperatorAuditLog).where(OperatorAuditLog.action == "APPROVE_EXPERTISE_REQUEST")
        )
        assert log.entity_id == str(request.id)
        assert log.payload["tag"] == "RERA_MATTERS"

    queue = await client.get("/ops/expertise-requests/pending", headers=auth_headers(operator))
    assert queue.json() == []


@pytest.mark.asyncio
async def test_approving_a_held_tag_keeps_one_copy(
    db: AsyncSession, session_factory, operator: User, practitioner: Practitioner
):
    request = await request_expertise_tag(db, practitioner, "TITLE_OPINIONS")
    await review_expertise_request(db, request.id, operator, approve=True)
    await db.commit()

    async with session_factory() as fresh:
        stored = await fresh.get(Practitioner, practitioner.id)
        assert stored.expertise_tags == ["TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_reject_expertise_request(
    client: AsyncClient, db: AsyncSession, session_factory, operator: User, practitioner: Practitioner
):
    request = await request_expertise_tag(db, practitioner, "RERA_MATTERS")
    await db.commit()

    missing_reason = await client.post(
        f"/ops/expertise-requests/{request.id}/review",
        headers=auth_headers(operator),
        json={"action": "reject"},
    )
    assert missing_reason.status_code == 422
    assert missing_reason.json()["code"] == "REASON_REQUIRED"

    response = await client.post(
        f"/ops/expertise-requests/{request.id}/review",
        headers=auth_headers(operator),
        json={"action": "reject", "rejection_reason": "No RERA matters on record"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "REJECTED"
    assert response.json()["rejection_reason"] == "No RERA matters on record"

    async with session_factory() as fresh:
        stored = await fresh.get(Practitioner, practitioner.id)
        assert stored.expertise_tags == ["TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_expertise_request_reviewed_once(
    client: AsyncClient, db: AsyncSession, operator: User, practitioner: Practitioner
):
    request = await request_expertise_tag(db, practitioner, "RERA_MATTERS")
    await review_expertise_request(db, request.id, operator, approve=True)
    await db.commit()

    with pytest.raises(AlreadyReviewed):
        await review_expertise_request(db, request.id, operator, approve=False, rejection_reason="Too late")

    response = await client.post(
        f"/ops/expertise-requests/{uuid.uuid4()}/review",
        headers=auth_headers(operator),
        json={"action": "approve"},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "EXPERTISE_REQUEST_NOT_FOUND"
