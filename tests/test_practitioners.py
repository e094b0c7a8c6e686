"""
tests/test_practitioners.py
Practitioner registry: registration, commission tiers, do-not-disturb
and bank accounts.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.practitioner.service import (
    derive_tier,
    get_default_bank_account,
    update_commission_rate,
    validate_commission_rate,
)
from shared.errors.errors import RateOutOfBounds
from shared.models.models import (
    CaseStatus,
    Practitioner,
    PractitionerTier,
    User,
    UserRole,
    VerificationStatus,
)
from shared.utils.security import decrypt_account_number
from tests.conftest import auth_headers

REGISTRATION = {
    "bar_council_number": "KAR/1234/2012",
    "state_bar_council": "Karnataka",
    "admission_year": 2012,
    "city": "Bengaluru",
}


# ── Commission & Tier ─────────────────────────────────────────

@pytest.mark.parametrize("rate, tier", [(10, "PREFERRED"), (15, "PREFERRED"), (16, "STANDARD"), (30, "STANDARD")])
def test_tier_follows_commission_rate(rate, tier):
    assert derive_tier(rate) == PractitionerTier(tier)


@pytest.mark.parametrize("rate", [9, 31, 0, 100])
def test_commission_rate_bounds(rate):
    with pytest.raises(RateOutOfBounds):
        validate_commission_rate(rate)


@pytest.mark.asyncio
async def test_update_commission_rate_moves_tier(db: AsyncSession, practitioner: Practitioner):
    updated = await update_commission_rate(db, practitioner.id, 12)
    assert updated.commission_rate == 12
    assert updated.tier == PractitionerTier.PREFERRED


# ── Registration ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_creates_pending_profile(client: AsyncClient, db: AsyncSession, customer: User):
    response = await client.post("/practitioners/register", headers=auth_headers(customer), json=REGISTRATION)
    assert response.status_code == 201
    data = response.json()
    assert data["verification_status"] == "PENDING"
    assert data["commission_rate"] == 20
    assert data["tier"] == "STANDARD"
    assert data["expertise_tags"] == []
    assert data["display_name"] == customer.name

    await db.refresh(customer)
    assert customer.role == UserRole.PRACTITIONER


@pytest.mark.asyncio
async def test_rejected_profile_can_resubmit(
    client: AsyncClient, db: AsyncSession, make_practitioner
):
    rejected = await make_practitioner(status=VerificationStatus.REJECTED)
    user = await db.get(User, rejected.user_id)
    response = await client.post(
        "/practitioners/register", headers=auth_headers(user), json={**REGISTRATION, "city": "Mysuru"}
    )
    assert response.status_code == 201
    assert response.json()["id"] == str(rejected.id)
    assert response.json()["verification_status"] == "PENDING"
    assert response.json()["city"] == "Mysuru"


@pytest.mark.asyncio
async def test_verified_profile_cannot_resubmit(client: AsyncClient, practitioner_user: User):
    response = await client.post(
        "/practitioners/register", headers=auth_headers(practitioner_user), json=REGISTRATION
    )
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_VERIFIED"


@pytest.mark.asyncio
async def test_my_profile(client: AsyncClient, practitioner: Practitioner, practitioner_user: User):
    response = await client.get("/practitioners/me", headers=auth_headers(practitioner_user))
    assert response.status_code == 200
    assert response.json()["id"] == str(practitioner.id)
    assert response.json()["expertise_tags"] == ["TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_customers_have_no_practitioner_profile(client: AsyncClient, customer: User):
    response = await client.get("/practitioners/me", headers=auth_headers(customer))
    assert response.status_code == 403


# ── Do Not Disturb ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_toggle_dnd(client: AsyncClient, practitioner_user: User):
    response = await client.patch(
        "/practitioners/me/dnd", headers=auth_headers(practitioner_user), json={"enabled": True}
    )
    assert response.status_code == 200
    assert response.json()["dnd_enabled"] is True

    off = await client.patch(
        "/practitioners/me/dnd", headers=auth_headers(practitioner_user), json={"enabled": False}
    )
    assert off.json()["dnd_enabled"] is False


# ── Bank Accounts ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bank_accounts_masked_and_default_switches(
    client: AsyncClient, db: AsyncSession, make_practitioner
):
    practitioner = await make_practitioner(with_bank_account=False)
    user = await db.get(User, practitioner.user_id)
    headers = auth_headers(user)

    first = await client.post(
        "/practitioners/me/bank-accounts",
        headers=headers,
        json={
            "account_holder_name": "Priya Nair",
            "bank_name": "HDFC Bank",
            "account_number": "50100012345678",
            "ifsc": "hdfc0001234",
        },
    )
    assert first.status_code == 201
    assert first.json()["account_number_masked"] == "XXXX-5678"
    assert first.json()["ifsc"] == "HDFC0001234"
    assert first.json()["is_default"] is True
    assert "account_number" not in first.json()

    second = await client.post(
        "/practitioners/me/bank-accounts",
        headers=headers,
        json={
            "account_holder_name": "Priya Nair",
            "bank_name": "State Bank of India",
            "account_number": "123456789012",
            "ifsc": "SBIN0001234",
        },
    )
    assert second.json()["is_default"] is False

    switched = await client.post(
        f"/practitioners/me/bank-accounts/{second.json()['id']}/default", headers=headers
    )
    assert switched.status_code == 200
    assert switched.json()["is_default"] is True

    listing = await client.get("/practitioners/me/bank-accounts", headers=headers)
    accounts = listing.json()
    assert [a["is_default"] for a in accounts] == [True, False]
    assert accounts[0]["id"] == second.json()["id"]


@pytest.mark.asyncio
async def test_account_number_stored_encrypted(db: AsyncSession, practitioner: Practitioner):
    account = await get_default_bank_account(db, practitioner.id)
    assert account.account_number_encrypted != "123456789012"
    assert decrypt_account_number(account.account_number_encrypted) == "123456789012"


@pytest.mark.asyncio
async def test_invalid_ifsc_rejected(client: AsyncClient, practitioner_user: User):
    response = await client.post(
        "/practitioners/me/bank-accounts",
        headers=auth_headers(practitioner_user),
        json={
            "account_holder_name": "Priya Nair",
            "bank_name": "HDFC Bank",
            "account_number": "50100012345678",
            "ifsc": "HDFC1234",
        },
    )
    assert response.status_code == 422


# ── Work ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_my_cases_filtered_by_status(
    client: AsyncClient, practitioner: Practitioner, practitioner_user: User, make_case
):
    await make_case(practitioner, status=CaseStatus.ASSIGNED)
    in_progress = await make_case(practitioner, status=CaseStatus.IN_PROGRESS)

    response = await client.get(
        "/practitioners/me/cases", headers=auth_headers(practitioner_user), params={"status": "IN_PROGRESS"}
    )
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [str(in_progress.id)]


# ── Expertise Requests ────────────────────────────────────────

@pytest.mark.asyncio
async def test_request_expertise_tag(
    client: AsyncClient, db: AsyncSession, practitioner: Practitioner, practitioner_user: User
):
    response = await client.post(
        "/practitioners/me/expertise-requests",
        headers=auth_headers(practitioner_user),
        json={"requested_tag": "RERA_MATTERS", "supporting_doc_url": "https://docs.example.com/rera.pdf"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "PENDING"
    assert data["requested_tag"] == "RERA_MATTERS"
    assert data["practitioner_id"] == str(practitioner.id)

    # Nothing changes until an operator approves it
    await db.refresh(practitioner)
    assert practitioner.expertise_tags == ["TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_request_unknown_tag_rejected(client: AsyncClient, practitioner_user: User):
    response = await client.post(
        "/practitioners/me/expertise-requests",
        headers=auth_headers(practitioner_user),
        json={"requested_tag": "MARITIME_LAW"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_customers_cannot_request_expertise(client: AsyncClient, customer: User):
    response = await client.post(
        "/practitioners/me/expertise-requests",
        headers=auth_headers(customer),
        json={"requested_tag": "RERA_MATTERS"},
    )
    assert response.status_code == 403
