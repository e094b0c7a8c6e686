"""
tests/test_routing.py
Practitioner suggestions: eligibility filters and ranking.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.routing.service import suggest_practitioners
from shared.models.models import CaseStatus, ExpertiseTag, User, VerificationStatus
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_ranked_by_rating_then_completed_cases(db: AsyncSession, make_practitioner):
    low = await make_practitioner(name="Adv. Low", rating_avg="3.90", completed_case_count=50)
    top = await make_practitioner(name="Adv. Top", rating_avg="4.80", completed_case_count=5)
    tied_more = await make_practitioner(name="Adv. Busy", rating_avg="4.50", completed_case_count=40)
    tied_less = await make_practitioner(name="Adv. Quiet", rating_avg="4.50", completed_case_count=10)

    results = await suggest_practitioners(db, "TITLE_OPINIONS", "Bengaluru")

    assert [r.id for r in results] == [top.id, tied_more.id, tied_less.id, low.id]
    assert results[0].name == "Adv. Top"
    assert results[0].expertise_tags == ["TITLE_OPINIONS"]


@pytest.mark.asyncio
async def test_excludes_ineligible_practitioners(db: AsyncSession, make_practitioner):
    eligible = await make_practitioner(name="Adv. Eligible")
    await make_practitioner(name="Adv. Pending", status=VerificationStatus.PENDING)
    await make_practitioner(name="Adv. Suspended", status=VerificationStatus.SUSPENDED)
    await make_practitioner(name="Adv. Busy", dnd_enabled=True)
    await make_practitioner(name="Adv. Mysuru", city="Mysuru")
    await make_practitioner(name="Adv. Rera", tags=(ExpertiseTag.RERA_MATTERS,))

    results = await suggest_practitioners(db, "TITLE_OPINIONS", "Bengaluru")

    assert [r.id for r in results] == [eligible.id]


@pytest.mark.asyncio
async def test_city_match_is_case_insensitive(db: AsyncSession, make_practitioner):
    practitioner = await make_practitioner(city="Bengaluru")
    results = await suggest_practitioners(db, "TITLE_OPINIONS", "  bengaluru ")
    assert [r.id for r in results] == [practitioner.id]


@pytest.mark.asyncio
async def test_unknown_tag_returns_empty_list(db: AsyncSession, practitioner):
    assert await suggest_practitioners(db, "MARITIME_LAW", "Bengaluru") == []


@pytest.mark.asyncio
async def test_no_match_returns_empty_list(db: AsyncSession, practitioner):
    assert await suggest_practitioners(db, "RERA_MATTERS", "Bengaluru") == []


@pytest.mark.asyncio
async def test_active_case_count_reported(db: AsyncSession, practitioner, make_case):
    await make_case(practitioner, status=CaseStatus.ASSIGNED)
    await make_case(practitioner, status=CaseStatus.IN_PROGRESS)
    await make_case(practitioner, status=CaseStatus.COMPLETED)

    [result] = await suggest_practitioners(db, "TITLE_OPINIONS", "Bengaluru")
    assert result.active_case_count == 2


# ── HTTP ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_suggestions_endpoint(client: AsyncClient, operator: User, practitioner):
    response = await client.get(
        "/routing/suggestions",
        params={"expertise": "TITLE_OPINIONS", "city": "Bengaluru"},
        headers=auth_headers(operator),
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["id"] == str(practitioner.id)
    assert data[0]["commission_rate"] == 20


@pytest.mark.asyncio
async def test_suggestions_unknown_tag_is_not_an_error(client: AsyncClient, operator: User):
    response = await client.get(
        "/routing/suggestions",
        params={"expertise": "NOT_A_TAG", "city": "Bengaluru"},
        headers=auth_headers(operator),
    )
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_suggestions_operator_only(client: AsyncClient, customer: User):
    response = await client.get(
        "/routing/suggestions",
        params={"expertise": "TITLE_OPINIONS", "city": "Bengaluru"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 403
