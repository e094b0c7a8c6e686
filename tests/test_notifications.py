"""
tests/test_notifications.py
In-app notification inbox: templates, listing, marking as read, unread count.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.service import notify
from shared.models.models import Notification, NotificationType, Practitioner, User
from tests.conftest import auth_headers


def test_template_rendering():
    class _Session:
        def __init__(self):
            self.added = []

        def add(self, obj):
            self.added.append(obj)

    session = _Session()
    notif = notify(
        session,
        uuid.uuid4(),
        NotificationType.PAYOUT_SENT,
        {"amount": "4000.00", "case_number": "LC-1760659200000-X7K9"},
    )
    assert session.added == [notif]
    assert notif.title == "Payout sent"
    assert notif.body == "Payout of Rs.4000.00 for case LC-1760659200000-X7K9 has been processed."
    assert notif.data == {"amount": "4000.00", "case_number": "LC-1760659200000-X7K9"}


@pytest.mark.asyncio
async def test_empty_inbox(client: AsyncClient, customer: User):
    response = await client.get("/notifications", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_inbox_shows_only_own_notifications(
    client: AsyncClient, db: AsyncSession, customer: User, other_customer: User
):
    mine = notify(db, customer.id, NotificationType.OPINION_DELIVERED, {"case_number": "LC-1-AAAA"})
    notify(db, other_customer.id, NotificationType.OPINION_DELIVERED, {"case_number": "LC-2-BBBB"})
    await db.commit()

    response = await client.get("/notifications", headers=auth_headers(customer))
    assert [n["id"] for n in response.json()] == [str(mine.id)]


@pytest.mark.asyncio
async def test_filter_by_case(
    client: AsyncClient, db: AsyncSession, practitioner: Practitioner, practitioner_user: User, make_case
):
    first = await make_case(practitioner)
    second = await make_case(practitioner)
    notify(db, practitioner_user.id, NotificationType.CASE_ASSIGNED,
           {"case_number": first.case_number, "timeout_hours": 24}, case_id=first.id)
    notify(db, practitioner_user.id, NotificationType.CASE_ASSIGNED,
           {"case_number": second.case_number, "timeout_hours": 24}, case_id=second.id)
    await db.commit()

    response = await client.get(
        "/notifications", headers=auth_headers(practitioner_user), params={"case_id": str(second.id)}
    )
    data = response.json()
    assert len(data) == 1
    assert data[0]["case_id"] == str(second.id)
    assert second.case_number in data[0]["body"]


@pytest.mark.asyncio
async def test_unread_count_and_read_all(client: AsyncClient, db: AsyncSession, customer: User):
    for i in range(3):
        notify(db, customer.id, NotificationType.OPINION_DELIVERED, {"case_number": f"LC-{i}-AAAA"})
    await db.commit()

    response = await client.get("/notifications/unread-count", headers=auth_headers(customer))
    assert response.json()["unread_count"] == 3

    response = await client.post("/notifications/read-all", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["message"] == "3 notification(s) marked as read"

    response = await client.get("/notifications/unread-count", headers=auth_headers(customer))
    assert response.json()["unread_count"] == 0


@pytest.mark.asyncio
async def test_mark_single_read(client: AsyncClient, db: AsyncSession, customer: User):
    notif = notify(db, customer.id, NotificationType.OPINION_DELIVERED, {"case_number": "LC-1-AAAA"})
    await db.commit()

    response = await client.post(f"/notifications/{notif.id}/read", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None

    unread = await client.get(
        "/notifications", headers=auth_headers(customer), params={"unread_only": True}
    )
    assert unread.json() == []


@pytest.mark.asyncio
async def test_cannot_read_someone_elses_notification(
    client: AsyncClient, db: AsyncSession, customer: User, other_customer: User
):
    notif = notify(db, customer.id, NotificationType.OPINION_DELIVERED, {"case_number": "LC-1-AAAA"})
    await db.commit()

    response = await client.post(f"/notifications/{notif.id}/read", headers=auth_headers(other_customer))
    assert response.status_code == 404

    db_notif = await db.get(Notification, notif.id)
    assert db_notif.is_read is False
