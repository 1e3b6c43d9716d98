"""
tests/test_notifications.py
Tests for admin broadcasts, targeted notifications and per-user read markers.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Log, LogAction, Notification, NotificationReadStatus, User
from tests.conftest import auth_headers


async def _notify(client: AsyncClient, admin: User, **payload) -> dict:
    payload.setdefault("title", "Price revision")
    payload.setdefault("message", "Cylinder prices change from next month.")
    response = await client.post("/notifications", headers=auth_headers(admin), json=payload)
    assert response.status_code == 201, response.text
    return response.json()


# ── Admin ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_creates_broadcast(client: AsyncClient, db: AsyncSession, admin: User):
    data = await _notify(client, admin, type="WARNING")

    assert data["user_id"] is None
    assert data["type"] == "WARNING"
    assert data["is_active"] is True

    [entry] = (
        await db.execute(select(Log).where(Log.action == LogAction.NOTIFICATION_CREATE.value))
    ).scalars().all()
    assert entry.user_id == admin.id
    assert "all users" in entry.details


@pytest.mark.asyncio
async def test_user_cannot_create_notification(client: AsyncClient, user: User):
    response = await client.post(
        "/notifications",
        headers=auth_headers(user),
        json={"title": "Hi", "message": "Hello"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_targeted_notification_unknown_user(client: AsyncClient, admin: User):
    response = await client.post(
        "/notifications",
        headers=auth_headers(admin),
        json={"title": "Hi", "message": "Hello", "user_id": str(uuid.uuid4())},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_lists_and_toggles(client: AsyncClient, admin: User):
    created = await _notify(client, admin)

    toggled = await client.post(
        f"/notifications/{created['id']}/toggle-status", headers=auth_headers(admin)
    )
    assert toggled.status_code == 200
    assert toggled.json()["is_active"] is False

    listed = await client.get("/notifications", headers=auth_headers(admin))
    assert [n["id"] for n in listed.json()] == [created["id"]]

    active_only = await client.get(
        "/notifications", headers=auth_headers(admin), params={"include_inactive": False}
    )
    assert active_only.json() == []


# ── User ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_user_sees_broadcasts_and_own_messages(
    client: AsyncClient, admin: User, user: User, other_user: User
):
    broadcast = await _notify(client, admin, title="Broadcast")
    mine = await _notify(client, admin, title="For you", user_id=str(user.id))
    await _notify(client, admin, title="Not for you", user_id=str(other_user.id))

    response = await client.get("/notifications/user", headers=auth_headers(user))

    assert response.status_code == 200
    ids = {n["id"] for n in response.json()}
    assert ids == {broadcast["id"], mine["id"]}
    assert all(n["is_read"] is False for n in response.json())


@pytest.mark.asyncio
async def test_inactive_notifications_hidden(client: AsyncClient, admin: User, user: User):
    created = await _notify(client, admin)
    await client.post(f"/notifications/{created['id']}/toggle-status", headers=auth_headers(admin))

    response = await client.get("/notifications/user", headers=auth_headers(user))
    assert response.json() == []


@pytest.mark.asyncio
async def test_mark_read_and_unread_count(
    client: AsyncClient, db: AsyncSession, admin: User, user: User
):
    first = await _notify(client, admin, title="One")
    await _notify(client, admin, title="Two")

    count = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert count.json() == {"unread_count": 2}

    for _ in range(2):  # second call is a no-op
        response = await client.post(
            f"/notifications/{first['id']}/read", headers=auth_headers(user)
        )
        assert response.status_code == 200

    markers = (
        await db.execute(
            select(NotificationReadStatus).where(NotificationReadStatus.user_id == user.id)
        )
    ).scalars().all()
    assert len(markers) == 1

    count = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert count.json() == {"unread_count": 1}

    listed = await client.get("/notifications/user", headers=auth_headers(user))
    read_flags = {n["id"]: n["is_read"] for n in listed.json()}
    assert read_flags[first["id"]] is True

    unread = await client.get(
        "/notifications/user", headers=auth_headers(user), params={"unread_only": True}
    )
    assert [n["title"] for n in unread.json()] == ["Two"]


@pytest.mark.asyncio
async def test_mark_all_read(client: AsyncClient, admin: User, user: User):
    await _notify(client, admin, title="One")
    await _notify(client, admin, title="Two")

    response = await client.post("/notifications/mark-all-read", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["message"] == "2 notifications marked as read"

    count = await client.get("/notifications/unread-count", headers=auth_headers(user))
    assert count.json() == {"unread_count": 0}


@pytest.mark.asyncio
async def test_cannot_read_someone_elses_notification(
    client: AsyncClient, admin: User, user: User, other_user: User
):
    private = await _notify(client, admin, user_id=str(other_user.id))
    response = await client.post(
        f"/notifications/{private['id']}/read", headers=auth_headers(user)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deleting_notification_cascades_read_markers(
    client: AsyncClient, db: AsyncSession, admin: User, user: User
):
    created = await _notify(client, admin)
    await client.post(f"/notifications/{created['id']}/read", headers=auth_headers(user))

    notification = await db.get(Notification, uuid.UUID(created["id"]))
    await db.delete(notification)
    await db.commit()

    remaining = (await db.execute(select(NotificationReadStatus))).scalars().all()
    assert remaining == []
