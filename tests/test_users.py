"""
tests/test_users.py
Tests for user profile management, default vendor selection
and the public agency directory.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.agency.router import DIRECTORY_CACHE_KEY
from shared.models.models import Agency, User
from tests.conftest import auth_headers


# ── Profile ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_user_profile(client: AsyncClient, user: User):
    response = await client.get("/users/me", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == user.email
    assert data["name"] == user.name
    assert data["barrels_remaining"] == 12


@pytest.mark.asyncio
async def test_update_user_profile(client: AsyncClient, user: User):
    response = await client.patch(
        "/users/me",
        headers=auth_headers(user),
        json={"name": "Updated Name", "phone": "+919999988888", "pincode": "411038"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Updated Name"
    assert data["phone"] == "+919999988888"
    assert data["pincode"] == "411038"


@pytest.mark.asyncio
async def test_update_empty_body_is_noop(client: AsyncClient, user: User):
    response = await client.patch("/users/me", headers=auth_headers(user), json={})
    assert response.status_code == 200
    assert response.json()["name"] == user.name


@pytest.mark.asyncio
async def test_update_cannot_touch_allocation(client: AsyncClient, user: User):
    response = await client.patch(
        "/users/me", headers=auth_headers(user), json={"barrels_remaining": 99}
    )
    assert response.status_code == 200
    assert response.json()["barrels_remaining"] == 12


@pytest.mark.asyncio
async def test_invalid_pincode(client: AsyncClient, user: User):
    response = await client.patch("/users/me", headers=auth_headers(user), json={"pincode": "12"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_agency_cannot_use_user_profile(client: AsyncClient, agency: Agency):
    response = await client.get("/users/me", headers=auth_headers(agency))
    assert response.status_code == 403


# ── Default vendor ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_default_vendor(client: AsyncClient, user: User, agency: Agency):
    response = await client.get("/users/me/default-vendor", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["id"] == str(agency.id)


@pytest.mark.asyncio
async def test_set_and_clear_default_vendor(
    client: AsyncClient, user: User, other_agency: Agency
):
    response = await client.put(
        "/users/me/default-vendor",
        headers=auth_headers(user),
        json={"agency_id": str(other_agency.id)},
    )
    assert response.status_code == 200
    assert response.json()["default_vendor_id"] == str(other_agency.id)

    cleared = await client.put(
        "/users/me/default-vendor", headers=auth_headers(user), json={"agency_id": None}
    )
    assert cleared.json()["default_vendor_id"] is None

    empty = await client.get("/users/me/default-vendor", headers=auth_headers(user))
    assert empty.json() is None


@pytest.mark.asyncio
async def test_default_vendor_must_be_verified(
    client: AsyncClient, user: User, unverified_agency: Agency
):
    response = await client.put(
        "/users/me/default-vendor",
        headers=auth_headers(user),
        json={"agency_id": str(unverified_agency.id)},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_default_vendor_unknown_agency(client: AsyncClient, user: User):
    response = await client.put(
        "/users/me/default-vendor",
        headers=auth_headers(user),
        json={"agency_id": str(uuid.uuid4())},
    )
    assert response.status_code == 404


# ── Agency directory ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_directory_lists_verified_active_agencies(
    client: AsyncClient, db: AsyncSession, agency: Agency, unverified_agency: Agency, fake_redis
):
    inactive = Agency(
        name="Closed Depot",
        email="closed@example.com",
        password_hash="x",
        is_verified=True,
        is_active=False,
    )
    db.add(inactive)
    await db.commit()

    response = await client.get("/agencies")

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == [str(agency.id)]
    assert "password_hash" not in response.json()[0]
    assert await fake_redis.get(DIRECTORY_CACHE_KEY) is not None


@pytest.mark.asyncio
async def test_directory_served_from_cache(client: AsyncClient, db: AsyncSession, agency: Agency):
    first = await client.get("/agencies")
    assert len(first.json()) == 1

    agency.name = "Renamed Depot"
    await db.commit()

    second = await client.get("/agencies")
    assert second.json()[0]["name"] == "Bharat Gas Depot"


@pytest.mark.asyncio
async def test_get_agency(client: AsyncClient, agency: Agency, unverified_agency: Agency):
    ok = await client.get(f"/agencies/{agency.id}")
    assert ok.status_code == 200
    assert ok.json()["name"] == "Bharat Gas Depot"

    hidden = await client.get(f"/agencies/{unverified_agency.id}")
    assert hidden.status_code == 404
