"""
Tests for registration, login, cookie auth and API-key auth.
"""

import pytest
from sqlalchemy import select

from adspirer.config import get_settings
from adspirer.models import ApiKey, User
from adspirer.services.auth_service import bootstrap_first_admin
from conftest import register

pytestmark = pytest.mark.anyio


async def test_register_returns_token_and_sets_cookie(client):
    response = await client.post(
        "/api/auth/register", json={"email": "New@Example.com", "password": "secret123"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["user"]["email"] == "new@example.com"
    assert data["user"]["name"] == "new"
    assert "password_hash" not in data["user"]
    assert "jwt" in response.cookies


async def test_register_rejects_duplicate_email(client, user):
    response = await client.post("/api/auth/register", json={"email": user["email"], "password": "secret123"})
    assert response.status_code == 400


async def test_register_rejects_short_password(client):
    response = await client.post("/api/auth/register", json={"email": "a@example.com", "password": "123"})
    assert response.status_code == 422


async def test_login(client, user):
    ok = await client.post("/api/auth/login", json={"email": user["email"], "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["user"]["id"] == user["id"]

    bad = await client.post("/api/auth/login", json={"email": user["email"], "password": "wrong-password"})
    assert bad.status_code == 401

    unknown = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "secret123"})
    assert unknown.status_code == 401


async def test_whoami_with_bearer_and_cookie(client, user):
    response = await client.get("/api/auth/whoami", headers=user["headers"])
    assert response.status_code == 200
    assert response.json()["email"] == user["email"]

    # The client kept the cookie set at registration
    response = await client.get("/api/user")
    assert response.status_code == 200
    assert response.json()["id"] == user["id"]


async def test_logout_clears_cookie(client, user):
    await client.post("/api/auth/logout")
    client.cookies.clear()
    response = await client.get("/api/auth/whoami")
    assert response.status_code == 401


async def test_invalid_token_rejected(client):
    response = await client.get("/api/auth/whoami", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_api_key_authenticates_and_counts_usage(client, user, session):
    created = await client.post("/api/keys", json={"name": "CI"}, headers=user["headers"])
    key_value = created.json()["key_value"]
    client.cookies.clear()

    for _ in range(2):
        response = await client.get("/api/auth/whoami", headers={"X-API-Key": key_value})
        assert response.status_code == 200
        assert response.json()["email"] == user["email"]

    key = (await session.execute(select(ApiKey))).scalar_one()
    assert key.request_count == 2
    assert key.last_used_at is not None


async def test_unknown_api_key_rejected(client):
    response = await client.get("/api/auth/whoami", headers={"X-API-Key": "adsp_nope"})
    assert response.status_code == 401


async def test_users_are_isolated(client, user):
    other = await register(client, email="other@example.com")
    headers = {"Authorization": f"Bearer {other['access_token']}"}
    response = await client.get("/api/auth/whoami", headers=headers)
    assert response.json()["email"] == "other@example.com"


async def test_bootstrap_creates_admin_only_on_empty_database(client, session, monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "first_admin_email", "Admin@Example.com")
    monkeypatch.setattr(settings, "first_admin_password", "admin-secret")

    admin = await bootstrap_first_admin(session)
    assert admin is not None
    assert admin.email == "admin@example.com"
    assert admin.role == "admin"

    assert await bootstrap_first_admin(session) is None
    users = (await session.execute(select(User))).scalars().all()
    assert len(users) == 1

    login = await client.post(
        "/api/auth/login", json={"email": "admin@example.com", "password": "admin-secret"},
    )
    assert login.status_code == 200


async def test_bootstrap_without_credentials_does_nothing(session):
    assert await bootstrap_first_admin(session) is None
