"""
Tests for API key management.
"""

import uuid

import pytest

from adspirer.services.auth_service import API_KEY_PREFIX
from conftest import register

pytestmark = pytest.mark.anyio


async def test_create_list_and_deactivate(client, auth_headers):
    created = await client.post("/api/keys", json={"name": "Reporting"}, headers=auth_headers)
    assert created.status_code == 201
    key = created.json()
    assert key["key_value"].startswith(API_KEY_PREFIX)
    assert key["is_active"] is True

    listed = await client.get("/api/keys", headers=auth_headers)
    assert listed.status_code == 200
    [item] = listed.json()
    assert item["id"] == key["id"]
    assert item["key_value"] != key["key_value"]
    assert item["key_value"].endswith(key["key_value"][-4:])

    removed = await client.delete(f"/api/keys/{key['id']}", headers=auth_headers)
    assert removed.status_code == 200

    [item] = (await client.get("/api/keys", headers=auth_headers)).json()
    assert item["is_active"] is False

    client.cookies.clear()
    rejected = await client.get("/api/auth/whoami", headers={"X-API-Key": key["key_value"]})
    assert rejected.status_code == 401


async def test_cannot_deactivate_another_users_key(client, auth_headers):
    key = (await client.post("/api/keys", json={"name": "Mine"}, headers=auth_headers)).json()
    other = await register(client, email="other@example.com")
    other_headers = {"Authorization": f"Bearer {other['access_token']}"}

    response = await client.delete(f"/api/keys/{key['id']}", headers=other_headers)
    assert response.status_code == 404
    assert (await client.get("/api/keys", headers=other_headers)).json() == []


async def test_unknown_and_malformed_ids(client, auth_headers):
    assert (await client.delete(f"/api/keys/{uuid.uuid4()}", headers=auth_headers)).status_code == 404
    assert (await client.delete("/api/keys/not-a-uuid", headers=auth_headers)).status_code == 400


async def test_name_required(client, auth_headers):
    response = await client.post("/api/keys", json={"name": ""}, headers=auth_headers)
    assert response.status_code == 422
