"""
Tests for OAuth token storage and automatic refresh.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import urlparse, parse_qs

import httpx
import pytest
from sqlalchemy import select

from adspirer.config import get_settings
from adspirer.models import User, AmazonToken, GoogleToken, TokenRefreshLog
from adspirer.services.token_service import (
    PlatformNotConnectedError,
    TokenRefreshError,
    build_authorize_url,
    get_valid_access_token,
    store_tokens,
    token_needs_refresh,
)
from adspirer.utils import utcnow


@pytest.fixture
def oauth_settings(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "amazon_client_id", "amzn-client")
    monkeypatch.setattr(settings, "amazon_client_secret", "amzn-secret")
    monkeypatch.setattr(settings, "google_client_id", "google-client")
    monkeypatch.setattr(settings, "google_client_secret", "google-secret")
    return settings


async def _user_with_token(session, model=AmazonToken, expires_in=timedelta(hours=1)):
    user = User(email="owner@example.com", password_hash="x")
    session.add(user)
    await session.flush()
    session.add(model(
        user_id=user.id,
        access_token="old-access",
        refresh_token="refresh-1",
        expires_at=utcnow() + expires_in,
        is_active=True,
    ))
    await session.commit()
    return user


def test_token_needs_refresh_uses_buffer():
    now = utcnow()
    assert token_needs_refresh(AmazonToken(expires_at=now + timedelta(hours=1)), now) is False
    assert token_needs_refresh(AmazonToken(expires_at=now + timedelta(minutes=4)), now) is True
    assert token_needs_refresh(AmazonToken(expires_at=now - timedelta(minutes=1)), now) is True
    assert token_needs_refresh(AmazonToken(expires_at=None), now) is True


def test_build_authorize_url(oauth_settings):
    url = build_authorize_url("google", "http://localhost/cb", "state-1")
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == ["google-client"]
    assert query["access_type"] == ["offline"]
    assert query["state"] == ["state-1"]

    amazon = parse_qs(urlparse(build_authorize_url("amazon", "http://localhost/cb", "s")).query)
    assert amazon["scope"] == ["advertising::campaign_management"]
    assert "access_type" not in amazon


def test_build_authorize_url_requires_credentials(monkeypatch):
    monkeypatch.setattr(get_settings(), "amazon_client_id", "")
    with pytest.raises(ValueError, match="AMAZON_CLIENT_ID"):
        build_authorize_url("amazon", "http://localhost/cb", "s")


@pytest.mark.anyio
async def test_fresh_token_is_not_refreshed(session):
    user = await _user_with_token(session)
    with patch("adspirer.services.token_service.refresh_access_token", new_callable=AsyncMock) as refresh:
        assert await get_valid_access_token(session, user.id, "amazon") == "old-access"
    refresh.assert_not_called()


@pytest.mark.anyio
async def test_expired_token_is_refreshed_before_use(session):
    user = await _user_with_token(session, expires_in=timedelta(minutes=-10))
    with patch(
        "adspirer.services.token_service.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "new-access", "refresh_token": "refresh-2", "expires_in": 3600},
    ) as refresh:
        token = await get_valid_access_token(session, user.id, "amazon")

    assert token == "new-access"
    refresh.assert_awaited_once_with("amazon", "refresh-1")

    stored = (await session.execute(select(AmazonToken).where(AmazonToken.user_id == user.id))).scalar_one()
    assert stored.refresh_token == "refresh-2"
    assert stored.expires_at > utcnow() + timedelta(minutes=50)
    assert stored.last_refreshed_at is not None

    logs = (await session.execute(select(TokenRefreshLog))).scalars().all()
    assert [(log.platform, log.success) for log in logs] == [("amazon", True)]


@pytest.mark.anyio
async def test_refresh_keeps_refresh_token_when_not_rotated(session):
    user = await _user_with_token(session, model=GoogleToken, expires_in=timedelta(minutes=1))
    with patch(
        "adspirer.services.token_service.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "new-access", "expires_in": 3599},
    ):
        assert await get_valid_access_token(session, user.id, "google") == "new-access"

    stored = (await session.execute(select(GoogleToken))).scalar_one()
    assert stored.refresh_token == "refresh-1"


@pytest.mark.anyio
async def test_failed_refresh_is_logged_and_raised(session):
    user = await _user_with_token(session, expires_in=timedelta(minutes=-10))
    request = httpx.Request("POST", "https://api.amazon.com/auth/o2/token")
    error = httpx.HTTPStatusError(
        "invalid_grant",
        request=request,
        response=httpx.Response(400, text='{"error": "invalid_grant"}', request=request),
    )
    with patch("adspirer.services.token_service.refresh_access_token", new_callable=AsyncMock, side_effect=error):
        with pytest.raises(TokenRefreshError):
            await get_valid_access_token(session, user.id, "amazon")

    await session.rollback()
    logs = (await session.execute(select(TokenRefreshLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].success is False
    assert "invalid_grant" in logs[0].error_message

    stored = (await session.execute(select(AmazonToken))).scalar_one()
    assert stored.access_token == "old-access"
    assert stored.last_refreshed_at is None


@pytest.mark.anyio
async def test_missing_token_raises_not_connected(session):
    user = User(email="owner@example.com", password_hash="x")
    session.add(user)
    await session.commit()
    with pytest.raises(PlatformNotConnectedError):
        await get_valid_access_token(session, user.id, "google")


@pytest.mark.anyio
async def test_store_tokens_upserts_and_requires_refresh_token(session):
    user = User(email="owner@example.com", password_hash="x")
    session.add(user)
    await session.flush()

    with pytest.raises(ValueError):
        await store_tokens(session, user.id, "amazon", {"access_token": "a"})

    await store_tokens(session, user.id, "amazon", {"access_token": "a1", "refresh_token": "r1", "expires_in": 60})
    await store_tokens(session, user.id, "amazon", {"access_token": "a2", "refresh_token": "r2"})
    tokens = (await session.execute(select(AmazonToken))).scalars().all()
    assert len(tokens) == 1
    assert tokens[0].access_token == "a2"
    assert tokens[0].refresh_token == "r2"
