"""
Token Service — OAuth code exchange and automatic token refresh for Amazon and Google Ads.
Every outbound ad-platform call gets its access token through get_valid_access_token().
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.config import get_settings
from adspirer.crypto import encrypt_value, decrypt_value
from adspirer.database import async_session
from adspirer.models import AmazonToken, GoogleToken, TokenRefreshLog, Platform
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

OAUTH_PROVIDERS = {
    Platform.AMAZON.value: {
        "authorize_url": "https://www.amazon.com/ap/oa",
        "token_url": "https://api.amazon.com/auth/o2/token",
        "scope": "advertising::campaign_management",
    },
    Platform.GOOGLE.value: {
        "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "scope": "https://www.googleapis.com/auth/adwords",
    },
}

TOKEN_MODELS = {
    Platform.AMAZON.value: AmazonToken,
    Platform.GOOGLE.value: GoogleToken,
}

# The consent round trip must finish within this window
OAUTH_STATE_TTL = timedelta(minutes=10)
OAUTH_STATE_ALGORITHM = "HS256"

# Refresh 5 minutes before actual expiry to avoid race conditions
REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600

PlatformToken = Union[AmazonToken, GoogleToken]


class TokenRefreshError(Exception):
    """The provider rejected a refresh or could not be reached."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"{platform} token refresh failed: {message}")


class PlatformNotConnectedError(Exception):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} account is not connected")


def _provider(platform: str) -> dict:
    if platform not in OAUTH_PROVIDERS:
        raise ValueError(f"Unknown ad platform: {platform}")
    return OAUTH_PROVIDERS[platform]


def _client_credentials(platform: str) -> tuple[str, str]:
    settings = get_settings()
    if platform == Platform.AMAZON.value:
        client_id, client_secret = settings.amazon_client_id, settings.amazon_client_secret
    else:
        client_id, client_secret = settings.google_client_id, settings.google_client_secret
    if not client_id or not client_secret:
        raise ValueError(f"{platform.upper()}_CLIENT_ID / {platform.upper()}_CLIENT_SECRET not configured.")
    return client_id, client_secret


def build_authorize_url(platform: str, redirect_uri: str, state: str) -> str:
    """Consent-screen URL the frontend redirects the user to."""
    provider = _provider(platform)
    client_id, _ = _client_credentials(platform)
    params = {
        "client_id": client_id,
        "scope": provider["scope"],
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "state": state,
    }
    if platform == Platform.GOOGLE.value:
        # Google only issues a refresh token for offline access with explicit consent
        params["access_type"] = "offline"
        params["prompt"] = "consent"
    return f"{provider['authorize_url']}?{urlencode(params)}"


def issue_oauth_state(user_id: uuid.UUID, platform: str) -> str:
    """Signed, short-lived state value bound to the user and platform that asked for consent."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "platform": platform,
        "purpose": "oauth_state",
        "nonce": secrets.token_urlsafe(16),
        "iat": now,
        "exp": now + OAUTH_STATE_TTL,
    }
    return jwt.encode(payload, get_settings().secret_key, algorithm=OAUTH_STATE_ALGORITHM)


def verify_oauth_state(state: str, user_id: uuid.UUID, platform: str) -> bool:
    """True only for an unexpired state issued to this user for this platform."""
    try:
        payload = jwt.decode(state, get_settings().secret_key, algorithms=[OAUTH_STATE_ALGORITHM])
    except JWTError:
        return False
    return (
        payload.get("purpose") == "oauth_state"
        and payload.get("sub") == str(user_id)
        and payload.get("platform") == platform
    )


async def _post_token_request(platform: str, data: dict) -> dict:
    provider = _provider(platform)
    client_id, client_secret = _client_credentials(platform)
    async with httpx.AsyncClient() as client:
        response = await client.post(
            provider["token_url"],
            data={**data, "client_id": client_id, "client_secret": client_secret},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=30,
        )
        response.raise_for_status()
        return response.json()


async def exchange_authorization_code(platform: str, code: str, redirect_uri: str) -> dict:
    """
    Trade the OAuth authorization code for tokens.
    Returns dict with access_token, refresh_token, expires_in.
    """
    return await _post_token_request(platform, {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
    })


async def refresh_access_token(platform: str, refresh_token: str) -> dict:
    """
    Exchange a refresh token for a new access token.
    Returns dict with access_token, expires_in and, sometimes, a new refresh_token.
    """
    return await _post_token_request(platform, {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    })


def _make_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC). DB may return naive datetimes."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def token_needs_refresh(token: PlatformToken, now: Optional[datetime] = None) -> bool:
    """True when the access token is expired or expires within REFRESH_BUFFER."""
    if not token.expires_at:
        return True
    now = _make_aware(now) if now else datetime.now(timezone.utc)
    return now >= (_make_aware(token.expires_at) - REFRESH_BUFFER)


def _apply_token_data(token: PlatformToken, token_data: dict) -> None:
    token.access_token = encrypt_value(token_data["access_token"])
    expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN)
    token.expires_at = utcnow() + timedelta(seconds=expires_in)
    # Providers only sometimes rotate the refresh token
    if token_data.get("refresh_token"):
        token.refresh_token = encrypt_value(token_data["refresh_token"])


async def _record_failed_refresh(user_id: uuid.UUID, platform: str, error: str) -> None:
    # Own session so the record survives the caller's rollback
    async with async_session() as session:
        session.add(TokenRefreshLog(
            user_id=user_id, platform=platform, success=False, error_message=error[:2000],
        ))
        await session.commit()


async def ensure_fresh_token(token: PlatformToken, db: AsyncSession) -> PlatformToken:
    """
    Refresh the token if it is expired or about to expire.
    On success the new access token (and rotated refresh token) is stored encrypted.
    On failure a failed TokenRefreshLog row is written and TokenRefreshError is raised.
    """
    if not token_needs_refresh(token):
        return token

    platform = token.platform
    logger.info(f"{platform} token expired for user {token.user_id}, refreshing...")

    try:
        token_data = await refresh_access_token(platform, decrypt_value(token.refresh_token))
        if not token_data.get("access_token"):
            raise ValueError("token response had no access_token")
    except httpx.HTTPStatusError as e:
        error = f"{e.response.status_code}: {e.response.text[:500]}"
        logger.error(f"{platform} token refresh failed for user {token.user_id}: {error}")
        await _record_failed_refresh(token.user_id, platform, error)
        raise TokenRefreshError(platform, error) from e
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.error(f"{platform} token refresh failed for user {token.user_id}: {e}")
        await _record_failed_refresh(token.user_id, platform, str(e))
        raise TokenRefreshError(platform, str(e)) from e

    _apply_token_data(token, token_data)
    token.last_refreshed_at = utcnow()
    token.is_active = True
    db.add(TokenRefreshLog(user_id=token.user_id, platform=platform, success=True))
    await db.flush()
    logger.info(f"{platform} token refreshed for user {token.user_id}, expires at {token.expires_at}")
    return token


async def get_token(db: AsyncSession, user_id: uuid.UUID, platform: str) -> Optional[PlatformToken]:
    model = TOKEN_MODELS[platform]
    result = await db.execute(select(model).where(model.user_id == user_id))
    return result.scalar_one_or_none()


async def store_tokens(
    db: AsyncSession,
    user_id: uuid.UUID,
    platform: str,
    token_data: dict,
) -> PlatformToken:
    """Insert or replace the user's token row from a code-exchange response."""
    if not token_data.get("refresh_token"):
        raise ValueError(f"{platform} did not return a refresh token")

    token = await get_token(db, user_id, platform)
    if token is None:
        token = TOKEN_MODELS[platform](user_id=user_id)
        db.add(token)
    _apply_token_data(token, token_data)
    token.last_refreshed_at = utcnow()
    token.is_active = True
    await db.flush()
    return token


async def get_valid_access_token(db: AsyncSession, user_id: uuid.UUID, platform: str) -> str:
    """
    Main entry point for outbound calls: load, refresh if needed, return the decrypted access token.
    """
    token = await get_token(db, user_id, platform)
    if token is None or not token.is_active:
        raise PlatformNotConnectedError(platform)
    token = await ensure_fresh_token(token, db)
    return decrypt_value(token.access_token)
