"""
Ad Platform Routers — OAuth connect / status / accounts / disconnect for Amazon and Google.
Both platforms share one flow; build_platform_router() binds it to a platform.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from adspirer.auth import get_current_user
from adspirer.config import get_settings
from adspirer.database import get_db
from adspirer.models import User, AdvertiserAccount, GoogleAdvertiserAccount, Platform
from adspirer.services.ads_api_service import (
    AdsApiError,
    sync_amazon_profiles,
    sync_google_accounts,
    delete_platform_accounts,
)
from adspirer.services.token_service import (
    TOKEN_MODELS,
    TokenRefreshError,
    PlatformNotConnectedError,
    build_authorize_url,
    issue_oauth_state,
    verify_oauth_state,
    exchange_authorization_code,
    store_tokens,
    get_token,
)
from adspirer.utils import safe_error_detail

logger = logging.getLogger(__name__)


class ConnectRequest(BaseModel):
    code: str
    state: Optional[str] = None
    redirect_uri: Optional[str] = None


def _redirect_uri(platform: str, override: Optional[str]) -> str:
    settings = get_settings()
    if override:
        return override
    return settings.amazon_redirect_uri if platform == Platform.AMAZON.value else settings.google_redirect_uri


def _amazon_account_dict(a: AdvertiserAccount) -> dict:
    return {
        "id": str(a.id),
        "profile_id": a.profile_id,
        "account_name": a.account_name,
        "marketplace": a.marketplace,
        "account_type": a.account_type,
        "status": a.status,
        "last_synced_at": a.last_synced_at.isoformat() if a.last_synced_at else None,
    }


def _google_account_dict(a: GoogleAdvertiserAccount) -> dict:
    return {
        "id": str(a.id),
        "customer_id": a.customer_id,
        "account_name": a.account_name,
        "status": a.status,
        "last_synced_at": a.last_synced_at.isoformat() if a.last_synced_at else None,
    }


PLATFORM_ACCOUNTS = {
    Platform.AMAZON.value: (AdvertiserAccount, sync_amazon_profiles, _amazon_account_dict),
    Platform.GOOGLE.value: (GoogleAdvertiserAccount, sync_google_accounts, _google_account_dict),
}


async def _sync_accounts(db: AsyncSession, user: User, platform: str) -> list[dict]:
    """Run the account sync, mapping platform errors to HTTP responses."""
    _, sync, to_dict = PLATFORM_ACCOUNTS[platform]
    try:
        accounts = await sync(db, user.id)
    except PlatformNotConnectedError:
        raise HTTPException(status_code=400, detail=f"{platform.capitalize()} account is not connected")
    except TokenRefreshError as e:
        logger.warning(f"Token refresh failed during {platform} sync for user {user.id}: {e}")
        raise HTTPException(
            status_code=401,
            detail=f"{platform.capitalize()} authorization expired. Please reconnect your account.",
        )
    except AdsApiError as e:
        raise HTTPException(
            status_code=502,
            detail=safe_error_detail(e, f"Failed to communicate with the {platform.capitalize()} Ads API."),
        )
    return [to_dict(a) for a in accounts]


def build_platform_router(platform: str, accounts_path: str) -> APIRouter:
    router = APIRouter()
    account_model, _, to_dict = PLATFORM_ACCOUNTS[platform]
    label = platform.capitalize()

    @router.get("/authorize-url")
    async def authorize_url(
        redirect_uri: Optional[str] = None,
        user: User = Depends(get_current_user),
    ):
        """Consent URL for the OAuth popup / redirect."""
        state = issue_oauth_state(user.id, platform)
        try:
            url = build_authorize_url(platform, _redirect_uri(platform, redirect_uri), state)
        except ValueError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"url": url, "state": state}

    @router.post("/connect")
    async def connect(
        payload: ConnectRequest,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        """Exchange the authorization code, store tokens and cache the user's accounts."""
        if not payload.state or not verify_oauth_state(payload.state, user.id, platform):
            logger.warning(f"{label} connect for user {user.id} rejected: state mismatch")
            raise HTTPException(status_code=400, detail="Invalid or expired OAuth state. Please start the connection again.")
        try:
            token_data = await exchange_authorization_code(
                platform, payload.code, _redirect_uri(platform, payload.redirect_uri),
            )
        except ValueError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except httpx.HTTPStatusError as e:
            logger.error(f"{label} code exchange failed: {e.response.status_code} {e.response.text[:300]}")
            raise HTTPException(status_code=400, detail=f"{label} rejected the authorization code.")
        except httpx.HTTPError as e:
            raise HTTPException(status_code=502, detail=safe_error_detail(e, f"Could not reach {label}."))

        try:
            await store_tokens(db, user.id, platform, token_data)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        # Tokens are kept even if the account listing fails; POST /sync retries it
        _, sync_accounts, _ = PLATFORM_ACCOUNTS[platform]
        try:
            accounts = [to_dict(a) for a in await sync_accounts(db, user.id)]
        except AdsApiError as e:
            logger.warning(f"{label} connected for user {user.id} but account sync failed: {e}")
            return {"connected": True, "accounts": [], "accounts_error": f"Could not list {label} accounts yet."}

        logger.info(f"{label} connected for user {user.id} ({len(accounts)} accounts)")
        return {"connected": True, "accounts": accounts}

    @router.get("/status")
    async def status(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        token = await get_token(db, user.id, platform)
        connected = token is not None and token.is_active
        return {
            "connected": connected,
            "expires_at": token.expires_at.isoformat() if connected and token.expires_at else None,
            "last_refreshed_at": (
                token.last_refreshed_at.isoformat() if connected and token.last_refreshed_at else None
            ),
        }

    @router.get(accounts_path)
    async def list_accounts(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        """Accounts cached at the last connect / sync."""
        result = await db.execute(
            select(account_model)
            .where(account_model.user_id == user.id)
            .order_by(account_model.created_at)
        )
        return [to_dict(a) for a in result.scalars().all()]

    @router.post("/sync")
    async def sync(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        """Re-fetch accounts from the platform (refreshes the token first if needed)."""
        accounts = await _sync_accounts(db, user, platform)
        return {"accounts": accounts}

    @router.delete("/disconnect")
    async def disconnect(
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        token_model = TOKEN_MODELS[platform]
        await db.execute(delete(token_model).where(token_model.user_id == user.id))
        await delete_platform_accounts(db, user.id, platform)
        logger.info(f"{label} disconnected for user {user.id}")
        return {"success": True}

    return router


amazon_router = build_platform_router(Platform.AMAZON.value, "/profiles")
google_router = build_platform_router(Platform.GOOGLE.value, "/accounts")
