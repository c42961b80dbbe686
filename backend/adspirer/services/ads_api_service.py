"""
Ads API Service — thin httpx clients for the Amazon Advertising and Google Ads REST APIs,
plus the account sync that caches a user's profiles / customers after connecting.
"""

import logging
import uuid
from typing import Optional

import httpx
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.config import get_settings
from adspirer.models import AdvertiserAccount, GoogleAdvertiserAccount, Platform
from adspirer.services.token_service import get_valid_access_token
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

AMAZON_ADS_API = "https://advertising-api.amazon.com"
GOOGLE_ADS_API = "https://googleads.googleapis.com/v16"


class AdsApiError(Exception):
    """Non-2xx or unreachable ad platform API."""

    def __init__(self, platform: str, message: str, status_code: Optional[int] = None):
        self.platform = platform
        self.status_code = status_code
        super().__init__(f"{platform} API error: {message}")


async def _get_json(platform: str, url: str, headers: dict) -> dict | list:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, headers=headers, timeout=30)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        raise AdsApiError(platform, e.response.text[:500], e.response.status_code) from e
    except httpx.HTTPError as e:
        raise AdsApiError(platform, str(e)) from e


async def _post_json(platform: str, url: str, headers: dict, body: dict) -> dict:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(url, headers=headers, json=body, timeout=30)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        raise AdsApiError(platform, e.response.text[:500], e.response.status_code) from e
    except httpx.HTTPError as e:
        raise AdsApiError(platform, str(e)) from e


# ── Amazon ─────────────────────────────────────────────────────────────

async def list_amazon_profiles(access_token: str) -> list[dict]:
    """GET /v2/profiles — every advertiser profile the token can see."""
    settings = get_settings()
    profiles = await _get_json(
        Platform.AMAZON.value,
        f"{AMAZON_ADS_API}/v2/profiles",
        headers={
            "Amazon-Advertising-API-ClientId": settings.amazon_client_id,
            "Authorization": f"Bearer {access_token}",
        },
    )
    return profiles if isinstance(profiles, list) else []


async def sync_amazon_profiles(db: AsyncSession, user_id: uuid.UUID) -> list[AdvertiserAccount]:
    """Fetch profiles with a fresh token and upsert them into advertiser_accounts."""
    access_token = await get_valid_access_token(db, user_id, Platform.AMAZON.value)
    profiles = await list_amazon_profiles(access_token)

    result = await db.execute(select(AdvertiserAccount).where(AdvertiserAccount.user_id == user_id))
    existing = {a.profile_id: a for a in result.scalars().all()}

    accounts = []
    for profile in profiles:
        profile_id = str(profile.get("profileId", ""))
        if not profile_id:
            continue
        info = profile.get("accountInfo") or {}
        account = existing.get(profile_id)
        if account is None:
            account = AdvertiserAccount(user_id=user_id, profile_id=profile_id)
            db.add(account)
        account.account_name = info.get("name")
        account.marketplace = info.get("marketplaceStringId") or profile.get("countryCode")
        account.account_type = info.get("type")
        account.status = "active"
        account.last_synced_at = utcnow()
        accounts.append(account)

    await db.flush()
    logger.info(f"Synced {len(accounts)} Amazon profiles for user {user_id}")
    return accounts


# ── Google ─────────────────────────────────────────────────────────────

def _google_headers(access_token: str, login_customer_id: Optional[str] = None) -> dict:
    settings = get_settings()
    headers = {
        "Authorization": f"Bearer {access_token}",
        "developer-token": settings.google_developer_token,
    }
    if login_customer_id:
        headers["login-customer-id"] = login_customer_id
    return headers


async def list_google_customers(access_token: str) -> list[str]:
    """customers:listAccessibleCustomers — returns bare customer ids."""
    data = await _get_json(
        Platform.GOOGLE.value,
        f"{GOOGLE_ADS_API}/customers:listAccessibleCustomers",
        headers=_google_headers(access_token),
    )
    names = data.get("resourceNames", []) if isinstance(data, dict) else []
    return [n.split("/", 1)[1] for n in names if n.startswith("customers/")]


async def get_google_customer_name(access_token: str, customer_id: str) -> Optional[str]:
    data = await _post_json(
        Platform.GOOGLE.value,
        f"{GOOGLE_ADS_API}/customers/{customer_id}/googleAds:search",
        headers=_google_headers(access_token, customer_id),
        body={"query": "SELECT customer.descriptive_name FROM customer LIMIT 1"},
    )
    rows = data.get("results") or []
    if rows:
        return (rows[0].get("customer") or {}).get("descriptiveName")
    return None


async def sync_google_accounts(db: AsyncSession, user_id: uuid.UUID) -> list[GoogleAdvertiserAccount]:
    """Fetch accessible customers with a fresh token and upsert them."""
    access_token = await get_valid_access_token(db, user_id, Platform.GOOGLE.value)
    customer_ids = await list_google_customers(access_token)

    result = await db.execute(
        select(GoogleAdvertiserAccount).where(GoogleAdvertiserAccount.user_id == user_id)
    )
    existing = {a.customer_id: a for a in result.scalars().all()}

    accounts = []
    for customer_id in customer_ids:
        try:
            name = await get_google_customer_name(access_token, customer_id)
        except AdsApiError as e:
            # Manager-only access cannot read the customer resource directly
            logger.warning(f"Could not read name for Google customer {customer_id}: {e}")
            name = None
        account = existing.get(customer_id)
        if account is None:
            account = GoogleAdvertiserAccount(user_id=user_id, customer_id=customer_id)
            db.add(account)
        account.account_name = name or account.account_name
        account.status = "active"
        account.last_synced_at = utcnow()
        accounts.append(account)

    await db.flush()
    logger.info(f"Synced {len(accounts)} Google Ads customers for user {user_id}")
    return accounts


async def delete_platform_accounts(db: AsyncSession, user_id: uuid.UUID, platform: str) -> None:
    model = AdvertiserAccount if platform == Platform.AMAZON.value else GoogleAdvertiserAccount
    await db.execute(delete(model).where(model.user_id == user_id))
