"""
API Keys Router — create, list and deactivate keys for programmatic access (X-API-Key).
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from adspirer.auth import get_current_user
from adspirer.database import get_db
from adspirer.models import ApiKey, User
from adspirer.services.auth_service import generate_api_key
from adspirer.utils import parse_uuid, mask_secret

logger = logging.getLogger(__name__)

router = APIRouter()


class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


def _key_dict(key: ApiKey, reveal: bool = False) -> dict:
    return {
        "id": str(key.id),
        "name": key.name,
        "key_value": key.key_value if reveal else mask_secret(key.key_value),
        "is_active": key.is_active,
        "last_used_at": key.last_used_at.isoformat() if key.last_used_at else None,
        "request_count": key.request_count or 0,
        "created_at": key.created_at.isoformat() if key.created_at else None,
    }


@router.post("", status_code=201)
async def create_api_key(
    payload: ApiKeyCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a key. The full value is only returned here."""
    key = ApiKey(user_id=user.id, name=payload.name.strip(), key_value=generate_api_key())
    db.add(key)
    await db.flush()
    logger.info(f"API key '{key.name}' created for user {user.id}")
    return _key_dict(key, reveal=True)


@router.get("")
async def list_api_keys(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(ApiKey).where(ApiKey.user_id == user.id).order_by(ApiKey.created_at.desc())
    )
    return [_key_dict(k) for k in result.scalars().all()]


@router.delete("/{key_id}")
async def deactivate_api_key(
    key_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate (not delete) a key so its usage history is kept."""
    result = await db.execute(
        select(ApiKey).where(ApiKey.id == parse_uuid(key_id, "key_id"), ApiKey.user_id == user.id)
    )
    key = result.scalar_one_or_none()
    if not key:
        raise HTTPException(status_code=404, detail="API key not found")
    key.is_active = False
    await db.flush()
    logger.info(f"API key '{key.name}' deactivated for user {user.id}")
    return {"success": True, "id": str(key.id)}
