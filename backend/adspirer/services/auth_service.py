"""
Auth Service — Password hashing, JWT creation/verification, API key generation.
"""

import secrets
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.config import get_settings
from adspirer.models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 6
API_KEY_PREFIX = "adsp_"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: str, email: str, role: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "exp": now + timedelta(days=settings.jwt_expire_days),
        "iat": now,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(24)


async def bootstrap_first_admin(db: AsyncSession) -> Optional[User]:
    """
    Create the admin from FIRST_ADMIN_EMAIL / FIRST_ADMIN_PASSWORD, only while no users exist.
    Returns the new admin, or None when nothing was created.
    """
    settings = get_settings()
    if not settings.first_admin_email or not settings.first_admin_password:
        return None
    count = (await db.execute(select(func.count()).select_from(User))).scalar() or 0
    if count > 0:
        return None
    admin = User(
        email=settings.first_admin_email.lower(),
        password_hash=hash_password(settings.first_admin_password),
        name="Admin",
        role="admin",
        is_active=True,
    )
    db.add(admin)
    await db.commit()
    logger.info(f"Bootstrap: created first admin user {admin.email}")
    return admin
