"""
Onboarding Service — wizard step storage, progress tracking and reset.

Steps: 1 business core, 2 connect platforms, 3 brand identity, 4 products & services,
5 creative examples, 6 performance context, 7 done.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.models import (
    OnboardingProgress,
    BusinessCore,
    BrandIdentity,
    ProductsServices,
    CreativeExamples,
    PerformanceContext,
    AmazonToken,
    GoogleToken,
    ONBOARDING_MODELS,
    ONBOARDING_FINAL_STEP,
)
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

# step number -> model holding that step's answers (step 2 has no table)
STEP_MODELS = {
    1: BusinessCore,
    3: BrandIdentity,
    4: ProductsServices,
    5: CreativeExamples,
    6: PerformanceContext,
}

_SKIP_COLUMNS = {"id", "user_id", "created_at", "updated_at"}


def serialize_row(row) -> dict:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, uuid.UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        data[column.key] = value
    return data


async def get_step_row(db: AsyncSession, model, user_id: uuid.UUID):
    result = await db.execute(select(model).where(model.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_progress(db: AsyncSession, user_id: uuid.UUID) -> OnboardingProgress:
    progress = await get_step_row(db, OnboardingProgress, user_id)
    if progress is None:
        progress = OnboardingProgress(user_id=user_id, current_step=1, is_complete=False)
        db.add(progress)
        await db.flush()
    return progress


async def set_progress(
    db: AsyncSession,
    user_id: uuid.UUID,
    current_step: int,
    is_complete: Optional[bool] = None,
) -> OnboardingProgress:
    """Explicit progress update from the wizard (may move backwards)."""
    if not 1 <= current_step <= ONBOARDING_FINAL_STEP:
        raise ValueError(f"current_step must be between 1 and {ONBOARDING_FINAL_STEP}")
    progress = await get_or_create_progress(db, user_id)
    progress.current_step = current_step
    if is_complete is not None:
        progress.is_complete = is_complete
    progress.last_updated = utcnow()
    await db.flush()
    return progress


async def advance_progress(
    db: AsyncSession,
    user_id: uuid.UUID,
    step: int,
    complete: bool = False,
) -> OnboardingProgress:
    """Move forward to `step`; saving an earlier step never rewinds the wizard."""
    progress = await get_or_create_progress(db, user_id)
    progress.current_step = max(progress.current_step or 1, step)
    if complete:
        progress.is_complete = True
    progress.last_updated = utcnow()
    await db.flush()
    return progress


async def save_step(db: AsyncSession, user_id: uuid.UUID, step: int, data: dict) -> dict:
    """
    Write `data` over the step's row. Callers pass the full request model dump,
    so every answer is replaced. The first save of a step advances progress to
    the following step; saving performance context completes onboarding.
    """
    model = STEP_MODELS[step]
    row = await get_step_row(db, model, user_id)
    created = row is None
    if created:
        row = model(user_id=user_id)
        db.add(row)

    for column in model.__table__.columns:
        if column.key in _SKIP_COLUMNS or column.key not in data:
            continue
        setattr(row, column.key, data[column.key])
    row.updated_at = utcnow()
    await db.flush()

    is_last = step == ONBOARDING_FINAL_STEP - 1
    if created or is_last:
        await advance_progress(db, user_id, step + 1, complete=is_last)

    logger.info(f"Onboarding step {step} ({model.__tablename__}) saved for user {user_id}")
    return serialize_row(row)


async def complete_platform_step(db: AsyncSession, user_id: uuid.UUID) -> OnboardingProgress:
    return await advance_progress(db, user_id, 3)


async def connected_platforms(db: AsyncSession, user_id: uuid.UUID) -> dict:
    amazon = await get_step_row(db, AmazonToken, user_id)
    google = await get_step_row(db, GoogleToken, user_id)
    return {
        "amazon": amazon is not None and amazon.is_active,
        "google": google is not None and google.is_active,
        "facebook": False,
        "instagram": False,
        "tiktok": False,
        "pinterest": False,
        "snapchat": False,
    }


async def progress_summary(db: AsyncSession, user_id: uuid.UUID) -> dict:
    progress = await get_or_create_progress(db, user_id)
    steps = {}
    for step in range(1, ONBOARDING_FINAL_STEP):
        if step == 2:
            platforms = await connected_platforms(db, user_id)
            steps[step] = {"completed": platforms["amazon"] or platforms["google"], "last_updated": None}
            continue
        row = await get_step_row(db, STEP_MODELS[step], user_id)
        steps[step] = {
            "completed": row is not None,
            "last_updated": row.updated_at.isoformat() if row is not None and row.updated_at else None,
        }
    return {
        "current_step": progress.current_step,
        "is_complete": progress.is_complete,
        "last_updated": progress.last_updated.isoformat() if progress.last_updated else None,
        "steps": steps,
    }


async def reset_onboarding(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """
    Delete every onboarding row for the user. Users, API keys, platform tokens,
    advertiser accounts and metrics are untouched.
    """
    deleted = {}
    for model in ONBOARDING_MODELS:
        result = await db.execute(delete(model).where(model.user_id == user_id))
        deleted[model.__tablename__] = result.rowcount or 0
    logger.info(f"Onboarding reset for user {user_id}: {deleted}")
    return deleted
