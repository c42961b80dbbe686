"""
Adspirer — FastAPI Backend
Retail media assistant: Amazon / Google Ads connections, campaign-data Q&A chat,
and the onboarding wizard. All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from adspirer.config import get_settings
from adspirer.database import init_db, check_db_connection, async_session
from adspirer.routers import auth, api_keys, platforms, chat, rag, onboarding, metrics
from adspirer.services.auth_service import bootstrap_first_admin

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Adspirer...")
    try:
        await init_db()
        async with async_session() as db:
            await bootstrap_first_admin(db)
        logger.info("Database initialized — all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Adspirer",
    description="Retail media campaign assistant for Amazon and Google Ads",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Auth (register/login public; the rest resolve the user per route) ─
app.include_router(auth.router, prefix="/api")

# ── Register Routers ─────────────────────────────────────────────────
app.include_router(api_keys.router, prefix="/api/keys", tags=["API Keys"])
app.include_router(platforms.amazon_router, prefix="/api/amazon", tags=["Amazon Ads"])
app.include_router(platforms.google_router, prefix="/api/google", tags=["Google Ads"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(rag.router, prefix="/api/rag", tags=["Campaign Q&A"])
app.include_router(onboarding.router, prefix="/api", tags=["Onboarding"])
app.include_router(metrics.router, prefix="/api/metrics", tags=["Campaign Metrics"])


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Adspirer",
        "database": "connected" if db_ok else "disconnected",
    }
