"""Review Desk: FastAPI entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from api.cron import router as cron_router
from api.oauth import router as oauth_router
from api.reviews import router as reviews_router
from src.core import observability
from src.core.config import settings
from src.core.db import async_session, engine

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Review Desk...")
    if not settings.google_oauth_configured:
        logger.warning("Google OAuth client is not configured; connect flow is disabled")
    if settings.is_production and not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; /cron endpoints will refuse all calls")

    yield

    observability.flush()
    await engine.dispose()
    logger.info("Shutting down Review Desk...")


app = FastAPI(title="Review Desk", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(oauth_router)
app.include_router(reviews_router)
app.include_router(cron_router)


@app.get("/health")
async def health():
    checks = {"api": "ok"}
    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"
    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, **checks}
