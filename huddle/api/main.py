"""
huddle.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn huddle.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from huddle.api.deps import get_config, get_engine  # noqa: E402
from huddle.api.errors import install_error_handlers  # noqa: E402
from huddle.api.routes.gatherings import router as gatherings_router  # noqa: E402
from huddle.api.routes.popularity import router as popularity_router  # noqa: E402
from huddle.api.routes.schedules import router as schedules_router  # noqa: E402
from huddle.services.recompute_queue import configure_recompute_queue  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, run the recompute drain."""
    engine = get_engine()
    cfg = get_config()
    queue = configure_recompute_queue(engine=engine, interval=cfg.recompute_drain_seconds)
    queue.start(asyncio.get_running_loop())
    logger.info(
        "Huddle API started for %s — engine ready (%s)",
        cfg.community_name, engine.url.database,
    )
    yield
    queue.stop()
    # Flush whatever was requested after the last drain.
    try:
        await queue.drain_once()
    except Exception:
        logger.exception("Final score recompute drain failed")
    logger.info("Huddle API shutting down")


app = FastAPI(
    title="Huddle API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

# Mount routers
app.include_router(gatherings_router, prefix="/api")
app.include_router(schedules_router, prefix="/api")
app.include_router(popularity_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
