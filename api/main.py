"""
api/main.py — FastAPI application entry point.

Run with:
    uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.ai_engine.utils import is_llm_configured
from app.db.session import get_engine, is_database_configured
from api.endpoints.pipeline_routes import router as pipeline_router
from api.endpoints.rule_routes import router as rule_router

logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    # Verify DB is reachable on startup, when one is configured
    if is_database_configured():
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified.")
    else:
        logger.warning("DATABASE_URL not set — rules, services and topic writes are unavailable.")
    yield
    logger.info("Application shutting down.")


# ── App ───────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Council Lead Pipeline",
    description=(
        "Filters and ranks municipal council transcript excerpts into "
        "prioritized, evidence-backed sales leads."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(pipeline_router, prefix="/pipeline", tags=["Pipeline"])
app.include_router(rule_router, prefix="/rules", tags=["Rules"])


# ── Health check ─────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health_check():
    """Returns service liveness status."""
    return {
        "status": "ok",
        "service": "council-lead-pipeline",
        "llm_configured": is_llm_configured(),
        "database_configured": is_database_configured(),
    }
