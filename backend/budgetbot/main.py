"""
Budget Bot — FastAPI Backend
Chat-bot webhooks that pause and restore Google Ads budgets, report spend
and call statistics, and send hourly enquiry summaries over WhatsApp.
All mutation history and scheduled reverts persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from budgetbot.database import init_db, check_db_connection
from budgetbot.auth import require_auth
from budgetbot.routers import chat, cron, mutations

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Budget Bot...")
    try:
        await init_db()
        logger.info("Database initialized — all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Budget Bot",
    description="Google Ads budget pausing, call statistics and enquiry notifications for the chat bot",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Register Routers ──────────────────────────────────────────────────
_auth = [Depends(require_auth)]
app.include_router(chat.router, prefix="/api/chat", tags=["Chat Bot"], dependencies=_auth)
app.include_router(mutations.router, prefix="/api", tags=["Audit"], dependencies=_auth)
app.include_router(cron.router, prefix="/api")  # No API key — uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Budget Bot",
        "database": "connected" if db_ok else "disconnected",
    }
