"""FastAPI application for website call tracking.

Provides:
- Call button click ingestion
- Periodic reconciliation of clicks against PBX call-detail records
- Lead forwarding to LeadDyno for affiliate attribution

Flow:
1. POST /api/call-click - Browser records a click (stored unmatched)
2. Scheduler tick (or GET|POST /api/check-calls) - Match clicks to PBX calls
3. Matched clicks are forwarded as leads (POST /api/send-lead retries by hand)
4. GET /health - Scheduler state and last pass summary
"""

import logging

# Load environment variables from project root
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv

_project_root = os.path.dirname(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(__file__))))
)
load_dotenv(os.path.join(_project_root, ".env.local"))
load_dotenv()  # Also try default .env

from calltrack.scheduler import ReconciliationScheduler  # noqa: E402
from fastapi import Depends, FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel  # noqa: E402

from api.db import init_db  # noqa: E402
from api.dependencies import get_scheduler  # noqa: E402
from api.tracking.routes import router as tracking_router  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger("call-tracking-api")


def allowed_origins() -> list[str]:
    """CORS origins from ALLOWED_ORIGINS (comma-separated, default: any)."""
    raw = os.getenv("ALLOWED_ORIGINS", "*")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


# =============================================================================
# App Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle - create tables, start/stop the scheduler."""
    # Startup: tables, then reconciliation loop
    await init_db()
    logger.info("Database ready")
    scheduler = get_scheduler()
    await scheduler.start()
    yield
    # Shutdown: stop the loop and any in-flight pass
    await scheduler.stop()


app = FastAPI(
    title="Call Tracking API",
    description="Attributes inbound phone calls to call-button clicks",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for the tracked website
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(tracking_router)


# =============================================================================
# Health
# =============================================================================


class LastPassResponse(BaseModel):
    """Summary of the most recent reconciliation pass."""

    started_at: str
    finished_at: str | None
    clicks_checked: int
    matched: int
    leads_sent: int
    lead_failures: int
    pbx_error: str | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    scheduler_running: bool
    pass_in_progress: bool
    completed_runs: int
    skipped_runs: int
    failed_runs: int
    last_pass: LastPassResponse | None = None


@app.get("/health", response_model=HealthResponse)
async def health_check(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
):
    """Health check endpoint."""
    last = scheduler.last_result

    last_pass = None
    if last is not None:
        last_pass = LastPassResponse(
            started_at=last.started_at.isoformat(),
            finished_at=last.finished_at.isoformat() if last.finished_at else None,
            clicks_checked=last.clicks_checked,
            matched=last.matched,
            leads_sent=last.leads_sent,
            lead_failures=last.lead_failures,
            pbx_error=last.pbx_error,
        )

    return HealthResponse(
        status="degraded" if last is not None and last.degraded else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        scheduler_running=scheduler.is_running,
        pass_in_progress=scheduler.pass_in_progress,
        completed_runs=scheduler.completed_runs,
        skipped_runs=scheduler.skipped_runs,
        failed_runs=scheduler.failed_runs,
        last_pass=last_pass,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
