"""
HaulTrack — FastAPI Backend
Route execution for multi-stop vehicle transport
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from db.database import engine
from dependencies import build_runtime
from routers import driver, tracking, admin
from services.errors import DispatchError
from services.tracker_cache import tracker_sweep_loop

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    app.state.tracking = build_runtime()
    sweeper = asyncio.create_task(
        tracker_sweep_loop(app.state.tracking.cache, settings.TRACKER_SWEEP_INTERVAL_SEC)
    )
    logger.info("🚀 HaulTrack API starting...")
    yield
    # Shutdown
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()
    logger.info("🛑 HaulTrack API shut down.")


app = FastAPI(
    title="HaulTrack Route Execution API",
    description="Driver route lifecycle, status propagation and tracking ledger",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Errors ─────────────────────────────────────────────────
@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ── Routers ────────────────────────────────────────────────
app.include_router(driver.router, prefix="/api/drivers", tags=["Driver App"])
app.include_router(tracking.router, prefix="/api/tracking", tags=["Tracking"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "HaulTrack API"}


@app.get("/health/db")
async def health_db():
    """Verify DB connection and that we're talking to the right database."""
    from sqlalchemy import text
    try:
        async with engine.connect() as conn:
            row = (await conn.execute(text("SELECT current_database(), current_user"))).first()
            active = (await conn.execute(text("SELECT COUNT(*) FROM routes WHERE status = 'In Progress'"))).first()
        return {
            "status": "ok",
            "database": row[0],
            "user": row[1],
            "routes_in_progress": active[0] if active else 0,
        }
    except Exception as e:
        return {"status": "error", "detail": str(e)}
