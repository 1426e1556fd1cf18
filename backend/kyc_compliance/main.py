"""
CRM Identity Verification — FastAPI Application Entry Point

Aggregates all routers, configures middleware, serves stored evidence,
and initializes the database on startup.
"""
import logging
import os
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from kyc_compliance.config import get_settings
from kyc_compliance.database import init_db
from kyc_compliance.routes import subjects_router, kyc_router, verification_router
from kyc_compliance.utils.logging_config import setup_logging

settings = get_settings()
logger = logging.getLogger("kyc_compliance.main")

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Identity verification for real estate counter-parties: voter-credential "
        "validation against the electoral registry, PLD/AML watchlist screening, "
        "selfie-to-credential biometric matching and an immutable audit trail."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    setup_logging()
    init_db()

    logger.info(
        f"{settings.APP_NAME} v{settings.APP_VERSION} | "
        f"TIME: {datetime.now().isoformat()} | "
        f"PROVIDER KEYS: {len(settings.provider_api_keys)} service-wide | "
        f"DATABASE: {settings.DATABASE_URL} | DEBUG: {settings.DEBUG}"
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration}ms)")

    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(subjects_router)
app.include_router(kyc_router)
app.include_router(verification_router)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    from kyc_compliance.database import SessionLocal
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "provider_keys": "configured" if settings.provider_api_keys else "per-tenant only",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }


# ─── Serve Evidence (Static Files) ──────────────────────────────────
os.makedirs(settings.EVIDENCE_DIR, exist_ok=True)
app.mount("/evidence", StaticFiles(directory=settings.EVIDENCE_DIR), name="evidence")
