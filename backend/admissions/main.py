"""
Admissions Payments — FastAPI Application Entry Point

Aggregates all routers, configures middleware and error handling,
initializes the database and the expiry sweep on startup.
"""
import time

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from admissions.config import get_settings
from admissions.database import SessionLocal, init_db
from admissions.exceptions import PaymentServiceError
from admissions.logging_config import configure_logging
from admissions.routes import payment_router, admin_router
from admissions.schemas.schemas import ErrorResponse, HealthResponse
from admissions.services.expiry_sweeper import sweeper
from admissions.utils.rate_limiter import limiter

settings = get_settings()
configure_logging()
logger = structlog.get_logger(component="api")

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Enrollment fee payments for the admissions backend: checkout initialization, "
        "client verification and gateway webhooks, reconciled exactly once into "
        "application and enrollment state."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup / Shutdown ──────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
async def on_startup():
    """Initialize database tables, reset process state, start the sweep."""
    init_db()
    limiter.reset()
    sweep_enabled = sweeper.start()

    logger.info(
        "Service started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        gateway_configured=bool(settings.PAYSTACK_SECRET_KEY),
        webhook_secret_configured=bool(settings.PAYSTACK_WEBHOOK_SECRET),
        expiry_sweep=sweep_enabled,
    )


@app.on_event("shutdown")
async def on_shutdown():
    await sweeper.stop()


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
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration,
        )

    return response


# ─── Error Handling ──────────────────────────────────────────────────
@app.exception_handler(PaymentServiceError)
async def payment_error_handler(request: Request, exc: PaymentServiceError):
    """Render domain errors as structured JSON with no partial success."""
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message, error_code=exc.error_code)
    body = ErrorResponse(detail=exc.message or exc.error_code, error_code=exc.error_code)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(payment_router)
app.include_router(admin_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.error("Health check database failure", error=str(e))
    finally:
        db.close()

    if settings.PAYSTACK_WEBHOOK_SECRET:
        webhook_auth = "signed"
    elif settings.WEBHOOK_ALLOW_UNSIGNED and not settings.is_production:
        webhook_auth = "unsigned-allowed"
    else:
        webhook_auth = "rejecting"

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        database="connected" if db_ok else "disconnected",
        gateway=(
            ("test" if "test" in settings.PAYSTACK_SECRET_KEY else "live")
            if settings.PAYSTACK_SECRET_KEY else "unconfigured"
        ),
        webhook_auth=webhook_auth,
        uptime_seconds=round(time.time() - BOOT_TIME, 1),
        version=settings.APP_VERSION,
    )
