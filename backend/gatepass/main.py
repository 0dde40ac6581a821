"""
Gatepass - Event Vendor Admission API

Turns paid Stripe checkouts into vendor registrations and admits them at
the event gate:
- Idempotent webhook ingestion (unique payment session per registration)
- Signed QR credentials
- Compare-and-set check-in, safe across concurrent gate devices
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatepass.core.config import get_settings
from gatepass.core.exceptions import GatepassError
from gatepass.core.logging import setup_logging, get_logger
from gatepass.core.metrics import metrics_endpoint
from gatepass.api.router import api_router
from gatepass.api.middleware import RequestLoggingMiddleware
from gatepass.services.cache_service import get_redis, close_redis, get_cache_stats

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        credential_signing=settings.CREDENTIAL_SIGNING_ENABLED,
        require_signature=settings.CREDENTIAL_REQUIRE_SIGNATURE,
    )
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("stripe_webhook_secret_missing", message="Webhook endpoint will answer 503")

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without roster cache")

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Vendor registration admission: payment webhooks, QR credentials, gate check-in",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(GatepassError)
async def gatepass_error_handler(request: Request, exc: GatepassError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.code},
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
