"""
Channel Pipeline API

FastAPI application: webhook ingestion for every messaging channel,
staff conversation operations and health probes.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import appointments, conversations, health, webhooks
from app.channels.adapter import AdapterRegistry
from app.config import settings
from app.core.audit.logger import AuditLogger
from app.core.booking.bridge import BookingBridge
from app.core.booking.client import AppointmentServiceClient
from app.core.intelligence.entities.extractor import ClaudeEntityExtractor
from app.core.intelligence.intent.classifier import ClaudeIntentClassifier
from app.core.pipeline.engine import ConversationPipeline
from app.core.pipeline.response import ResponseComposer
from app.infra.database import close_db, get_session_factory, init_db
from app.infra.locks import ConversationLocks
from app.infra.redis import RedisClient, get_redis
from app.infra.stores import (
    SqlAuditStore,
    SqlChannelInstanceRepository,
    SqlConversationStore,
)


def setup_logging() -> None:
    """Root logging for the process; AUDIT: lines go through here too."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


def build_pipeline(app: FastAPI) -> None:
    """
    Create the services and keep them on `app.state`.

    Channel adapters are registered on `app.state.adapters` by the
    deployment; a webhook for a channel without an adapter gets 404.
    """
    session_factory = get_session_factory()

    conversation_store = SqlConversationStore(session_factory)
    audit_logger = AuditLogger(SqlAuditStore(session_factory))
    appointment_service = AppointmentServiceClient(
        base_url=settings.appointment_service_url,
        timeout=settings.booking_timeout_seconds,
    )
    bridge = BookingBridge(
        appointment_service,
        audit_logger=audit_logger,
        timeout=settings.booking_timeout_seconds,
    )

    app.state.appointment_service = appointment_service
    app.state.booking_bridge = bridge
    app.state.conversations = conversation_store
    app.state.instances = SqlChannelInstanceRepository(session_factory)
    app.state.adapters = AdapterRegistry()
    app.state.pipeline = ConversationPipeline(
        store=conversation_store,
        audit_logger=audit_logger,
        classifier=ClaudeIntentClassifier(),
        extractor=ClaudeEntityExtractor(),
        composer=ResponseComposer(bridge),
        locks=ConversationLocks(
            redis_provider=get_redis,
            timeout=settings.conversation_lock_timeout_seconds,
            ttl_seconds=settings.conversation_lock_ttl_seconds,
        ),
        nlu_timeout=settings.nlu_timeout_seconds,
        dispatch_timeout=settings.dispatch_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create shared services on startup, drain and close them on shutdown."""
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    # Schema is managed by migrations outside development
    if settings.is_development:
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    redis = await RedisClient.get_client()
    if redis is None:
        logger.warning("Redis unavailable - conversation locks are process-local")

    build_pipeline(app)
    logger.info(f"Accepting webhooks on {settings.host}:{settings.port}")

    yield

    logger.info("Shutting down: draining in-flight conversations")

    # Runs whose webhook caller disconnected still persist and audit
    await app.state.pipeline.drain()
    await app.state.appointment_service.close()
    await RedisClient.close()
    await close_db()

    logger.info("Shutdown complete")


app = FastAPI(
    title="Channel Pipeline API",
    description="""
    Multi-tenant conversational pipeline for medical appointment channels.

    ## Features
    - Webhook ingestion for every configured channel instance
    - Intent classification and entity extraction
    - Appointment search, booking and lookup through the appointment service
    - Audit trail for every processed message
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")

    # Internal details only outside production-like environments
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()
    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(conversations.router)
app.include_router(appointments.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Service identity."""
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
