"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from app.api import reminders, users
from app.api.admin import health
from app.api.deps import limiter
from app.api.webhooks import telephony, voice_ai
from app.config import get_settings
from app.db.session import async_session_maker, dispose_engine
from app.services.dispatcher import DispatchLoop
from app.services.providers import SignatureError, get_dispatch_client, shutdown_provider_clients

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup/shutdown events."""
    # Startup: Initialize Redis connection pool
    app.state.redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )

    app.state.dispatcher = None
    if settings.dispatch_in_process:
        app.state.dispatcher = DispatchLoop(
            async_session_maker,
            get_dispatch_client(),
            redis_client=app.state.redis,
        )
        app.state.dispatcher.start()

    yield
    # Shutdown: Stop the loop, then close connections
    if app.state.dispatcher is not None:
        await app.state.dispatcher.stop()
    await shutdown_provider_clients()
    await app.state.redis.close()
    await dispose_engine()


app = FastAPI(
    title="Voice Reminders",
    description="Schedules reminder calls and reconciles provider call events",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(SignatureError)
async def signature_error_handler(request: Request, exc: SignatureError) -> JSONResponse:
    """Reject unauthenticated webhooks without touching the store."""
    logger.warning(f"Rejected webhook from {request.client.host if request.client else 'unknown'}: {exc}")
    return JSONResponse(status_code=403, content={"detail": "Invalid signature"})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store unavailable: answer 503 so providers redeliver later."""
    logger.error(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [settings.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(users.router, tags=["Users"])
app.include_router(reminders.router, tags=["Reminders"])
app.include_router(telephony.router, tags=["Telephony"])
app.include_router(voice_ai.router, tags=["Voice AI"])
