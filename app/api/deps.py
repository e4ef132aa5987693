"""API dependencies for dependency injection."""

import logging
from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.models.call_log import CallProvider
from app.services.providers import BaseProviderClient, get_provider_client

logger = logging.getLogger(__name__)

# Rate limiter - uses client IP address
limiter = Limiter(key_func=get_remote_address)


async def get_redis(request: Request) -> redis.Redis:
    """Get Redis client from app state."""
    return request.app.state.redis


# =============================================================================
# Provider clients (overridden in tests)
# =============================================================================


def get_telephony_client() -> BaseProviderClient:
    return get_provider_client(CallProvider.TELEPHONY)


def get_voice_ai_client() -> BaseProviderClient:
    return get_provider_client(CallProvider.VOICE_AI)


# =============================================================================
# Type Aliases
# =============================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[redis.Redis, Depends(get_redis)]
TelephonyProvider = Annotated[BaseProviderClient, Depends(get_telephony_client)]
VoiceAIProvider = Annotated[BaseProviderClient, Depends(get_voice_ai_client)]
