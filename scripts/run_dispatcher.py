#!/usr/bin/env python3
"""Run the reminder dispatch loop as its own process.

The loop ticks once at startup and then every DISPATCH_INTERVAL_SECONDS,
placing calls for every scheduled reminder that has come due.

Usage:
    python scripts/run_dispatcher.py
    python scripts/run_dispatcher.py --once  # Single tick, then exit

Environment variables required:
    - DATABASE_URL: PostgreSQL connection string
    - REDIS_URL: Redis for the cross-process dispatch lock
    - TELEPHONY_* or VOICE_AI_* credentials, per DISPATCH_PROVIDER
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import redis.asyncio as redis

from app.config import get_settings
from app.db.session import async_session_maker, dispose_engine
from app.services.dispatcher import DispatchLoop
from app.services.providers import get_dispatch_client, shutdown_provider_clients

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main(once: bool) -> None:
    """Run ticks until interrupted (or a single tick with ``once``)."""
    settings = get_settings()
    redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)

    loop = DispatchLoop(
        async_session_maker,
        get_dispatch_client(),
        settings=settings,
        redis_client=redis_client,
    )

    try:
        if once:
            stats = await loop.run_tick()
            logger.info(f"Tick finished: {stats}")
            return

        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            asyncio.get_running_loop().add_signal_handler(sig, stop.set)

        logger.info(f"Worker started with provider {settings.dispatch_provider}")
        loop.start()
        await stop.wait()
        logger.info("Shutdown requested")
        await loop.stop()
    finally:
        await shutdown_provider_clients()
        await redis_client.close()
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Dispatch due reminder calls"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit"
    )

    args = parser.parse_args()

    asyncio.run(main(args.once))
