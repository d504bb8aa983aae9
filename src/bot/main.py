"""Memory service entry point."""

import asyncio
import logging

from src.config import settings
from src.memory.factory import build_store
from src.webhooks.server import AdminServer

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def run() -> None:
    """Build the store, serve the operator endpoints, and wait for shutdown."""
    store = build_store()
    server = AdminServer(store)
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
        await store.close()


def main() -> None:
    """Start the service."""
    logger.info(
        "Starting memory service (retention window %d, tiers: %s)...",
        settings.retention_window,
        ", ".join(settings.describe_tiers()) or "volatile only",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
