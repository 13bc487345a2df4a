"""RabbitMQ broker setup using FastStream.

The outbox poller is the only component here that talks to RabbitMQ, so the
broker is created on demand rather than at import time.

Usage:
    async with broker_context() as broker:
        if broker is not None:
            processor = create_outbox_processor(broker)
            await processor.run(run_once=True)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from faststream.rabbit import RabbitBroker

from outbox_service.core.settings import get_rabbit_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from outbox_service.core.settings import RabbitSettings

logger = logging.getLogger(__name__)


def create_broker(settings: RabbitSettings | None = None) -> RabbitBroker | None:
    """Build a FastStream RabbitMQ broker.

    Returns:
        A broker that still has to be started, or None when RabbitMQ is not
        configured.
    """
    settings = settings or get_rabbit_settings()
    if not settings.is_configured:
        logger.warning("RabbitMQ not configured - outbox publishing disabled")
        return None

    return RabbitBroker(
        settings.get_url(),
        graceful_timeout=settings.graceful_timeout,
        logger=logger,
    )


@asynccontextmanager
async def broker_context(settings: RabbitSettings | None = None) -> AsyncIterator[RabbitBroker | None]:
    """Connect a fresh broker for the duration of the block.

    Used by the CLI and taskiq tasks, which run outside any long-lived
    application lifespan.

    Yields:
        Connected broker, or None if RabbitMQ is not configured.

    Raises:
        ConnectionError: If the connection is not established within
            ``connection_timeout``.
    """
    settings = settings or get_rabbit_settings()
    broker = create_broker(settings)
    if broker is None:
        yield None
        return

    try:
        await asyncio.wait_for(broker.start(), timeout=settings.connection_timeout)
    except TimeoutError:
        error_msg = f"RabbitMQ connection timeout after {settings.connection_timeout}s"
        logger.error(error_msg, extra={"connection_timeout": settings.connection_timeout})
        raise ConnectionError(error_msg) from None
    logger.debug("Broker connected via context manager")

    try:
        yield broker
    finally:
        await broker.close()
        logger.debug("Broker disconnected via context manager")


__all__ = ["broker_context", "create_broker"]
