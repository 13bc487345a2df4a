"""FastStream implementations of the outbox delivery ports.

``RabbitEventTransport`` implements ``EventTransport`` and
``RabbitCommandProducer`` implements ``CommandProducer``. They are the "real"
collaborators that the outbox publishers call once an entry is due.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from faststream.rabbit import ExchangeType, RabbitExchange

from outbox_service.core.settings import get_rabbit_settings

if TYPE_CHECKING:
    from faststream.rabbit import RabbitBroker

    from outbox_service.core.events.base import DomainEvent
    from outbox_service.core.settings import RabbitSettings

logger = logging.getLogger(__name__)


def topic_exchange(name: str) -> RabbitExchange:
    """Durable topic exchange declaration for ``name``."""
    return RabbitExchange(name=name, type=ExchangeType.TOPIC, durable=True, auto_delete=False)


class RabbitEventTransport:
    """Publishes domain events to RabbitMQ topic exchanges.

    The exchange is the entry's topic (``events.<domain>``) and the routing
    key the entry's routing key (``event.<snake_case_class>``). Without them
    the configured exchange and the event type are used.
    """

    def __init__(self, broker: RabbitBroker, settings: RabbitSettings | None = None) -> None:
        self._broker = broker
        self._settings = settings or get_rabbit_settings()

    async def publish_event_to_queue(
        self,
        event: DomainEvent,
        *,
        topic: str | None = None,
        routing_key: str | None = None,
    ) -> None:
        exchange = topic or self._settings.exchange_name
        key = routing_key or event.event_type
        await self._broker.publish(
            event.model_dump(mode="json"),
            exchange=topic_exchange(exchange),
            routing_key=key,
            headers=event.headers(),
            message_id=event.event_id,
            correlation_id=event.correlation_id,
            persist=True,
        )
        logger.debug(
            "Event published to RabbitMQ",
            extra={"event_type": event.event_type, "event_id": event.event_id, "exchange": exchange, "routing_key": key},
        )


class RabbitCommandProducer:
    """Sends task commands to prefixed RabbitMQ queues."""

    def __init__(self, broker: RabbitBroker, settings: RabbitSettings | None = None) -> None:
        self._broker = broker
        self._settings = settings or get_rabbit_settings()

    async def send_command(
        self,
        route: str,
        message: Any,
        need_reply: bool = False,
    ) -> Any:
        """Send ``message`` to the queue for ``route``.

        Returns:
            The decoded reply when ``need_reply`` is set, otherwise None.
        """
        queue = self._settings.get_prefixed_queue(route)
        if need_reply:
            response = await self._broker.request(message, queue=queue)
            return await response.decode()

        await self._broker.publish(message, queue=queue, persist=True)
        logger.debug("Command sent to RabbitMQ", extra={"queue": queue})
        return None

    async def send_event(self, topic: str, message: Any) -> Any:
        """Publish ``message`` on the service exchange with ``topic`` as routing key."""
        await self._broker.publish(
            message,
            exchange=topic_exchange(self._settings.exchange_name),
            routing_key=topic,
            persist=True,
        )
        return None


__all__ = ["RabbitCommandProducer", "RabbitEventTransport", "topic_exchange"]
