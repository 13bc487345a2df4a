"""RabbitMQ messaging via FastStream."""

from __future__ import annotations

from outbox_service.infra.messaging.broker import broker_context, create_broker
from outbox_service.infra.messaging.transports import RabbitCommandProducer, RabbitEventTransport

__all__ = ["RabbitCommandProducer", "RabbitEventTransport", "broker_context", "create_broker"]
