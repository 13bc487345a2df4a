"""Taskiq broker for scheduled outbox jobs.

Tasks are executed by a taskiq worker over RabbitMQ (taskiq-aio-pika):

    taskiq worker outbox_service.tasks.broker:broker outbox_service.tasks.outbox

When RabbitMQ is not configured ``broker`` is None and no tasks are
registered.
"""

from __future__ import annotations

import logging

from taskiq.middlewares import SimpleRetryMiddleware
from taskiq_aio_pika import AioPikaBroker

from outbox_service.core.settings import get_rabbit_settings
from outbox_service.infra.logging.config import setup_logging

logger = logging.getLogger(__name__)

TASK_QUEUE = "outbox-tasks"

rabbit_settings = get_rabbit_settings()
setup_logging()

broker: AioPikaBroker | None = None

if rabbit_settings.is_configured:
    broker = AioPikaBroker(
        url=rabbit_settings.get_url(),
        queue_name=rabbit_settings.get_prefixed_queue(TASK_QUEUE),
        declare_exchange=True,
        declare_queues=True,
    ).with_middlewares(SimpleRetryMiddleware())

    logger.info(
        "Taskiq outbox broker configured",
        extra={"queue": rabbit_settings.get_prefixed_queue(TASK_QUEUE)},
    )
else:
    logger.warning("RabbitMQ not configured - outbox tasks disabled")


__all__ = ["TASK_QUEUE", "broker"]
