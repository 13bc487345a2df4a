"""Command producer decorator that defers task commands through the outbox.

With the outbox enabled, ``send_command`` writes one TASK entry in the
caller's transaction and returns ``None``; the poller sends the command later.
Reply-expecting sends are rejected because a deferred command cannot answer
synchronously. With the outbox disabled every call goes straight to the
wrapped producer.

``send_event`` is never intercepted; events reach the outbox through
``OutboxAwareEventStore``.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from outbox_service.infra.outbox.entry import OutboxEntry, OutboxMessageType
from outbox_service.infra.outbox.exceptions import ReplyNotSupportedError
from outbox_service.infra.outbox.metrics import NullOutboxMetrics
from outbox_service.infra.outbox.naming import (
    extract_aggregate_id,
    extract_aggregate_type,
    extract_command_args,
    extract_command_type,
    normalize_payload,
)

if TYPE_CHECKING:
    from outbox_service.infra.outbox.ports import CommandProducer, OutboxMetrics
    from outbox_service.infra.outbox.repository import OutboxRepository

logger = logging.getLogger(__name__)


class OutboxAwareTaskProducer:
    """``CommandProducer`` that stages commands as outbox entries.

    Args:
        inner: Real command producer, used when the outbox is disabled
        repository: Outbox repository bound to the caller's transaction
        metrics: Metrics sink (defaults to no-op)
        enabled: Initial state of the outbox toggle
    """

    def __init__(
        self,
        inner: CommandProducer,
        repository: OutboxRepository,
        metrics: OutboxMetrics | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._inner = inner
        self._repository = repository
        self._metrics = metrics or NullOutboxMetrics()
        self._enabled = threading.Event()
        if enabled:
            self._enabled.set()

    async def send_command(self, route: str, message: Any, need_reply: bool = False) -> Any:
        """Stage ``message`` for ``route`` or delegate when the outbox is off.

        Raises:
            ReplyNotSupportedError: If ``need_reply`` while the outbox is enabled.
            OutboxPersistenceError: If the entry could not be saved.
        """
        if not self.is_outbox_enabled():
            return await self._inner.send_command(route, message, need_reply)

        if need_reply:
            raise ReplyNotSupportedError()

        payload = normalize_payload(message)
        command_type = extract_command_type(payload, route)
        command_args = extract_command_args(payload)
        aggregate_type = extract_aggregate_type(command_type)

        stored_payload = {"args": [], **payload, "type": command_type}
        entry = OutboxEntry.create_for_task(
            aggregate_type=aggregate_type,
            aggregate_id=extract_aggregate_id(command_args),
            command_type=command_type,
            payload=json.dumps(stored_payload, ensure_ascii=False, default=str),
            topic=route,
            routing_key=route,
        )
        stored = await self._repository.save(entry)
        self._metrics.record_message_enqueued(OutboxMessageType.TASK, aggregate_type)

        logger.debug(
            "Task command staged in outbox",
            extra={
                "entry_id": stored.id,
                "command_type": command_type,
                "aggregate_type": stored.aggregate_type,
                "aggregate_id": stored.aggregate_id,
                "route": route,
                "sequence_number": stored.sequence_number,
            },
        )
        return None

    async def send_event(self, topic: str, message: Any) -> Any:
        return await self._inner.send_event(topic, message)

    # ─────────────────────────────────────────────────────
    # Runtime toggle
    # ─────────────────────────────────────────────────────
    def enable(self) -> None:
        self._enabled.set()
        logger.info("Outbox enabled for task producer")

    def disable(self) -> None:
        self._enabled.clear()
        logger.info("Outbox disabled for task producer")

    def is_outbox_enabled(self) -> bool:
        return self._enabled.is_set()


__all__ = ["OutboxAwareTaskProducer"]
