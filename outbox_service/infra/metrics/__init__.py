"""Metrics registry and outbox collectors."""

from outbox_service.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY"]
