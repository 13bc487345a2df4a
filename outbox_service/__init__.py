"""Transactional outbox for domain events and task commands."""

__version__ = "0.1.0"
