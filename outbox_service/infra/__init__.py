"""Infrastructure adapters: database, logging, messaging, metrics and the outbox."""
