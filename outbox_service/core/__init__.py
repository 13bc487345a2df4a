"""Core domain building blocks: settings, database base classes and events."""
