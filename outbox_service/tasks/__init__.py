"""Background tasks (taskiq)."""
