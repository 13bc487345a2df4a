"""Output formatting utilities for CLI commands."""

from typing import Any

import click


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red to stderr."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    """Print a header message in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


def section(title: str) -> None:
    """Print a section divider."""
    click.secho(f"\n{'=' * 60}", fg="white", dim=True)
    click.secho(title, fg="white", bold=True)
    click.secho("=" * 60, fg="white", dim=True)


def key_values(rows: dict[str, Any], indent: int = 2) -> None:
    """Print ``label: value`` lines with the labels aligned."""
    if not rows:
        return
    width = max(len(label) for label in rows)
    for label, value in rows.items():
        click.echo(f"{' ' * indent}{label.ljust(width)}  {value}")
