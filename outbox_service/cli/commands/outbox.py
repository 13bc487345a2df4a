"""Outbox management commands.

This module provides CLI commands for operating the transactional outbox:

- publish      - Drain due entries to RabbitMQ (one batch or continuously)
- cleanup      - Delete published entries past the retention window
- stats        - Pending/published/failed counts and backlog age
- show         - Inspect a single entry
"""

import json
import sys

import click

from outbox_service.cli.utils import (
    coro,
    error,
    header,
    info,
    key_values,
    section,
    success,
    warning,
)
from outbox_service.core.database.exceptions import NotFoundError
from outbox_service.core.settings import get_outbox_settings
from outbox_service.infra.database.session import get_async_session
from outbox_service.infra.messaging.broker import broker_context
from outbox_service.infra.outbox.entry import OutboxMessageType
from outbox_service.infra.outbox.maintenance import OutboxCleaner
from outbox_service.infra.outbox.metrics import PrometheusOutboxMetrics
from outbox_service.infra.outbox.processor import create_outbox_processor
from outbox_service.infra.outbox.repository import OutboxRepository

MESSAGE_TYPE_CHOICES = {
    "event": OutboxMessageType.EVENT,
    "task": OutboxMessageType.TASK,
    "all": None,
}


@click.group(name="outbox")
def outbox() -> None:
    """Transactional outbox commands."""


@outbox.command(name="publish")
@click.option("--batch-size", type=int, default=None, help="Entries per batch (default: OUTBOX_BATCH_SIZE)")
@click.option(
    "--poll-interval",
    type=float,
    default=None,
    help="Seconds to wait when no entries are due (default: OUTBOX_POLL_INTERVAL)",
)
@click.option(
    "--max-retries",
    type=int,
    default=None,
    help="Skip entries that already failed this many times (default: OUTBOX_MAX_RETRIES)",
)
@click.option(
    "--message-type",
    type=click.Choice(sorted(MESSAGE_TYPE_CHOICES)),
    default="all",
    show_default=True,
    help="Only publish entries of this type",
)
@click.option("--run-once", is_flag=True, help="Process a single batch and exit")
@click.option("--dry-run", is_flag=True, help="List due entries without publishing them")
@coro
async def publish(
    batch_size: int | None,
    poll_interval: float | None,
    max_retries: int | None,
    message_type: str,
    run_once: bool,
    dry_run: bool,
) -> None:
    """Publish due outbox entries to RabbitMQ.

    Runs until interrupted unless --run-once is given.

    Examples:
      outbox-service outbox publish --run-once
      outbox-service outbox publish --message-type event --batch-size 500
    """
    overrides: dict = {"message_type": MESSAGE_TYPE_CHOICES[message_type], "dry_run": dry_run}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if poll_interval is not None:
        overrides["poll_interval"] = poll_interval
    if max_retries is not None:
        overrides["max_retries"] = max_retries

    header("Outbox Publisher")
    if dry_run:
        warning("Dry run: nothing will be published")

    try:
        async with broker_context() as broker:
            if broker is None:
                error("RabbitMQ is not configured")
                info("Set RABBIT_ENABLED=true and AMQP_URI (or RABBIT_HOST)")
                sys.exit(1)

            processor = create_outbox_processor(broker, **overrides)
            if not run_once:
                info("Publishing continuously, press Ctrl+C to stop")
            result = await processor.run(run_once=run_once)

    except Exception as e:
        error(f"Outbox publish failed: {e}")
        sys.exit(1)

    section("Batch Summary")
    key_values(
        {
            "Fetched": result.fetched,
            "Published": result.published,
            "Failed": result.failed,
            "Skipped": result.skipped,
            "Duration": f"{result.duration:.3f}s",
        }
    )
    for entry_id, message in result.errors.items():
        warning(f"{entry_id}: {message}")

    if result.failed:
        warning(f"{result.failed} entries failed and were rescheduled")
    else:
        success("Outbox publish completed")


@outbox.command(name="cleanup")
@click.option("--retention-days", type=int, default=None, help="Keep entries published within N days")
@click.option("--batch-size", type=int, default=None, help="Rows deleted per statement")
@click.option("--include-failed", is_flag=True, help="Also delete dead letters (retry_count >= --max-retries)")
@click.option(
    "--max-retries",
    type=int,
    default=None,
    help="Retry limit the poller runs with (default: OUTBOX_MAX_RETRIES)",
)
@click.option("--dry-run", is_flag=True, help="Only count what would be deleted")
@coro
async def cleanup(
    retention_days: int | None,
    batch_size: int | None,
    include_failed: bool,
    max_retries: int | None,
    dry_run: bool,
) -> None:
    """Delete published outbox entries older than the retention window.

    Examples:
      outbox-service outbox cleanup --retention-days 3
      outbox-service outbox cleanup --include-failed --dry-run
    """
    header("Outbox Cleanup")

    try:
        cleaner = OutboxCleaner(metrics=PrometheusOutboxMetrics())
        result = await cleaner.run(
            retention_days=retention_days,
            batch_size=batch_size,
            include_failed=include_failed,
            max_retries=max_retries,
            dry_run=dry_run,
        )
    except Exception as e:
        error(f"Outbox cleanup failed: {e}")
        sys.exit(1)

    info(f"Cutoff: {result.cutoff.isoformat()}")
    verb = "Would delete" if dry_run else "Deleted"
    key_values(
        {
            f"{verb} published": result.published_deleted,
            f"{verb} failed": result.failed_deleted,
        }
    )
    success(f"{verb} {result.total_deleted} outbox entries")


@outbox.command(name="stats")
@click.option("--json", "as_json", is_flag=True, help="Print the statistics as JSON")
@coro
async def stats(as_json: bool) -> None:
    """Show outbox backlog statistics."""
    try:
        async with get_async_session() as session:
            repository = OutboxRepository(session)
            counts = await repository.count_by_status()
            metrics = await repository.get_metrics()
    except Exception as e:
        error(f"Failed to read outbox statistics: {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({"status": counts, "metrics": metrics}, indent=2))
        return

    header("Outbox Statistics")
    section("By Status")
    key_values({"Pending": counts["pending"], "Failed": counts["failed"], "Published": counts["published"]})
    section("Backlog")
    key_values(
        {
            "Pending total": metrics["total_pending"],
            OutboxMessageType.EVENT.label(): metrics["total_events"],
            OutboxMessageType.TASK.label(): metrics["total_tasks"],
            "With failures": metrics["failed_count"],
            "Oldest pending": f"{metrics['oldest_pending_seconds']}s",
        }
    )

    if metrics["failed_count"]:
        warning(f"{metrics['failed_count']} pending entries have failed at least once")
    elif metrics["total_pending"] == 0:
        success("Outbox is empty")


@outbox.command(name="show")
@click.argument("entry_id")
@coro
async def show(entry_id: str) -> None:
    """Show a single outbox entry.

    ENTRY_ID is the entry's UUID.
    """
    try:
        async with get_async_session() as session:
            entry = await OutboxRepository(session).get_by_id(entry_id)
    except NotFoundError:
        error(f"Outbox entry not found: {entry_id}")
        sys.exit(1)
    except Exception as e:
        error(f"Failed to load outbox entry: {e}")
        sys.exit(1)

    max_retries = get_outbox_settings().max_retries
    if entry.is_published():
        status = "published"
    elif entry.is_dead_letter(max_retries):
        status = "dead letter"
    else:
        status = "pending"

    header(f"Outbox Entry {entry.id}")
    key_values(
        {
            "Type": entry.message_type.label(),
            "Status": status,
            "Event type": entry.event_type,
            "Aggregate": f"{entry.aggregate_type} {entry.aggregate_id}",
            "Topic": entry.topic,
            "Routing key": entry.routing_key,
            "Sequence": entry.sequence_number,
            "Created": entry.created_at.isoformat(),
            "Published": entry.published_at.isoformat() if entry.published_at else "-",
            "Retries": entry.retry_count,
            "Next retry": entry.next_retry_at.isoformat() if entry.next_retry_at else "-",
        }
    )
    if entry.last_error:
        section("Last Error")
        click.echo(entry.last_error)
    section("Payload")
    click.echo(entry.payload)
