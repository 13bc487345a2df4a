"""Tests for the outbox CLI commands.

Testing approach:
- Uses Click's CliRunner for command invocation
- Mocks the broker, processor, cleaner and repository so no database or
  RabbitMQ is needed
- Tests option handling, output and exit codes
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from outbox_service import __version__
from outbox_service.cli.commands.outbox import outbox
from outbox_service.cli.main import cli
from outbox_service.core.database.exceptions import NotFoundError
from outbox_service.infra.outbox.entry import OutboxEntry, OutboxMessageType
from outbox_service.infra.outbox.maintenance import CleanupResult
from outbox_service.infra.outbox.processor import BatchResult

MODULE = "outbox_service.cli.commands.outbox"

# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    return CliRunner()


def _broker_context(broker):
    @asynccontextmanager
    async def _context(*args, **kwargs):
        yield broker

    return _context


@pytest.fixture
def mock_processor():
    processor = MagicMock()
    processor.run = AsyncMock(return_value=BatchResult(fetched=3, published=3, duration=0.25))
    return processor


@pytest.fixture
def mock_repository():
    """Repository whose queries return fixed data; patched into the module."""
    repository = MagicMock()
    repository.count_by_status = AsyncMock(return_value={"pending": 4, "published": 10, "failed": 1})
    repository.get_metrics = AsyncMock(
        return_value={
            "total_pending": 5,
            "total_events": 3,
            "total_tasks": 2,
            "failed_count": 1,
            "oldest_pending_seconds": 42,
        }
    )

    @asynccontextmanager
    async def session():
        yield MagicMock()

    with (
        patch(f"{MODULE}.get_async_session", session),
        patch(f"{MODULE}.OutboxRepository", return_value=repository),
    ):
        yield repository


@pytest.fixture
def stored_entry() -> OutboxEntry:
    return OutboxEntry.create_for_event(
        aggregate_type="Article",
        aggregate_id="0b7f4e4c-6f5a-4c55-9a51-7d1d0c1d2e3f",
        event_type="article.created",
        payload='{"payload": {"class": "article.created"}}',
        topic="events.article",
        routing_key="event.article_created",
    )


# =============================================================================
# publish
# =============================================================================


class TestPublishCommand:
    """Tests for `outbox publish`."""

    def test_run_once(self, cli_runner, mock_processor):
        broker = MagicMock()
        with (
            patch(f"{MODULE}.broker_context", _broker_context(broker)),
            patch(f"{MODULE}.create_outbox_processor", return_value=mock_processor) as factory,
        ):
            result = cli_runner.invoke(outbox, ["publish", "--run-once", "--batch-size", "50"])

        assert result.exit_code == 0, result.output
        assert "Published" in result.output
        assert "Outbox publish completed" in result.output
        factory.assert_called_once_with(broker, message_type=None, dry_run=False, batch_size=50)
        mock_processor.run.assert_awaited_once_with(run_once=True)

    def test_message_type_and_dry_run(self, cli_runner, mock_processor):
        with (
            patch(f"{MODULE}.broker_context", _broker_context(MagicMock())),
            patch(f"{MODULE}.create_outbox_processor", return_value=mock_processor) as factory,
        ):
            result = cli_runner.invoke(
                outbox,
                ["publish", "--run-once", "--message-type", "task", "--dry-run", "--max-retries", "3"],
            )

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        kwargs = factory.call_args.kwargs
        assert kwargs["message_type"] is OutboxMessageType.TASK
        assert kwargs["dry_run"] is True
        assert kwargs["max_retries"] == 3

    def test_reports_failures(self, cli_runner, mock_processor):
        mock_processor.run.return_value = BatchResult(fetched=2, published=1, failed=1, errors={"e-1": "boom"})
        with (
            patch(f"{MODULE}.broker_context", _broker_context(MagicMock())),
            patch(f"{MODULE}.create_outbox_processor", return_value=mock_processor),
        ):
            result = cli_runner.invoke(outbox, ["publish", "--run-once"])

        assert result.exit_code == 0
        assert "e-1: boom" in result.output
        assert "1 entries failed and were rescheduled" in result.output

    def test_without_rabbitmq(self, cli_runner):
        with patch(f"{MODULE}.broker_context", _broker_context(None)):
            result = cli_runner.invoke(outbox, ["publish", "--run-once"])

        assert result.exit_code == 1
        assert "RabbitMQ is not configured" in result.output

    def test_connection_error(self, cli_runner):
        @asynccontextmanager
        async def failing(*args, **kwargs):
            raise ConnectionError("RabbitMQ connection timeout after 10.0s")
            yield  # pragma: no cover

        with patch(f"{MODULE}.broker_context", failing):
            result = cli_runner.invoke(outbox, ["publish", "--run-once"])

        assert result.exit_code == 1
        assert "Outbox publish failed: RabbitMQ connection timeout" in result.output

    def test_invalid_message_type(self, cli_runner):
        result = cli_runner.invoke(outbox, ["publish", "--message-type", "sms"])

        assert result.exit_code == 2


# =============================================================================
# cleanup
# =============================================================================


class TestCleanupCommand:
    """Tests for `outbox cleanup`."""

    def test_cleanup(self, cli_runner):
        cleaner = MagicMock()
        cleaner.run = AsyncMock(
            return_value=CleanupResult(cutoff=datetime(2026, 1, 1, tzinfo=UTC), published_deleted=7)
        )
        with patch(f"{MODULE}.OutboxCleaner", return_value=cleaner):
            result = cli_runner.invoke(outbox, ["cleanup", "--retention-days", "3", "--include-failed"])

        assert result.exit_code == 0, result.output
        assert "Deleted 7 outbox entries" in result.output
        cleaner.run.assert_awaited_once_with(
            retention_days=3,
            batch_size=None,
            include_failed=True,
            max_retries=None,
            dry_run=False,
        )

    def test_dry_run_wording(self, cli_runner):
        cleaner = MagicMock()
        cleaner.run = AsyncMock(
            return_value=CleanupResult(
                cutoff=datetime(2026, 1, 1, tzinfo=UTC), published_deleted=2, failed_deleted=1, dry_run=True
            )
        )
        with patch(f"{MODULE}.OutboxCleaner", return_value=cleaner):
            result = cli_runner.invoke(outbox, ["cleanup", "--dry-run"])

        assert result.exit_code == 0
        assert "Would delete 3 outbox entries" in result.output

    def test_failure_exits_nonzero(self, cli_runner):
        cleaner = MagicMock()
        cleaner.run = AsyncMock(side_effect=RuntimeError("database unavailable"))
        with patch(f"{MODULE}.OutboxCleaner", return_value=cleaner):
            result = cli_runner.invoke(outbox, ["cleanup"])

        assert result.exit_code == 1
        assert "Outbox cleanup failed: database unavailable" in result.output


# =============================================================================
# stats / show
# =============================================================================


class TestStatsCommand:
    """Tests for `outbox stats`."""

    def test_table_output(self, cli_runner, mock_repository):
        result = cli_runner.invoke(outbox, ["stats"])

        assert result.exit_code == 0, result.output
        assert "Outbox Statistics" in result.output
        assert "42s" in result.output
        assert "1 pending entries have failed at least once" in result.output

    def test_json_output(self, cli_runner, mock_repository):
        result = cli_runner.invoke(outbox, ["stats", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"]["published"] == 10
        assert data["metrics"]["total_tasks"] == 2

    def test_empty_outbox(self, cli_runner, mock_repository):
        mock_repository.get_metrics.return_value = {
            "total_pending": 0,
            "total_events": 0,
            "total_tasks": 0,
            "failed_count": 0,
            "oldest_pending_seconds": 0,
        }

        result = cli_runner.invoke(outbox, ["stats"])

        assert "Outbox is empty" in result.output

    def test_database_error(self, cli_runner, mock_repository):
        mock_repository.count_by_status.side_effect = RuntimeError("no database")

        result = cli_runner.invoke(outbox, ["stats"])

        assert result.exit_code == 1
        assert "Failed to read outbox statistics: no database" in result.output


class TestShowCommand:
    """Tests for `outbox show`."""

    def test_pending_entry(self, cli_runner, mock_repository, stored_entry):
        mock_repository.get_by_id = AsyncMock(return_value=stored_entry)

        result = cli_runner.invoke(outbox, ["show", stored_entry.id])

        assert result.exit_code == 0, result.output
        assert f"Outbox Entry {stored_entry.id}" in result.output
        assert "pending" in result.output
        assert "event.article_created" in result.output
        mock_repository.get_by_id.assert_awaited_once_with(stored_entry.id)

    def test_failed_entry_shows_error(self, cli_runner, mock_repository, stored_entry):
        failed = stored_entry.model_copy(update={"retry_count": 5, "last_error": "Connection refused"})
        mock_repository.get_by_id = AsyncMock(return_value=failed)

        result = cli_runner.invoke(outbox, ["show", failed.id])

        assert "dead letter" in result.output
        assert "Connection refused" in result.output

    def test_missing_entry(self, cli_runner, mock_repository):
        mock_repository.get_by_id = AsyncMock(side_effect=NotFoundError("OutboxEntry", {"id": "nope"}))

        result = cli_runner.invoke(outbox, ["show", "nope"])

        assert result.exit_code == 1
        assert "Outbox entry not found: nope" in result.output


# =============================================================================
# Root group
# =============================================================================


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_outbox_group_registered(cli_runner):
    result = cli_runner.invoke(cli, ["outbox", "--help"])

    assert result.exit_code == 0
    for command in ("publish", "cleanup", "stats", "show"):
        assert command in result.output
