"""Main CLI entry point for outbox-service management commands."""

import click

from outbox_service import __version__
from outbox_service.cli.commands import outbox
from outbox_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="outbox-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Outbox Service CLI - operate the transactional outbox.

    \b
    Command Groups:
      outbox     Publish, clean up and inspect outbox entries

    \b
    Quick Start:
      outbox-service outbox stats                # Backlog overview
      outbox-service outbox publish --run-once   # Drain one batch
      outbox-service outbox cleanup --dry-run    # Preview retention cleanup
    """
    ctx.ensure_object(dict)


cli.add_command(outbox.outbox)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
