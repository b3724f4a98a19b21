"""
Migration execution commands.

This module provides the command that moves records from the source
organization to the target organization.
"""

import asyncio
from pathlib import Path
from typing import Any

import click

from dataverse_migration.cli.context import MigrationContext
from dataverse_migration.cli.decorators import handle_errors, pass_context, requires_config
from dataverse_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    format_duration,
    print_entity_tally,
    print_stats,
)
from dataverse_migration.migration.coordinator import MigrationCoordinator
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="migrate")
def migrate() -> None:
    """Migration execution commands."""
    pass


@migrate.command(name="run")
@click.option(
    "--entity",
    "-e",
    "entities",
    multiple=True,
    help="Entity logical name to move (repeatable; overrides the configured list)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Retrieve and report, but write nothing to the target",
)
@click.option(
    "--max-sweeps",
    type=click.IntRange(1, 20),
    help="Override import_options.max_sweeps",
)
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for the JSON and Markdown reports",
)
@click.option("--no-progress", is_flag=True, help="Disable progress bars")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@pass_context
@requires_config
@handle_errors
def run(
    ctx: MigrationContext,
    entities: tuple[str, ...],
    dry_run: bool,
    max_sweeps: int | None,
    report_dir: Path | None,
    no_progress: bool,
    yes: bool,
) -> None:
    """Move the configured entities' records to the target organization.

    Records of all entities are retrieved first and imported as one batch,
    so lookups between entities are resolved whatever their order. Records
    that were inactive in the source are deactivated after the import.

    Examples:

        # Move everything listed under 'entities' in the configuration
        dataverse-bridge migrate run --config config.yaml

        # Only accounts and contacts, without writing anything
        dataverse-bridge migrate run -e account -e contact --dry-run --config config.yaml
    """
    config = ctx.config

    if entities:
        config.entities = [name.strip().lower() for name in entities]
    if dry_run:
        config.dry_run = True
    if max_sweeps:
        config.import_options.max_sweeps = max_sweeps

    if not config.entities:
        echo_error("No entities to move. Configure 'entities' or pass --entity.")
        raise click.exceptions.Exit(2)

    echo_info(f"Source: {config.source.url}")
    echo_info(f"Target: {config.target.url}")
    echo_info(f"Entities: {', '.join(config.entities)}")

    if config.dry_run:
        echo_warning("Dry run: nothing will be written to the target")
    elif not yes and not click.confirm(
        f"Import {len(config.entities)} entities into {config.target.url}?"
    ):
        click.echo("Operation cancelled.")
        raise click.exceptions.Exit(0)

    async def execute() -> dict[str, Any]:
        try:
            coordinator = MigrationCoordinator(
                config=config,
                source_client=ctx.source_client,
                target_client=ctx.target_client,
                enable_progress=not (no_progress or config.logging.disable_progress),
            )
            return await coordinator.migrate_all(
                report_dir=str(report_dir) if report_dir else None,
            )
        finally:
            await ctx.close_clients()

    summary = asyncio.run(execute())

    click.echo()
    print_entity_tally(summary)
    _print_summary(summary)

    for fmt, path in summary.get("report_files", {}).items():
        echo_info(f"{fmt.title()} report: {path}")

    if summary["status"] == "completed_with_errors":
        echo_warning("Migration completed with errors; see the report for details")
        raise click.exceptions.Exit(1)

    echo_success("Migration completed")


def _print_summary(summary: dict[str, Any]) -> None:
    result = summary.get("import") or {}
    deactivation = summary.get("deactivation") or {}
    stats = {
        "status": summary["status"],
        "records_retrieved": summary["total_records_retrieved"],
        "records_imported": summary["total_records_imported"],
        "records_failed": summary["total_records_failed"],
        "records_unresolved": len(result.get("unresolved", [])),
        "sweeps": result.get("sweeps", 0),
        "deferred_updates": result.get("deferred_updated", 0),
        "deferred_updates_failed": result.get("deferred_failed", 0),
        "deactivated": deactivation.get("deactivated", 0),
        "duration": format_duration(summary.get("duration_seconds") or 0),
    }
    print_stats(stats, title="Migration Summary")
