"""
Main CLI entry point for Dataverse Bridge.

This module provides the command-line interface for moving records between
Dataverse / Dynamics 365 organizations.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from dataverse_migration import __version__
from dataverse_migration.cli.commands import config as config_commands
from dataverse_migration.cli.commands import metadata as metadata_commands
from dataverse_migration.cli.commands import migrate as migrate_commands
from dataverse_migration.cli.context import MigrationContext
from dataverse_migration.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="dataverse-bridge")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="DATAVERSE_BRIDGE_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="ERROR",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="DATAVERSE_BRIDGE_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/migration.log)",
    envvar="DATAVERSE_BRIDGE_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """Dataverse Bridge - Move records between Dataverse organizations.

    Retrieves records of the configured entities from a source organization
    and imports them into a target organization, resolving lookups between
    records, recreating many-to-many associations and deactivating records
    that were inactive in the source.

    Examples:

        # Validate configuration
        dataverse-bridge config validate --config config.yaml

        # Inspect how an entity will be handled
        dataverse-bridge metadata show adx_webpage --config config.yaml

        # Run the migration
        dataverse-bridge migrate run --config config.yaml
    """
    effective_log_file = str(log_file) if log_file else "logs/migration.log"

    configure_logging(level=log_level, log_file=effective_log_file)

    ctx.obj = MigrationContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "cli_initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


# Register command groups
cli.add_command(config_commands.config)
cli.add_command(metadata_commands.metadata)
cli.add_command(migrate_commands.migrate)


def main() -> int:
    """Main entry point for CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:
        logger.error("unexpected_error", error=str(e), exc_info=True)
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
