"""
Configuration management commands.

This module provides commands for validating and displaying the migration
configuration.
"""

import asyncio
from pathlib import Path

import click

from dataverse_migration.cli.context import MigrationContext
from dataverse_migration.cli.decorators import handle_errors, pass_context, requires_config
from dataverse_migration.cli.utils import (
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    print_table,
)
from dataverse_migration.client.exceptions import DataverseMigrationError
from dataverse_migration.config import MigrationConfig
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="config")
def config() -> None:
    """Configuration management commands.

    Validate and display migration configuration files.
    """
    pass


@config.command(name="validate")
@click.option(
    "--check-connectivity",
    is_flag=True,
    help="Call WhoAmI on the source and target organizations",
)
@pass_context
@requires_config
@handle_errors
def validate(ctx: MigrationContext, check_connectivity: bool) -> None:
    """Validate migration configuration.

    This command validates the migration configuration file, checking:
    - Required fields are present
    - URLs are properly formatted
    - At least one entity is configured
    - The report directory can be created

    If --check-connectivity is provided, it also calls WhoAmI on the source
    and target organizations to check the URLs and tokens.

    Examples:

        # Basic validation
        dataverse-bridge config validate --config config.yaml

        # Validate and test connectivity
        dataverse-bridge config validate --config config.yaml --check-connectivity
    """
    echo_info(f"Validating configuration: {ctx.config_path}")

    config = ctx.config

    click.echo()
    _display_config_summary(config)

    click.echo()
    echo_info("Validating paths...")
    _validate_paths(config)

    echo_info("Validating settings...")
    _validate_settings(config)

    if check_connectivity:
        click.echo()
        echo_info("Testing connectivity...")
        _test_connectivity(ctx)

    click.echo()
    echo_success("Configuration is valid!")


def _display_config_summary(config: MigrationConfig) -> None:
    """Display configuration summary."""
    filters = config.filters
    rows = [
        ["Source URL", config.source.url],
        ["Target URL", config.target.url],
        ["Web API Version", f"{config.source.api_version} / {config.target.api_version}"],
        ["Entities", ", ".join(config.entities) or "(none)"],
        ["Created On Or After", filters.create_filter or "-"],
        ["Modified On Or After", filters.modify_filter or "-"],
        ["Website", filters.website_filter or "-"],
        ["Active Records Only", filters.active_items_only],
        ["Max Sweeps", config.import_options.max_sweeps],
        ["Deactivate After Import", config.import_options.deactivate_after_import],
        ["Rate Limit (req/s)", config.performance.rate_limit],
        ["Dry Run", config.dry_run],
    ]

    print_table(
        "Configuration Summary",
        ["Setting", "Value"],
        rows,
    )


def _validate_paths(config: MigrationConfig) -> None:
    """Validate file paths in configuration."""
    report_dir = Path(config.paths.report_dir)

    if not report_dir.exists():
        try:
            report_dir.mkdir(parents=True, exist_ok=True)
            echo_success(f"Created report directory: {report_dir}")
        except OSError as e:
            echo_error(f"Cannot create report directory: {report_dir}")
            raise click.ClickException(f"Failed to create report directory: {e}") from e
    elif not report_dir.is_dir():
        echo_error(f"Report path is not a directory: {report_dir}")
        raise click.ClickException(f"Invalid report directory: {report_dir}")
    else:
        echo_success(f"Report directory exists: {report_dir}")

    echo_success("All paths are valid")


def _validate_settings(config: MigrationConfig) -> None:
    """Validate configuration settings."""
    if not config.entities:
        echo_error("No entities configured")
        raise click.ClickException("Configure at least one entity under 'entities'")

    if config.source.url == config.target.url:
        echo_warning("Source and target URLs are the same organization")

    if config.filters.website_filter is None and any(
        name.startswith("adx_") for name in config.entities
    ):
        echo_warning("Portal entities configured without a website filter")

    echo_success("All settings are valid")


def _test_connectivity(ctx: MigrationContext) -> None:
    """Call WhoAmI on the source and target organizations."""

    async def test_connections() -> None:
        try:
            for label, client, url in (
                ("source", ctx.source_client, ctx.config.source.url),
                ("target", ctx.target_client, ctx.config.target.url),
            ):
                echo_info(f"Testing {label} organization connection...")
                try:
                    who = await client.validate_connectivity()
                except DataverseMigrationError as e:
                    echo_error(f"Failed to connect to {label} organization: {e}")
                    raise click.ClickException(f"{label.title()} connection failed: {e}") from e
                echo_success(f"{label.title()} organization accessible: {url}")
                click.echo(f"  User: {who.get('UserId')}  Organization: {who.get('OrganizationId')}")
        finally:
            await ctx.close_clients()

    asyncio.run(test_connections())


@config.command(name="show")
@pass_context
@requires_config
@handle_errors
def show(ctx: MigrationContext) -> None:
    """Display current configuration.

    Shows the loaded configuration with tokens masked.

    Examples:

        dataverse-bridge config show --config config.yaml
    """
    config = ctx.config

    _display_config_summary(config)

    for label, instance in (("Source", config.source), ("Target", config.target)):
        click.echo(f"\n{label} Configuration:")
        click.echo(f"  URL: {instance.url}")
        click.echo(f"  Web API: {instance.api_url}")
        click.echo(f"  Token: {'*' * 40} (masked)")
        click.echo(f"  Verify SSL: {instance.verify_ssl}")
        click.echo(f"  Timeout: {instance.timeout}s")

    click.echo("\nImport Options:")
    click.echo(f"  Max Sweeps: {config.import_options.max_sweeps}")
    click.echo(f"  Exempt Entity: {config.import_options.exempt_entity}")
    click.echo(f"  Owner Attribute: {config.import_options.owner_attribute}")

    click.echo("\nPerformance Configuration:")
    click.echo(f"  Rate Limit: {config.performance.rate_limit} req/s")
    click.echo(f"  Page Size: {config.performance.page_size}")

    click.echo("\nPaths:")
    click.echo(f"  Reports: {config.paths.report_dir}")
