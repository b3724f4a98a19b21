"""
Utility functions for CLI commands.

This module provides helper functions for formatting output.
"""

from typing import Any

import click
from rich.console import Console
from rich.table import Table

console = Console()


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "2h 30m 15s")
    """
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining_seconds = int(seconds % 60)

    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    return f"{hours}h {remaining_minutes}m {remaining_seconds}s"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)

    for col in columns:
        table.add_column(col)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """
    Print statistics in a two-column table.

    Args:
        stats: Dictionary of statistics
        title: Table title
    """
    rows = [[key.replace("_", " ").title(), str(value)] for key, value in stats.items()]
    print_table(title, ["Metric", "Value"], rows)


def print_entity_tally(summary: dict[str, Any]) -> None:
    """Print the per-entity retrieved/imported/failed tally of a run."""
    retrieved = summary.get("retrieved", {})
    rows = [
        [
            entity["display_name"],
            entity["entity"],
            f"{retrieved.get(entity['entity'], 0):,}",
            f"{entity['success']:,}",
            f"{entity['error']:,}",
        ]
        for entity in summary.get("entities", [])
    ]
    if not rows:
        rows = [[name, name, f"{count:,}", "-", "-"] for name, count in retrieved.items()]
    print_table("Import Results", ["Entity", "Logical Name", "Retrieved", "Imported", "Failed"], rows)
