"""Reporting and progress tracking for Dataverse migration."""

from dataverse_migration.reporting.progress import (
    EntityProgress,
    ImportProgress,
    ProgressTracker,
    resolve_display_name,
)
from dataverse_migration.reporting.report import ImportReport, generate_import_report

__all__ = [
    "EntityProgress",
    "ImportProgress",
    "ProgressTracker",
    "resolve_display_name",
    "ImportReport",
    "generate_import_report",
]
