"""Migration coordinator for orchestrating a full run.

This module provides the coordinator that runs the complete process for the
configured entities: load metadata, retrieve records from the source, import
them into the target as one batch, deactivate the records that were inactive
in the source, and write the report.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from dataverse_migration.client.dataverse_client import DataverseClient
from dataverse_migration.config import MigrationConfig
from dataverse_migration.migration.exporter import RecordExporter
from dataverse_migration.migration.importer import RecordImporter
from dataverse_migration.migration.models import EntityMetadata, ImportResult, Record
from dataverse_migration.reporting.progress import ImportProgress, ProgressTracker
from dataverse_migration.reporting.report import generate_import_report
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationCoordinator:
    """Coordinates a migration run between two organizations.

    All entities are retrieved first and imported as a single batch so that
    references between records of different entities are resolved by the
    importer's sweeps.
    """

    def __init__(
        self,
        config: MigrationConfig,
        source_client: DataverseClient,
        target_client: DataverseClient,
        enable_progress: bool = True,
        progress_callback: Callable[[str], None] | None = None,
    ):
        """Initialize migration coordinator.

        Args:
            config: Migration configuration
            source_client: Client for the source organization
            target_client: Client for the target organization
            enable_progress: Whether to enable progress bars (disable for CI/automation)
            progress_callback: Optional extra receiver of the importer's messages
        """
        self.config = config
        self.source_client = source_client
        self.target_client = target_client
        self.enable_progress = enable_progress
        self.progress_callback = progress_callback
        self.progress_tracker: ProgressTracker | None = None
        self.progress = ImportProgress()
        self.migration_id = uuid.uuid4().hex[:8]

        self.metrics: dict[str, Any] = {
            "start_time": None,
            "end_time": None,
            "retrieved": {},
        }

        logger.info(
            "migration_coordinator_initialized",
            source_url=config.source.url,
            target_url=config.target.url,
            entities=config.entities,
            dry_run=config.dry_run,
        )

    async def load_metadata(self, client: DataverseClient) -> list[EntityMetadata]:
        """Retrieve the metadata of every configured entity from one organization."""
        metadata = []
        for logical_name in self.config.entities:
            metadata.append(await client.retrieve_entity_metadata(logical_name))
        return metadata

    def _on_message(self, message: str) -> None:
        logger.debug("import_message", message=message)
        if self.progress_tracker:
            self.progress_tracker.on_message(message)
            self.progress_tracker.set_position(self.progress.processed + self.progress.error)
        if self.progress_callback:
            self.progress_callback(message)

    async def retrieve_all(self, source_metadata: list[EntityMetadata]) -> list[Record]:
        """Retrieve the records of every configured entity, in configuration order."""
        exporter = RecordExporter(
            self.source_client, self.config.filters, self.config.performance
        )
        records: list[Record] = []

        for entity_metadata in source_metadata:
            if self.progress_tracker:
                self.progress_tracker.start_phase(f"Retrieve {entity_metadata.logical_name}")

            entity_records = await exporter.retrieve_records(entity_metadata, source_metadata)
            self.metrics["retrieved"][entity_metadata.logical_name] = len(entity_records)
            records.extend(entity_records)

            if self.progress_tracker:
                self.progress_tracker.complete_phase()

        return records

    async def migrate_all(
        self,
        generate_report: bool = True,
        report_dir: str | None = None,
    ) -> dict[str, Any]:
        """Execute the full migration.

        Args:
            generate_report: Whether to write JSON and Markdown reports
            report_dir: Directory to save reports (defaults to paths.report_dir)

        Returns:
            Migration summary with statistics
        """
        self.metrics["start_time"] = datetime.now(UTC)
        options = self.config.import_options

        total_phases = len(self.config.entities)
        if not self.config.dry_run:
            total_phases += 2 if options.deactivate_after_import else 1

        self.progress_tracker = ProgressTracker(
            total_phases=total_phases, enable=self.enable_progress
        )

        result: ImportResult | None = None
        deactivation: dict[str, int] | None = None

        logger.info("migration_started", dry_run=self.config.dry_run, entities=self.config.entities)

        try:
            source_metadata = await self.load_metadata(self.source_client)
            records = await self.retrieve_all(source_metadata)

            if self.config.dry_run:
                logger.info("dry_run_skipping_import", records=len(records))
            else:
                target_metadata = await self.load_metadata(self.target_client)
                self.target_client.remember_entity_sets(target_metadata)

                importer = RecordImporter(
                    self.target_client,
                    options,
                    progress_callback=self._on_message,
                    progress=self.progress,
                )

                self.progress_tracker.start_phase("Import", len(records))
                result = await importer.process_records(records, target_metadata)
                self.progress_tracker.complete_phase()

                if options.deactivate_after_import:
                    self.progress_tracker.start_phase(
                        "Deactivate", len(importer.records_to_deactivate)
                    )
                    deactivation = await importer.deactivate_records(target_metadata)
                    self.progress_tracker.complete_phase()
        finally:
            self.progress_tracker.close()

        self.metrics["end_time"] = datetime.now(UTC)
        summary = self._generate_summary(result, deactivation)

        if generate_report:
            try:
                report_files = generate_import_report(
                    migration_id=self.migration_id,
                    summary=summary,
                    output_dir=report_dir or self.config.paths.report_dir,
                )
                summary["report_files"] = report_files
            except OSError as e:
                logger.error("report_generation_failed", error=str(e))

        return summary

    def _generate_summary(
        self, result: ImportResult | None, deactivation: dict[str, int] | None
    ) -> dict[str, Any]:
        """Generate migration summary.

        Returns:
            Migration summary dictionary
        """
        duration = None
        if self.metrics["start_time"] and self.metrics["end_time"]:
            duration = (self.metrics["end_time"] - self.metrics["start_time"]).total_seconds()

        if self.config.dry_run:
            status = "dry_run"
        elif result is not None and (
            result.failed or result.unresolved or result.deferred_failed
        ):
            status = "completed_with_errors"
        elif deactivation and deactivation["failed"]:
            status = "completed_with_errors"
        else:
            status = "completed"

        retrieved = self.metrics["retrieved"]
        summary = {
            "migration_id": self.migration_id,
            "status": status,
            "source_url": self.config.source.url,
            "target_url": self.config.target.url,
            "start_time": self.metrics["start_time"].isoformat()
            if self.metrics["start_time"]
            else None,
            "end_time": self.metrics["end_time"].isoformat() if self.metrics["end_time"] else None,
            "duration_seconds": duration,
            "dry_run": self.config.dry_run,
            "retrieved": dict(retrieved),
            "total_records_retrieved": sum(retrieved.values()),
            "total_records_imported": self.progress.success,
            "total_records_failed": self.progress.error,
            "entities": self.progress.to_dict()["entities"],
            "import": result.to_dict() if result is not None else None,
            "deactivation": deactivation,
        }

        logger.info(
            "migration_completed",
            status=status,
            retrieved=summary["total_records_retrieved"],
            imported=summary["total_records_imported"],
            failed=summary["total_records_failed"],
        )

        return summary
