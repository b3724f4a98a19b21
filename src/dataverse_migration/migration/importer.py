"""Record importer for writing a batch of records to a Dataverse organization.

The importer sweeps the batch repeatedly. Records whose lookups point at other
records of the batch are split: the base record is written first and the
lookups are applied afterwards by a reconciliation pass, which breaks
reference cycles without ordering the whole dependency graph. Intersect
records become associate calls, and records that were inactive in the source
are created active and queued for deactivation.
"""

from collections.abc import Callable
from typing import Any
from uuid import UUID

from dataverse_migration.client.exceptions import DuplicateAssociationError, MetadataError
from dataverse_migration.config import ImportOptionsConfig
from dataverse_migration.migration.models import (
    INACTIVE_STATE,
    EntityMetadata,
    EntityReference,
    FailedRecord,
    ImportResult,
    OptionSetValue,
    Record,
    find_entity_metadata,
    find_intersect_relationship,
)
from dataverse_migration.reporting.progress import (
    EntityProgress,
    ImportProgress,
    resolve_display_name,
)
from dataverse_migration.utils.logging import get_logger, log_import_progress

logger = get_logger(__name__)

STATE_ATTRIBUTE = "statecode"
STATUS_ATTRIBUTE = "statuscode"

# Intersect records carry their own id plus the ids of the two associated records
ASSOCIATION_ATTRIBUTE_COUNT = 3

ProgressCallback = Callable[[str], None]


def _option_value(value: Any) -> int | None:
    if isinstance(value, OptionSetValue):
        return value.value
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _is_inactive(value: Any) -> bool:
    return _option_value(value) == INACTIVE_STATE


def _is_association(record: Record) -> bool:
    return len(record.attributes) == ASSOCIATION_ATTRIBUTE_COUNT and all(
        isinstance(value, UUID) for value in record.attributes.values()
    )


def _distinct_deferred_records(deferred: list[Record]) -> list[Record]:
    """Merge deferred records that share an identity, keeping first-seen order."""
    merged: dict[tuple[str, UUID], Record] = {}
    for record in deferred:
        existing = merged.get(record.identity)
        if existing is None:
            merged[record.identity] = Record(
                record.logical_name, record.id, dict(record.attributes)
            )
        else:
            existing.attributes.update(record.attributes)
    return list(merged.values())


class RecordImporter:
    """Imports batches of records into the target organization.

    Writes are awaited one at a time; the importer never has two requests in
    flight. Per-record failures are counted and reported, never raised.
    """

    def __init__(
        self,
        client: Any,
        options: ImportOptionsConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        progress: ImportProgress | None = None,
    ):
        """Initialize record importer.

        Args:
            client: Target client exposing upsert, update and associate
            options: Import engine options
            progress_callback: Optional callable receiving one human-readable
                message per write attempt, association and reconciliation step
            progress: Counters to update (a new ImportProgress if omitted)
        """
        self.client = client
        self.options = options or ImportOptionsConfig()
        self.progress_callback = progress_callback
        self.progress = progress or ImportProgress()
        self.records_to_deactivate: list[EntityReference] = []
        self._deactivation_status: dict[tuple[str, UUID], int | None] = {}
        self.stats = {
            "created": 0,
            "updated": 0,
            "associated": 0,
            "already_associated": 0,
            "split": 0,
            "skipped": 0,
            "failed": 0,
        }

    def _report(self, message: str) -> None:
        if self.progress_callback:
            self.progress_callback(message)

    def track_entity_progress(
        self, record: Record, metadata: list[EntityMetadata]
    ) -> EntityProgress:
        """Return the counters for the record's entity type, creating them on first use."""
        progress = self.progress.get(record.logical_name)
        if progress is None:
            progress = self.progress.get_or_create(
                record.logical_name, resolve_display_name(record.logical_name, metadata)
            )
        return progress

    def _is_reference(self, name: str, value: Any, entity_metadata: EntityMetadata | None) -> bool:
        if isinstance(value, EntityReference):
            return True
        return (
            isinstance(value, UUID)
            and entity_metadata is not None
            and entity_metadata.is_lookup(name)
        )

    def _references_batch(
        self,
        record: Record,
        entity_metadata: EntityMetadata | None,
        identities: set[tuple[str, UUID]],
        ids: set[UUID],
    ) -> bool:
        for name, value in record.attributes.items():
            if isinstance(value, EntityReference):
                if (value.logical_name, value.id) in identities:
                    return True
            elif self._is_reference(name, value, entity_metadata) and value in ids:
                return True
        return False

    def _split_references(self, record: Record, entity_metadata: EntityMetadata | None) -> Record:
        """Move every reference-valued attribute of ``record`` into a new deferred record."""
        deferred = Record(record.logical_name, record.id)
        for name, value in list(record.attributes.items()):
            if self._is_reference(name, value, entity_metadata):
                deferred.attributes[name] = record.attributes.pop(name)
        return deferred

    @staticmethod
    def _references_sibling_identifier(record: Record, ids: set[UUID]) -> bool:
        return any(
            isinstance(value, UUID) and value != record.id and value in ids
            for value in record.attributes.values()
        )

    def _record_name(self, record: Record, entity_metadata: EntityMetadata | None) -> str:
        if entity_metadata is None or not entity_metadata.primary_name_attribute:
            return "(N/A)"
        name = record.get(entity_metadata.primary_name_attribute)
        return str(name) if name else "(N/A)"

    def _queue_deactivation(self, record: Record) -> None:
        if record.identity not in self._deactivation_status:
            self._deactivation_status[record.identity] = _option_value(
                record.get(STATUS_ATTRIBUTE)
            )
            self.records_to_deactivate.append(record.to_entity_reference())

    async def _associate(
        self, record: Record, metadata: list[EntityMetadata], label: str
    ) -> None:
        relationship = find_intersect_relationship(metadata, record.logical_name)
        id1 = record.get(relationship.entity1_intersect_attribute)
        id2 = record.get(relationship.entity2_intersect_attribute)
        if id1 is None or id2 is None:
            raise MetadataError(
                f"Record {record.id} of '{record.logical_name}' lacks the intersect attributes "
                f"of relationship '{relationship.schema_name}'"
            )

        try:
            await self.client.associate(
                relationship.entity1_logical_name,
                id1,
                relationship.navigation_property,
                relationship.entity2_logical_name,
                id2,
            )
            self.stats["associated"] += 1
            self._report(f"Import: Association {label} ({record.id}) created")
        except DuplicateAssociationError:
            self.stats["already_associated"] += 1
            self._report(f"Import: Association {label} ({record.id}) already exists")

    async def _write_record(
        self,
        record: Record,
        entity_metadata: EntityMetadata | None,
        metadata: list[EntityMetadata],
        progress: EntityProgress,
    ) -> None:
        name = self._record_name(record, entity_metadata)

        record.attributes.pop(self.options.owner_attribute, None)

        if _is_inactive(record.get(STATE_ATTRIBUTE)):
            self._report(
                f"Record {name} ({record.id}) is inactive : Added for deactivation step"
            )
            self._queue_deactivation(record)
            record.attributes.pop(STATE_ATTRIBUTE, None)
            record.attributes.pop(STATUS_ATTRIBUTE, None)

        if _is_association(record):
            await self._associate(record, metadata, progress.display_name)
            return

        # Associations only need the relationship, upserts need the entity itself
        if entity_metadata is None:
            raise MetadataError(f"No metadata loaded for entity '{record.logical_name}'")

        created = await self.client.upsert(record, entity_metadata)
        self.stats["created" if created else "updated"] += 1
        self._report(
            f"Import: Record {name} {'created' if created else 'updated'} "
            f"({progress.display_name}/{record.id})"
        )

    async def process_records(
        self, records: list[Record], metadata: list[EntityMetadata]
    ) -> ImportResult:
        """Write a batch of records, breaking reference cycles between them.

        The batch is swept from the end at most ``max_sweeps`` times. Records
        are removed once written, or once their write fails. Deferred
        references are applied by a reconciliation pass after the sweeps.

        Args:
            records: Records to import (the list is not modified)
            metadata: Metadata of every entity involved, including the
                entities owning many-to-many relationships

        Returns:
            ImportResult describing sweeps, unresolved and failed records,
            deferred updates and queued deactivations
        """
        batch = list(records)
        result = ImportResult()
        deferred: list[Record] = []
        deferred_identities: set[tuple[str, UUID]] = set()
        self.progress.total += len(batch)

        logger.info("import_started", records=len(batch), max_sweeps=self.options.max_sweeps)

        for sweep in range(1, self.options.max_sweeps + 1):
            if not batch:
                break
            result.sweeps = sweep

            identities = {record.identity for record in batch}
            ids = {record.id for record in batch}

            logger.info("sweep_started", sweep=sweep, remaining=len(batch))

            for index in range(len(batch) - 1, -1, -1):
                record = batch[index]

                try:
                    entity_metadata = find_entity_metadata(metadata, record.logical_name)
                except MetadataError:
                    entity_metadata = None

                if record.logical_name != self.options.exempt_entity:
                    if self._references_batch(record, entity_metadata, identities, ids):
                        if record.identity in deferred_identities:
                            self.stats["skipped"] += 1
                            continue

                        deferred_record = self._split_references(record, entity_metadata)
                        deferred.append(deferred_record)
                        deferred_identities.add(record.identity)
                        self.stats["split"] += 1
                        logger.debug(
                            "record_split",
                            entity=record.logical_name,
                            record_id=str(record.id),
                            deferred_attributes=sorted(deferred_record.attributes),
                        )

                    if self._references_sibling_identifier(record, ids):
                        self.stats["skipped"] += 1
                        logger.debug(
                            "record_waiting_on_sibling",
                            entity=record.logical_name,
                            record_id=str(record.id),
                            sweep=sweep,
                        )
                        continue

                progress = self.track_entity_progress(record, metadata)

                try:
                    await self._write_record(record, entity_metadata, metadata, progress)
                    progress.success += 1
                    progress.processed += 1
                except Exception as e:
                    progress.error += 1
                    self.stats["failed"] += 1
                    name = self._record_name(record, entity_metadata)
                    self._report(
                        "Import: An error occured attempting the insert/update/associate: "
                        f"{name} ({progress.display_name}/{record.id}): {e}"
                    )
                    logger.error(
                        "record_import_failed",
                        entity=record.logical_name,
                        record_id=str(record.id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    result.failed.append(
                        FailedRecord(
                            logical_name=record.logical_name,
                            id=record.id,
                            name=None if name == "(N/A)" else name,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                    )

                del batch[index]
                identities.discard(record.identity)
                ids.discard(record.id)

                log_import_progress(
                    logger,
                    entity=record.logical_name,
                    processed=self.progress.processed + self.progress.error,
                    total=self.progress.total,
                )

        result.completed = not batch
        result.unresolved = batch
        if batch:
            logger.warning(
                "records_unresolved",
                count=len(batch),
                sweeps=result.sweeps,
                records=[f"{r.logical_name}/{r.id}" for r in batch],
            )
            self._report(
                f"Import: {len(batch)} record(s) still waiting on references after "
                f"{result.sweeps} sweep(s) were not imported"
            )

        await self._reconcile(deferred, metadata, result)

        result.deactivations = list(self.records_to_deactivate)

        logger.info(
            "import_completed",
            completed=result.completed,
            sweeps=result.sweeps,
            failed_records=len(result.failed),
            unresolved=len(result.unresolved),
            deferred_updated=result.deferred_updated,
            deferred_failed=result.deferred_failed,
            **self.stats,
        )
        return result

    async def _reconcile(
        self, deferred: list[Record], metadata: list[EntityMetadata], result: ImportResult
    ) -> None:
        """Apply deferred references, one update per record identity."""
        if not deferred:
            return

        self._report("Import: Updating records to add references")
        records = _distinct_deferred_records(deferred)

        for index, record in enumerate(records, start=1):
            try:
                self._report(
                    f"Import: Updating record {record.logical_name} ({record.id}) "
                    f"[{index}/{len(records)}]"
                )
                record.attributes.pop(self.options.owner_attribute, None)
                entity_metadata = find_entity_metadata(metadata, record.logical_name)
                await self.client.update(record, entity_metadata)
                result.deferred_updated += 1
            except Exception as e:
                result.deferred_failed += 1
                self._report(f"Import: An error occured during import: {e}")
                logger.warning(
                    "deferred_update_failed",
                    entity=record.logical_name,
                    record_id=str(record.id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def deactivate_records(self, metadata: list[EntityMetadata]) -> dict[str, int]:
        """Deactivate every queued record, draining the queue.

        Each record is updated with the inactive state and the status reason it
        had in the source. Without a source status only the state is sent, so
        the organization applies its default inactive status. Failures are
        logged and counted.

        Args:
            metadata: Metadata of the entities in the queue

        Returns:
            Counts of deactivated and failed records
        """
        counts = {"deactivated": 0, "failed": 0}
        queue, self.records_to_deactivate = self.records_to_deactivate, []
        statuses, self._deactivation_status = self._deactivation_status, {}

        for reference in queue:
            record = Record(
                reference.logical_name,
                reference.id,
                {STATE_ATTRIBUTE: OptionSetValue(INACTIVE_STATE)},
            )
            status = statuses.get((reference.logical_name, reference.id))
            if status is not None:
                record.attributes[STATUS_ATTRIBUTE] = OptionSetValue(status)
            try:
                entity_metadata = find_entity_metadata(metadata, reference.logical_name)
                await self.client.update(record, entity_metadata)
                counts["deactivated"] += 1
                self._report(f"Deactivate: {reference.logical_name} ({reference.id}) deactivated")
            except Exception as e:
                counts["failed"] += 1
                self._report(
                    f"Deactivate: An error occured for {reference.logical_name} "
                    f"({reference.id}): {e}"
                )
                logger.warning(
                    "deactivation_failed",
                    entity=reference.logical_name,
                    record_id=str(reference.id),
                    error=str(e),
                )

        logger.info("deactivation_completed", **counts)
        return counts

    def get_stats(self) -> dict[str, int]:
        """Get import statistics.

        Returns:
            Dictionary with import statistics
        """
        return self.stats.copy()
