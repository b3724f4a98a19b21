"""Record exporter for retrieving records from the source organization."""

from dataverse_migration.client.dataverse_client import DataverseClient
from dataverse_migration.client.exceptions import MetadataError
from dataverse_migration.client.odata import record_from_payload
from dataverse_migration.config import FilterConfig, PerformanceConfig
from dataverse_migration.migration.models import EntityMetadata, Record
from dataverse_migration.migration.query import build_record_query
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


class RecordExporter:
    """Retrieves the filtered records of each entity as ``Record`` objects."""

    def __init__(
        self,
        client: DataverseClient,
        filters: FilterConfig,
        performance_config: PerformanceConfig,
    ):
        """Initialize record exporter.

        Args:
            client: Source organization client
            filters: Record filters applied to every entity
            performance_config: Performance configuration (page size)
        """
        self.client = client
        self.filters = filters
        self.performance_config = performance_config
        self.stats = {
            "exported_count": 0,
            "error_count": 0,
        }

    async def retrieve_records(
        self,
        entity_metadata: EntityMetadata,
        metadata: list[EntityMetadata] | None = None,
    ) -> list[Record]:
        """Retrieve all records of one entity matching the filters.

        Payloads that cannot be converted (no primary id) are logged and skipped.

        Args:
            entity_metadata: Metadata of the entity to retrieve
            metadata: Metadata of the other loaded entities

        Returns:
            Retrieved records
        """
        params = build_record_query(entity_metadata, self.filters, metadata)
        logger.debug(
            "retrieving_records",
            entity=entity_metadata.logical_name,
            filter=params.get("$filter"),
        )

        payloads = await self.client.retrieve_multiple(
            entity_metadata.entity_set_name,
            params=params,
            page_size=self.performance_config.page_size,
        )

        records = []
        for payload in payloads:
            try:
                records.append(record_from_payload(payload, entity_metadata))
            except MetadataError as e:
                self.stats["error_count"] += 1
                logger.warning(
                    "record_conversion_failed",
                    entity=entity_metadata.logical_name,
                    error=str(e),
                )

        self.stats["exported_count"] += len(records)
        logger.info(
            "entity_records_retrieved",
            entity=entity_metadata.logical_name,
            count=len(records),
        )
        return records
