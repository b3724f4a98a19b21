"""Dataverse Web API client.

This client provides the record operations the import engine needs (upsert,
update, associate) plus paged retrieval and entity metadata for the exporter.
The same class is used for the source and the target organization.
"""

from typing import Any
from uuid import UUID

from dataverse_migration.client.base_client import BaseAPIClient
from dataverse_migration.client.exceptions import (
    APIError,
    DuplicateAssociationError,
)
from dataverse_migration.client.odata import (
    ENTITY_DEFINITION_EXPAND,
    ENTITY_DEFINITION_SELECT,
    metadata_from_definition,
    record_to_payload,
    referenced_entities,
)
from dataverse_migration.config import DataverseInstanceConfig
from dataverse_migration.migration.models import EntityMetadata, Record
from dataverse_migration.utils.logging import get_logger
from dataverse_migration.utils.retry import retry_api_call, retry_api_call_short

logger = get_logger(__name__)

# Organization service fault raised when an association already exists
DUPLICATE_RECORD_ERROR_CODE = -2147220937

INCLUDE_ANNOTATIONS = 'odata.include-annotations="*"'


class DataverseClient(BaseAPIClient):
    """Client for a Dataverse organization.

    Extends BaseAPIClient with the Web API routes for records, associations
    and entity definitions. Entity set names are cached per client so that
    lookups to entities outside the loaded metadata can still be bound.
    """

    def __init__(
        self,
        config: DataverseInstanceConfig,
        rate_limit: int = 20,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        max_connections: int | None = None,
        max_keepalive_connections: int | None = None,
        **kwargs: Any,
    ):
        """Initialize Dataverse client.

        Args:
            config: Organization configuration
            rate_limit: Maximum requests per second
            log_payloads: Enable request/response payload logging
            max_payload_size: Maximum payload size to log before truncation
            max_connections: Maximum number of connections in pool
            max_keepalive_connections: Maximum keep-alive connections
            **kwargs: Passed through to BaseAPIClient (e.g. transport)
        """
        super().__init__(
            base_url=config.api_url,
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=rate_limit,
            log_payloads=log_payloads,
            max_payload_size=max_payload_size,
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
            **kwargs,
        )
        self._entity_set_names: dict[str, str] = {}
        logger.info("dataverse_client_initialized", url=config.api_url)

    # Metadata

    @retry_api_call
    async def retrieve_entity_metadata(self, logical_name: str) -> EntityMetadata:
        """Retrieve the definition of one entity.

        Args:
            logical_name: Entity logical name (e.g. 'account')

        Returns:
            Entity metadata with attributes and relationships

        Raises:
            NotFoundError: If the entity does not exist in the organization
        """
        definition = await self.get(
            f"EntityDefinitions(LogicalName='{logical_name}')",
            params={"$select": ENTITY_DEFINITION_SELECT, "$expand": ENTITY_DEFINITION_EXPAND},
        )
        metadata = metadata_from_definition(definition)
        self._entity_set_names[metadata.logical_name] = metadata.entity_set_name
        logger.debug(
            "entity_metadata_retrieved",
            entity=logical_name,
            attributes=len(metadata.attributes),
            many_to_many=len(metadata.many_to_many_relationships),
        )
        return metadata

    @retry_api_call_short
    async def get_entity_set_name(self, logical_name: str) -> str:
        """Return the entity set name of an entity, fetching it once if unknown."""
        if logical_name not in self._entity_set_names:
            definition = await self.get(
                f"EntityDefinitions(LogicalName='{logical_name}')",
                params={"$select": "LogicalName,EntitySetName"},
            )
            self._entity_set_names[logical_name] = definition["EntitySetName"]
        return self._entity_set_names[logical_name]

    def remember_entity_sets(self, metadata: list[EntityMetadata]) -> None:
        """Seed the entity set cache from already loaded metadata."""
        for entity in metadata:
            self._entity_set_names[entity.logical_name] = entity.entity_set_name

    async def _entity_set_names_for(self, record: Record) -> dict[str, str]:
        return {name: await self.get_entity_set_name(name) for name in referenced_entities(record)}

    # Records

    @retry_api_call
    async def upsert(self, record: Record, metadata: EntityMetadata) -> bool:
        """Create or update a record keyed by its id.

        Args:
            record: Record to write
            metadata: Metadata of the record's entity

        Returns:
            True if the record was created, False if it already existed
        """
        payload = record_to_payload(record, metadata, await self._entity_set_names_for(record))
        response = await self.send(
            "PATCH",
            f"{metadata.entity_set_name}({record.id})",
            json_data=payload,
            headers={"Prefer": "return=representation"},
        )
        created = response.status_code == 201
        logger.info(
            "record_upserted",
            entity=record.logical_name,
            record_id=str(record.id),
            created=created,
        )
        return created

    @retry_api_call
    async def update(self, record: Record, metadata: EntityMetadata) -> None:
        """Update an existing record.

        Raises:
            NotFoundError: If the record does not exist
        """
        payload = record_to_payload(
            record, metadata, await self._entity_set_names_for(record), for_update=True
        )
        await self.send(
            "PATCH",
            f"{metadata.entity_set_name}({record.id})",
            json_data=payload,
            headers={"If-Match": "*"},
        )
        logger.info(
            "record_updated",
            entity=record.logical_name,
            record_id=str(record.id),
            attributes=sorted(payload),
        )

    @retry_api_call
    async def associate(
        self,
        entity1: str,
        id1: UUID,
        relationship: str,
        entity2: str,
        id2: UUID,
    ) -> None:
        """Associate two records through a many-to-many relationship.

        Args:
            entity1: Logical name of the first record
            id1: Id of the first record
            relationship: Collection-valued navigation property on entity1
            entity2: Logical name of the second record
            id2: Id of the second record

        Raises:
            DuplicateAssociationError: If the records are already associated
        """
        set1 = await self.get_entity_set_name(entity1)
        set2 = await self.get_entity_set_name(entity2)
        try:
            await self.send(
                "POST",
                f"{set1}({id1})/{relationship}/$ref",
                json_data={"@odata.id": f"{self.base_url}/{set2}({id2})"},
            )
        except APIError as e:
            if e.error_code == DUPLICATE_RECORD_ERROR_CODE:
                raise DuplicateAssociationError(
                    message="Association already exists",
                    status_code=e.status_code,
                    response=e.response,
                    error_code=e.error_code,
                ) from e
            raise
        logger.info(
            "records_associated",
            relationship=relationship,
            entity1=entity1,
            id1=str(id1),
            entity2=entity2,
            id2=str(id2),
        )

    @retry_api_call
    async def retrieve_multiple(
        self,
        entity_set: str,
        params: dict[str, Any] | None = None,
        page_size: int = 5000,
    ) -> list[dict[str, Any]]:
        """Fetch all pages of a query, following ``@odata.nextLink``.

        Args:
            entity_set: Entity set name (e.g. 'accounts')
            params: OData query options ($select, $filter, ...)
            page_size: Preferred page size (odata.maxpagesize)

        Returns:
            List of all entity payloads from all pages
        """
        headers = {"Prefer": f"{INCLUDE_ANNOTATIONS},odata.maxpagesize={page_size}"}
        all_results: list[dict[str, Any]] = []
        endpoint: str | None = entity_set
        query_params = params
        page = 1

        while endpoint:
            response = await self.get(endpoint, params=query_params, headers=headers)
            results = response.get("value", [])
            all_results.extend(results)

            logger.debug(
                "page_fetched",
                entity_set=entity_set,
                page=page,
                count=len(results),
                total_so_far=len(all_results),
            )

            # nextLink already carries the query options
            endpoint = response.get("@odata.nextLink")
            query_params = None
            page += 1

        logger.info("records_retrieved", entity_set=entity_set, total=len(all_results))
        return all_results

    @retry_api_call_short
    async def validate_connectivity(self) -> dict[str, Any]:
        """Call WhoAmI to check the URL and token.

        Returns:
            WhoAmI response (UserId, BusinessUnitId, OrganizationId)
        """
        result = await self.get("WhoAmI")
        logger.info(
            "connectivity_validated",
            url=self.base_url,
            user_id=result.get("UserId"),
            organization_id=result.get("OrganizationId"),
        )
        return result

