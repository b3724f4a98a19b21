"""Record and metadata models used by the import engine.

Records are kept in a Web API independent form: lookups are
``EntityReference`` values, option sets are ``OptionSetValue`` values and
unique identifiers are ``uuid.UUID`` values. Conversion to and from the
OData payloads lives in ``dataverse_migration.client.odata``.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from dataverse_migration.client.exceptions import MetadataError, RelationshipNotFoundError

# Attribute types whose values are single-valued references to other records
LOOKUP_TYPES = frozenset({"Lookup", "Customer", "Owner"})

# Attribute types whose values are integer options
OPTION_SET_TYPES = frozenset({"State", "Status", "Picklist"})

INACTIVE_STATE = 1


@dataclass(frozen=True)
class EntityReference:
    """Typed reference to another record."""

    logical_name: str
    id: UUID
    name: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class OptionSetValue:
    """Integer value of an option set attribute (statecode, statuscode, picklists)."""

    value: int


@dataclass
class Record:
    """An identified, typed bag of attribute values.

    The identity ``(logical_name, id)`` never changes during an import;
    attributes may be added or removed by the engine.
    """

    logical_name: str
    id: UUID
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, UUID]:
        return (self.logical_name, self.id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def to_entity_reference(self) -> EntityReference:
        return EntityReference(self.logical_name, self.id)


@dataclass
class AttributeMetadata:
    """Definition of one entity attribute."""

    logical_name: str
    attribute_type: str
    is_primary_id: bool = False
    is_valid_for_create: bool = True
    is_valid_for_update: bool = True
    # Target entity logical name -> single-valued navigation property
    navigation_properties: dict[str, str] = field(default_factory=dict)

    @property
    def is_lookup(self) -> bool:
        return self.attribute_type in LOOKUP_TYPES

    @property
    def targets(self) -> list[str]:
        return list(self.navigation_properties)


@dataclass
class ManyToManyRelationship:
    """Definition of a many-to-many relationship and its intersect entity."""

    schema_name: str
    intersect_entity_name: str
    entity1_logical_name: str
    entity1_intersect_attribute: str
    entity2_logical_name: str
    entity2_intersect_attribute: str
    entity1_navigation_property: str | None = None

    @property
    def navigation_property(self) -> str:
        """Collection-valued navigation property used to associate from entity1."""
        return self.entity1_navigation_property or self.schema_name


@dataclass
class EntityMetadata:
    """Schema metadata of one entity."""

    logical_name: str
    schema_name: str
    entity_set_name: str
    primary_id_attribute: str
    primary_name_attribute: str | None = None
    display_name: str | None = None
    is_intersect: bool = False
    attributes: dict[str, AttributeMetadata] = field(default_factory=dict)
    many_to_many_relationships: list[ManyToManyRelationship] = field(default_factory=list)

    def get_attribute(self, name: str) -> AttributeMetadata | None:
        return self.attributes.get(name)

    def is_lookup(self, name: str) -> bool:
        attribute = self.attributes.get(name)
        return attribute is not None and attribute.is_lookup

    def lookup_attribute_targeting(self, target: str) -> AttributeMetadata | None:
        """Return the first lookup attribute that can point at ``target``."""
        for attribute in self.attributes.values():
            if attribute.is_lookup and target in attribute.navigation_properties:
                return attribute
        return None


def find_entity_metadata(metadata: list[EntityMetadata], logical_name: str) -> EntityMetadata:
    """Find the metadata of an entity.

    Raises:
        MetadataError: If the entity is not part of ``metadata``
    """
    for entity in metadata:
        if entity.logical_name == logical_name:
            return entity
    raise MetadataError(f"No metadata loaded for entity '{logical_name}'")


def find_intersect_relationship(
    metadata: list[EntityMetadata], intersect_entity_name: str
) -> ManyToManyRelationship:
    """Find the many-to-many relationship backed by an intersect entity.

    All relationships of all loaded entities are searched; the first match wins.

    Raises:
        RelationshipNotFoundError: If no relationship uses the intersect entity
    """
    for entity in metadata:
        for relationship in entity.many_to_many_relationships:
            if relationship.intersect_entity_name == intersect_entity_name:
                return relationship
    raise RelationshipNotFoundError(intersect_entity_name)


@dataclass
class FailedRecord:
    """A record whose write failed during the sweep."""

    logical_name: str
    id: UUID
    name: str | None
    error: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.logical_name,
            "id": str(self.id),
            "name": self.name,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class ImportResult:
    """Outcome of one call to ``RecordImporter.process_records``.

    Attributes:
        completed: True when the batch was drained before the sweep bound
        sweeps: Number of sweeps that ran
        unresolved: Records still in the batch when the sweep bound was hit
        failed: Records whose write raised an error
        deferred_updated: Deferred reference updates that succeeded
        deferred_failed: Deferred reference updates that failed
        deactivations: Records queued for deactivation, in queue order
    """

    completed: bool = False
    sweeps: int = 0
    unresolved: list[Record] = field(default_factory=list)
    failed: list[FailedRecord] = field(default_factory=list)
    deferred_updated: int = 0
    deferred_failed: int = 0
    deactivations: list[EntityReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "sweeps": self.sweeps,
            "unresolved": [
                {"entity": record.logical_name, "id": str(record.id)} for record in self.unresolved
            ],
            "failed": [failure.to_dict() for failure in self.failed],
            "deferred_updated": self.deferred_updated,
            "deferred_failed": self.deferred_failed,
            "deactivations": [
                {"entity": ref.logical_name, "id": str(ref.id)} for ref in self.deactivations
            ],
        }
