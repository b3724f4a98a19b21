"""Shared fixtures: entity metadata and an in-memory target organization."""

from typing import Any
from uuid import UUID, uuid4

import pytest

from dataverse_migration.client.dataverse_client import DUPLICATE_RECORD_ERROR_CODE
from dataverse_migration.client.exceptions import (
    DuplicateAssociationError,
    NotFoundError,
    ServerError,
)
from dataverse_migration.migration.models import (
    AttributeMetadata,
    EntityMetadata,
    EntityReference,
    ManyToManyRelationship,
    Record,
)


def _attr(name: str, attribute_type: str = "String", **kwargs: Any) -> AttributeMetadata:
    return AttributeMetadata(logical_name=name, attribute_type=attribute_type, **kwargs)


def _lookup(name: str, *targets: str, attribute_type: str = "Lookup") -> AttributeMetadata:
    return AttributeMetadata(
        logical_name=name,
        attribute_type=attribute_type,
        navigation_properties={target: name for target in targets},
    )


def _entity(
    logical_name: str,
    entity_set_name: str,
    primary_name: str | None,
    attributes: list[AttributeMetadata],
    **kwargs: Any,
) -> EntityMetadata:
    primary_id = f"{logical_name}id"
    entity = EntityMetadata(
        logical_name=logical_name,
        schema_name=kwargs.pop("schema_name", logical_name.title()),
        entity_set_name=entity_set_name,
        primary_id_attribute=primary_id,
        primary_name_attribute=primary_name,
        **kwargs,
    )
    entity.attributes[primary_id] = _attr(primary_id, "Uniqueidentifier", is_primary_id=True)
    for attribute in attributes:
        entity.attributes[attribute.logical_name] = attribute
    return entity


@pytest.fixture
def account_metadata() -> EntityMetadata:
    return _entity(
        "account",
        "accounts",
        "name",
        [
            _attr("name"),
            _lookup("primarycontactid", "contact"),
            _lookup("parentaccountid", "account"),
            _lookup("ownerid", "systemuser", "team", attribute_type="Owner"),
            _attr("statecode", "State"),
            _attr("statuscode", "Status"),
        ],
        schema_name="Account",
        display_name="Account",
    )


@pytest.fixture
def contact_metadata() -> EntityMetadata:
    contact = _entity(
        "contact",
        "contacts",
        "fullname",
        [
            _attr("fullname", is_valid_for_create=False, is_valid_for_update=False),
            _attr("lastname"),
            _lookup("parentcustomerid", "account", "contact", attribute_type="Customer"),
            _lookup("ownerid", "systemuser", "team", attribute_type="Owner"),
            _attr("statecode", "State"),
            _attr("statuscode", "Status"),
        ],
        schema_name="Contact",
        display_name="Contact",
    )
    contact.attributes["parentcustomerid"].navigation_properties = {
        "account": "parentcustomerid_account",
        "contact": "parentcustomerid_contact",
    }
    contact.many_to_many_relationships.append(
        ManyToManyRelationship(
            schema_name="new_contact_tag",
            intersect_entity_name="new_contact_tag",
            entity1_logical_name="contact",
            entity1_intersect_attribute="contactid",
            entity2_logical_name="new_tag",
            entity2_intersect_attribute="new_tagid",
            entity1_navigation_property="new_contact_tag",
        )
    )
    return contact


@pytest.fixture
def tag_metadata() -> EntityMetadata:
    return _entity("new_tag", "new_tags", "new_name", [_attr("new_name")], schema_name="new_Tag")


@pytest.fixture
def contact_tag_metadata() -> EntityMetadata:
    return _entity(
        "new_contact_tag",
        "new_contact_tagset",
        None,
        [_attr("contactid", "Uniqueidentifier"), _attr("new_tagid", "Uniqueidentifier")],
        schema_name="new_contact_tag",
        is_intersect=True,
    )


@pytest.fixture
def item_metadata() -> EntityMetadata:
    """Entity whose 'next' column holds a bare identifier, not a declared lookup."""
    return _entity(
        "new_item",
        "new_items",
        "new_name",
        [_attr("new_name"), _attr("new_nextid", "Uniqueidentifier")],
        schema_name="new_Item",
    )


@pytest.fixture
def annotation_metadata() -> EntityMetadata:
    return _entity(
        "annotation",
        "annotations",
        "subject",
        [_attr("subject"), _lookup("objectid", "account", "contact")],
        schema_name="Annotation",
        display_name="Note",
    )


@pytest.fixture
def metadata(
    account_metadata,
    contact_metadata,
    tag_metadata,
    contact_tag_metadata,
    item_metadata,
    annotation_metadata,
) -> list[EntityMetadata]:
    return [
        account_metadata,
        contact_metadata,
        tag_metadata,
        contact_tag_metadata,
        item_metadata,
        annotation_metadata,
    ]


class FakeStore:
    """In-memory target organization exposing the client's async write surface.

    Enforces that every EntityReference written points at an existing record,
    and that both sides of an association exist.
    """

    def __init__(self, metadata: list[EntityMetadata] | None = None):
        self.records: dict[tuple[str, UUID], dict[str, Any]] = {}
        self.associations: set[tuple[str, UUID, UUID]] = set()
        self.calls: list[tuple[str, str, UUID]] = []
        self.fail_on: set[tuple[str, UUID]] = set()
        self.metadata = {entity.logical_name: entity for entity in metadata or []}

    def seed(self, logical_name: str, record_id: UUID, **attributes: Any) -> None:
        self.records[(logical_name, record_id)] = dict(attributes)

    def _check_references(self, record: Record) -> None:
        for name, value in record.attributes.items():
            if isinstance(value, EntityReference) and (
                (value.logical_name, value.id) not in self.records
            ):
                raise NotFoundError(
                    f"{name} references missing {value.logical_name}({value.id})",
                    status_code=404,
                )

    def _check_failure(self, logical_name: str, record_id: UUID) -> None:
        if (logical_name, record_id) in self.fail_on:
            raise ServerError("Generic SQL error", status_code=500)

    async def upsert(self, record: Record, metadata: EntityMetadata) -> bool:
        self.calls.append(("upsert", record.logical_name, record.id))
        self._check_failure(record.logical_name, record.id)
        self._check_references(record)
        created = record.identity not in self.records
        self.records.setdefault(record.identity, {}).update(record.attributes)
        return created

    async def update(self, record: Record, metadata: EntityMetadata) -> None:
        self.calls.append(("update", record.logical_name, record.id))
        self._check_failure(record.logical_name, record.id)
        if record.identity not in self.records:
            raise NotFoundError(f"{record.logical_name}({record.id}) does not exist", 404)
        self._check_references(record)
        self.records[record.identity].update(record.attributes)

    async def associate(
        self, entity1: str, id1: UUID, relationship: str, entity2: str, id2: UUID
    ) -> None:
        self.calls.append(("associate", relationship, id1))
        for logical_name, record_id in ((entity1, id1), (entity2, id2)):
            if (logical_name, record_id) not in self.records:
                raise NotFoundError(f"{logical_name}({record_id}) does not exist", 404)
        key = (relationship, id1, id2)
        if key in self.associations:
            raise DuplicateAssociationError(
                "Cannot insert duplicate key.",
                status_code=400,
                error_code=DUPLICATE_RECORD_ERROR_CODE,
            )
        self.associations.add(key)

    async def retrieve_entity_metadata(self, logical_name: str) -> EntityMetadata:
        return self.metadata[logical_name]

    def remember_entity_sets(self, metadata: list[EntityMetadata]) -> None:
        pass

    def operations(self, kind: str) -> list[tuple[str, str, UUID]]:
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
def store(metadata) -> FakeStore:
    return FakeStore(metadata)


@pytest.fixture
def new_id():
    return uuid4
