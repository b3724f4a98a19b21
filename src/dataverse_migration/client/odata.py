"""Conversion between Dataverse Web API JSON and engine records.

The Web API returns lookups as ``_<attribute>_value`` properties annotated
with the target's logical name, and expects them back as
``<navigation property>@odata.bind`` references. Everything else is a plain
JSON value, with option sets as integers and unique identifiers as strings.
"""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from dataverse_migration.client.exceptions import MetadataError
from dataverse_migration.migration.models import (
    OPTION_SET_TYPES,
    AttributeMetadata,
    EntityMetadata,
    EntityReference,
    ManyToManyRelationship,
    OptionSetValue,
    Record,
)

LOOKUP_LOGICAL_NAME = "@Microsoft.Dynamics.CRM.lookuplogicalname"
FORMATTED_VALUE = "@OData.Community.Display.V1.FormattedValue"

# $select / $expand used to read an entity definition
ENTITY_DEFINITION_SELECT = (
    "LogicalName,SchemaName,EntitySetName,DisplayName,"
    "PrimaryIdAttribute,PrimaryNameAttribute,IsIntersect"
)
ENTITY_DEFINITION_EXPAND = (
    "Attributes($select=LogicalName,AttributeType,IsValidForCreate,"
    "IsValidForUpdate,IsPrimaryId),"
    "ManyToManyRelationships($select=SchemaName,IntersectEntityName,"
    "Entity1LogicalName,Entity1IntersectAttribute,Entity1NavigationPropertyName,"
    "Entity2LogicalName,Entity2IntersectAttribute),"
    "ManyToOneRelationships($select=ReferencingAttribute,ReferencedEntity,"
    "ReferencingEntityNavigationPropertyName)"
)


def _localized_label(label: Any) -> str | None:
    if not isinstance(label, dict):
        return None
    user_label = label.get("UserLocalizedLabel")
    if isinstance(user_label, dict) and user_label.get("Label"):
        return user_label["Label"]
    for localized in label.get("LocalizedLabels") or []:
        if localized.get("Label"):
            return localized["Label"]
    return None


def metadata_from_definition(definition: dict[str, Any]) -> EntityMetadata:
    """Build ``EntityMetadata`` from an ``EntityDefinitions`` response.

    Args:
        definition: Entity definition with Attributes, ManyToManyRelationships
            and ManyToOneRelationships expanded

    Returns:
        Parsed entity metadata

    Raises:
        MetadataError: If a required property is missing
    """
    try:
        logical_name = definition["LogicalName"]
        entity = EntityMetadata(
            logical_name=logical_name,
            schema_name=definition.get("SchemaName") or logical_name,
            entity_set_name=definition["EntitySetName"],
            primary_id_attribute=definition["PrimaryIdAttribute"],
            primary_name_attribute=definition.get("PrimaryNameAttribute"),
            display_name=_localized_label(definition.get("DisplayName")),
            is_intersect=bool(definition.get("IsIntersect")),
        )
    except KeyError as e:
        raise MetadataError(f"Entity definition is missing {e.args[0]}") from e

    for item in definition.get("Attributes") or []:
        attribute = AttributeMetadata(
            logical_name=item["LogicalName"],
            attribute_type=item.get("AttributeType") or "String",
            is_primary_id=bool(item.get("IsPrimaryId")),
            is_valid_for_create=bool(item.get("IsValidForCreate", True)),
            is_valid_for_update=bool(item.get("IsValidForUpdate", True)),
        )
        entity.attributes[attribute.logical_name] = attribute

    for item in definition.get("ManyToOneRelationships") or []:
        attribute = entity.attributes.get(item.get("ReferencingAttribute"))
        if attribute is None:
            continue
        attribute.navigation_properties[item["ReferencedEntity"]] = item.get(
            "ReferencingEntityNavigationPropertyName"
        ) or attribute.logical_name

    for item in definition.get("ManyToManyRelationships") or []:
        entity.many_to_many_relationships.append(
            ManyToManyRelationship(
                schema_name=item["SchemaName"],
                intersect_entity_name=item["IntersectEntityName"],
                entity1_logical_name=item["Entity1LogicalName"],
                entity1_intersect_attribute=item["Entity1IntersectAttribute"],
                entity2_logical_name=item["Entity2LogicalName"],
                entity2_intersect_attribute=item["Entity2IntersectAttribute"],
                entity1_navigation_property=item.get("Entity1NavigationPropertyName"),
            )
        )

    return entity


def _read_value(attribute: AttributeMetadata | None, value: Any) -> Any:
    if value is None or attribute is None:
        return value
    if attribute.attribute_type in OPTION_SET_TYPES:
        return OptionSetValue(int(value))
    if attribute.attribute_type == "Uniqueidentifier":
        return UUID(str(value))
    return value


def record_from_payload(payload: dict[str, Any], entity_metadata: EntityMetadata) -> Record:
    """Convert a Web API entity payload into a ``Record``.

    Args:
        payload: One item of a ``value`` array returned by a query
        entity_metadata: Metadata of the payload's entity

    Returns:
        Record carrying typed attribute values

    Raises:
        MetadataError: If the payload lacks the primary id attribute
    """
    primary_id = entity_metadata.primary_id_attribute
    if not payload.get(primary_id):
        raise MetadataError(
            f"Payload for '{entity_metadata.logical_name}' has no '{primary_id}' value"
        )

    record = Record(entity_metadata.logical_name, UUID(str(payload[primary_id])))

    for key, value in payload.items():
        if "@" in key:
            continue

        if key.startswith("_") and key.endswith("_value"):
            name = key[1:-6]
            if value is None:
                record.attributes[name] = None
                continue
            target = payload.get(f"{key}{LOOKUP_LOGICAL_NAME}")
            if target is None:
                attribute = entity_metadata.get_attribute(name)
                if attribute is not None and len(attribute.targets) == 1:
                    target = attribute.targets[0]
            if target is None:
                record.attributes[name] = UUID(str(value))
            else:
                record.attributes[name] = EntityReference(
                    target, UUID(str(value)), payload.get(f"{key}{FORMATTED_VALUE}")
                )
            continue

        record.attributes[key] = _read_value(entity_metadata.get_attribute(key), value)

    return record


def referenced_entities(record: Record) -> set[str]:
    """Logical names of every entity the record's lookups point at."""
    return {
        value.logical_name
        for value in record.attributes.values()
        if isinstance(value, EntityReference)
    }


def _write_value(value: Any) -> Any:
    if isinstance(value, OptionSetValue):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def record_to_payload(
    record: Record,
    entity_metadata: EntityMetadata,
    entity_set_names: Mapping[str, str],
    for_update: bool = False,
) -> dict[str, Any]:
    """Convert a ``Record`` into a Web API request body.

    The primary id travels in the URL and is left out of the body, except for
    intersect entities whose identifier attributes are all kept. Attributes the
    target does not accept for the operation are dropped.

    Args:
        record: Record to write
        entity_metadata: Metadata of the record's entity
        entity_set_names: Entity set name for every referenced entity
        for_update: Only keep attributes valid for update

    Returns:
        JSON body for a PATCH request

    Raises:
        MetadataError: If a referenced entity has no known entity set name
    """
    payload: dict[str, Any] = {}

    for name, value in record.attributes.items():
        attribute = entity_metadata.get_attribute(name)
        if attribute is None:
            continue

        if not entity_metadata.is_intersect:
            if name == entity_metadata.primary_id_attribute:
                continue
            if for_update and not attribute.is_valid_for_update:
                continue
            if not (attribute.is_valid_for_create or attribute.is_valid_for_update):
                continue

        if isinstance(value, EntityReference):
            entity_set = entity_set_names.get(value.logical_name)
            if entity_set is None:
                raise MetadataError(f"No entity set name known for '{value.logical_name}'")
            navigation = attribute.navigation_properties.get(value.logical_name, name)
            payload[f"{navigation}@odata.bind"] = f"/{entity_set}({value.id})"
        elif value is None and attribute.is_lookup:
            continue
        else:
            payload[name] = _write_value(value)

    return payload
