"""Build the OData query used to retrieve an entity's records from the source.

Filters:
- created on or after / modified on or after a date (OR-ed together)
- portal website scope, either through the entity's own website lookup or
  through the lookup chain to a parent that has one
- active records only
"""

from datetime import date
from typing import NamedTuple
from uuid import UUID

from dataverse_migration.config import FilterConfig
from dataverse_migration.migration.models import EntityMetadata

WEBSITE_ENTITY = "adx_website"
WEBSITE_LOOKUP_VALUE = "_adx_websiteid_value"

# Entities exempt from the active-only filter
NO_STATE_ENTITIES = frozenset({"annotation"})

WEB_FILE_ENTITY = "adx_webfile"
WEB_FILE_NOTES = "adx_webfile_Annotations"


class ParentHop(NamedTuple):
    """One lookup followed from a child entity towards its website."""

    lookup_attribute: str
    parent_entity: str


# Portal entities without a website lookup, and the lookup chain to a parent that has one
PARENT_WEBSITE_PATHS: dict[str, tuple[ParentHop, ...]] = {
    "adx_entityformmetadata": (ParentHop("adx_entityform", "adx_entityform"),),
    "adx_webformmetadata": (
        ParentHop("adx_webformstep", "adx_webformstep"),
        ParentHop("adx_webform", "adx_webform"),
    ),
    "adx_weblink": (ParentHop("adx_weblinksetid", "adx_weblinkset"),),
    "adx_blogpost": (ParentHop("adx_blogid", "adx_blog"),),
    "adx_communityforumaccesspermission": (ParentHop("adx_forumid", "adx_communityforum"),),
    "adx_communityforumannouncement": (ParentHop("adx_forumid", "adx_communityforum"),),
    "adx_communityforumthread": (ParentHop("adx_forumid", "adx_communityforum"),),
    "adx_communityforumpost": (
        ParentHop("adx_forumthreadid", "adx_communityforumthread"),
        ParentHop("adx_forumid", "adx_communityforum"),
    ),
    "adx_idea": (ParentHop("adx_ideaforumid", "adx_ideaforum"),),
    "adx_pagealert": (ParentHop("adx_webpageid", "adx_webpage"),),
    "adx_webpagehistory": (ParentHop("adx_webpageid", "adx_webpage"),),
    "adx_webpagelog": (ParentHop("adx_webpageid", "adx_webpage"),),
    "adx_pollsubmission": (ParentHop("adx_pollid", "adx_poll"),),
    "adx_webfilelog": (ParentHop("adx_webfileid", "adx_webfile"),),
    "adx_webformsession": (ParentHop("adx_webform", "adx_webform"),),
    "adx_webformstep": (ParentHop("adx_webform", "adx_webform"),),
}


def _date_literal(value: date) -> str:
    return f"{value.isoformat()}T00:00:00Z"


def _date_clauses(filters: FilterConfig, prefix: str = "") -> list[str]:
    clauses = []
    if filters.create_filter:
        clauses.append(f"{prefix}createdon ge {_date_literal(filters.create_filter)}")
    if filters.modify_filter:
        clauses.append(f"{prefix}modifiedon ge {_date_literal(filters.modify_filter)}")
    return clauses


def _any_of(clauses: list[str]) -> str:
    if len(clauses) == 1:
        return clauses[0]
    return "(" + " or ".join(clauses) + ")"


def _navigation_path(
    entity_metadata: EntityMetadata,
    hops: tuple[ParentHop, ...],
    metadata: list[EntityMetadata],
) -> str:
    """Translate a lookup chain into single-valued navigation properties."""
    known = {entity.logical_name: entity for entity in metadata}
    known[entity_metadata.logical_name] = entity_metadata

    path = []
    current = entity_metadata.logical_name
    for hop in hops:
        navigation = hop.lookup_attribute
        entity = known.get(current)
        attribute = entity.get_attribute(hop.lookup_attribute) if entity else None
        if attribute is not None:
            navigation = attribute.navigation_properties.get(hop.parent_entity, navigation)
        path.append(navigation)
        current = hop.parent_entity
    return "/".join(path)


def _website_clause(
    entity_metadata: EntityMetadata,
    website_id: UUID,
    filters: FilterConfig,
    metadata: list[EntityMetadata],
) -> str | None:
    lookup = entity_metadata.lookup_attribute_targeting(WEBSITE_ENTITY)
    if lookup is not None:
        return f"_{lookup.logical_name}_value eq {website_id}"

    if entity_metadata.logical_name == WEB_FILE_ENTITY:
        # Web files are scoped by the dates of their attached notes
        note_clauses = _date_clauses(filters, prefix="n/")
        if not note_clauses:
            return None
        return f"{WEB_FILE_NOTES}/any(n: {' or '.join(note_clauses)})"

    hops = PARENT_WEBSITE_PATHS.get(entity_metadata.logical_name)
    if hops is None:
        return None
    path = _navigation_path(entity_metadata, hops, metadata)
    return f"{path}/{WEBSITE_LOOKUP_VALUE} eq {website_id}"


def build_record_query(
    entity_metadata: EntityMetadata,
    filters: FilterConfig,
    metadata: list[EntityMetadata] | None = None,
) -> dict[str, str]:
    """Build the query options for retrieving an entity's records.

    All columns are retrieved, except for intersect entities which are
    limited to their identifier attributes so that they are recognized as
    associations on import.

    Args:
        entity_metadata: Metadata of the entity to retrieve
        filters: Configured record filters
        metadata: Metadata of the other loaded entities, used to resolve
            navigation properties along parent lookup chains

    Returns:
        Query options ($select, $filter) for ``retrieve_multiple``
    """
    params: dict[str, str] = {}
    clauses: list[str] = []

    if entity_metadata.is_intersect:
        identifiers = [
            name
            for name, attribute in entity_metadata.attributes.items()
            if attribute.attribute_type == "Uniqueidentifier"
        ]
        if identifiers:
            params["$select"] = ",".join(identifiers)

    date_clauses = _date_clauses(filters)
    if date_clauses:
        clauses.append(_any_of(date_clauses))

    if filters.website_filter:
        website_clause = _website_clause(
            entity_metadata, filters.website_filter, filters, metadata or []
        )
        if website_clause:
            clauses.append(website_clause)

    if filters.active_items_only and entity_metadata.logical_name not in NO_STATE_ENTITIES:
        clauses.append("statecode eq 0")

    if clauses:
        params["$filter"] = " and ".join(clauses)

    return params
