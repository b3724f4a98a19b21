"""
Migration module for Dataverse Bridge.

This module provides the record and metadata models and the query builder.
The importer, exporter and coordinator are imported from their own modules.
"""

from dataverse_migration.migration.models import (
    AttributeMetadata,
    EntityMetadata,
    EntityReference,
    FailedRecord,
    ImportResult,
    ManyToManyRelationship,
    OptionSetValue,
    Record,
    find_entity_metadata,
    find_intersect_relationship,
)
from dataverse_migration.migration.query import build_record_query

__all__ = [
    # Records
    "Record",
    "EntityReference",
    "OptionSetValue",
    # Metadata
    "AttributeMetadata",
    "EntityMetadata",
    "ManyToManyRelationship",
    "find_entity_metadata",
    "find_intersect_relationship",
    # Results
    "FailedRecord",
    "ImportResult",
    # Queries
    "build_record_query",
]
