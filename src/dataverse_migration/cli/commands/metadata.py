"""Entity metadata commands.

This module provides a command for inspecting the metadata the importer
relies on: lookups and their targets, and many-to-many relationships.
"""

import asyncio

import click

from dataverse_migration.cli.context import MigrationContext
from dataverse_migration.cli.decorators import handle_errors, pass_context, requires_config
from dataverse_migration.cli.utils import echo_info, print_table
from dataverse_migration.migration.models import EntityMetadata
from dataverse_migration.reporting.progress import resolve_display_name
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


@click.group(name="metadata")
def metadata() -> None:
    """Inspect entity metadata.

    Shows how the importer sees an entity: its display name, lookup
    attributes and many-to-many relationships.
    """
    pass


@metadata.command(name="show")
@click.argument("entities", nargs=-1, required=True)
@click.option(
    "--target",
    "use_target",
    is_flag=True,
    help="Read metadata from the target organization instead of the source",
)
@click.option(
    "--all-attributes",
    is_flag=True,
    help="List every attribute, not only lookups",
)
@pass_context
@requires_config
@handle_errors
def show(
    ctx: MigrationContext,
    entities: tuple[str, ...],
    use_target: bool,
    all_attributes: bool,
) -> None:
    """Show metadata for one or more entities.

    Examples:

        dataverse-bridge metadata show account contact --config config.yaml

        dataverse-bridge metadata show contact_tag --target --config config.yaml
    """
    label = "target" if use_target else "source"
    echo_info(f"Reading metadata from the {label} organization")

    async def load() -> list[EntityMetadata]:
        client = ctx.target_client if use_target else ctx.source_client
        try:
            return [await client.retrieve_entity_metadata(name.lower()) for name in entities]
        finally:
            await ctx.close_clients()

    loaded = asyncio.run(load())

    for entity in loaded:
        _display_entity(entity, loaded, all_attributes)


def _display_entity(
    entity: EntityMetadata, loaded: list[EntityMetadata], all_attributes: bool
) -> None:
    click.echo()
    print_table(
        f"{resolve_display_name(entity.logical_name, loaded)} ({entity.logical_name})",
        ["Property", "Value"],
        [
            ["Schema Name", entity.schema_name],
            ["Entity Set", entity.entity_set_name],
            ["Primary Id", entity.primary_id_attribute],
            ["Primary Name", entity.primary_name_attribute or "(N/A)"],
            ["Intersect", entity.is_intersect],
        ],
    )

    attributes = [
        attribute
        for attribute in entity.attributes.values()
        if all_attributes or attribute.is_lookup
    ]
    if attributes:
        print_table(
            "Attributes" if all_attributes else "Lookups",
            ["Attribute", "Type", "Targets", "Create", "Update"],
            [
                [
                    attribute.logical_name,
                    attribute.attribute_type,
                    ", ".join(attribute.targets) or "-",
                    "yes" if attribute.is_valid_for_create else "no",
                    "yes" if attribute.is_valid_for_update else "no",
                ]
                for attribute in sorted(attributes, key=lambda a: a.logical_name)
            ],
        )

    if entity.many_to_many_relationships:
        print_table(
            "Many-to-Many Relationships",
            ["Schema Name", "Intersect Entity", "Entity 1", "Entity 2", "Navigation"],
            [
                [
                    relationship.schema_name,
                    relationship.intersect_entity_name,
                    f"{relationship.entity1_logical_name}.{relationship.entity1_intersect_attribute}",
                    f"{relationship.entity2_logical_name}.{relationship.entity2_intersect_attribute}",
                    relationship.navigation_property,
                ]
                for relationship in entity.many_to_many_relationships
            ],
        )
