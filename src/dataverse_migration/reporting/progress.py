"""Progress tracking for import runs.

This module holds the per-entity counters the import engine updates while it
sweeps a batch, and a tqdm based console tracker fed by the engine's progress
messages.
"""

from dataclasses import dataclass
from typing import Any

from tqdm import tqdm

from dataverse_migration.client.exceptions import RelationshipNotFoundError
from dataverse_migration.migration.models import EntityMetadata, find_intersect_relationship
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EntityProgress:
    """Counters for one entity type during one run."""

    logical_name: str
    display_name: str
    processed: int = 0
    success: int = 0
    error: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.logical_name,
            "display_name": self.display_name,
            "processed": self.processed,
            "success": self.success,
            "error": self.error,
        }


class ImportProgress:
    """Mapping of entity type to counters, plus the total record count."""

    def __init__(self, total: int = 0):
        self.total = total
        self.entities: dict[str, EntityProgress] = {}

    def get(self, logical_name: str) -> EntityProgress | None:
        return self.entities.get(logical_name)

    def get_or_create(self, logical_name: str, display_name: str) -> EntityProgress:
        """Return the counters for a type, registering them on first use."""
        progress = self.entities.get(logical_name)
        if progress is None:
            progress = EntityProgress(logical_name, display_name)
            self.entities[logical_name] = progress
        return progress

    @property
    def processed(self) -> int:
        return sum(p.processed for p in self.entities.values())

    @property
    def success(self) -> int:
        return sum(p.success for p in self.entities.values())

    @property
    def error(self) -> int:
        return sum(p.error for p in self.entities.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "success": self.success,
            "error": self.error,
            "entities": [p.to_dict() for p in self.entities.values()],
        }


def _label(metadata: list[EntityMetadata], logical_name: str) -> str:
    for entity in metadata:
        if entity.logical_name == logical_name:
            return entity.display_name or entity.schema_name
    return logical_name


def resolve_display_name(logical_name: str, metadata: list[EntityMetadata]) -> str:
    """Resolve the label shown for an entity type.

    Uses the localized label when there is one. Intersect entities without a
    label are shown as "A / B" from the labels of the two related entities,
    also when only the relationship, not the intersect entity itself, is
    loaded. Anything else falls back to the schema name.

    A related entity without a localized label contributes its schema name,
    or its logical name when its metadata is not loaded, so the "A / B" form
    is always produced once the relationship is known.

    Args:
        logical_name: Entity logical name
        metadata: Metadata of all loaded entities

    Returns:
        Display label, never empty
    """
    entity = next((m for m in metadata if m.logical_name == logical_name), None)
    if entity is not None and entity.display_name:
        return entity.display_name
    if entity is None or entity.is_intersect:
        try:
            relationship = find_intersect_relationship(metadata, logical_name)
        except RelationshipNotFoundError:
            return entity.schema_name if entity is not None else logical_name
        return (
            f"{_label(metadata, relationship.entity1_logical_name)} / "
            f"{_label(metadata, relationship.entity2_logical_name)}"
        )
    return entity.schema_name


class ProgressTracker:
    """Tracks and displays run progress in real-time.

    Uses tqdm to display one bar over the run's phases (one retrieval per
    entity, the import, the deactivation step) and one bar over the items of
    the current phase.
    """

    def __init__(self, total_phases: int, enable: bool = True):
        """Initialize progress tracker.

        Args:
            total_phases: Total number of phases in the run
            enable: Whether to enable progress bars (False for CI/automation)
        """
        self.total_phases = total_phases
        self.enable = enable
        self.phase_bar: tqdm | None = None
        self.item_bar: tqdm | None = None
        self.current_phase = 0

        if self.enable:
            self.phase_bar = tqdm(
                total=total_phases,
                desc="Migration Progress",
                unit="phase",
                position=0,
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}]",
            )

        logger.info("progress_tracker_initialized", total_phases=total_phases)

    def start_phase(self, phase_name: str, total_items: int = 0) -> None:
        """Start tracking a new phase.

        Args:
            phase_name: Name shown next to the item bar
            total_items: Number of items in this phase (0 if unknown)
        """
        self.current_phase += 1

        if self.enable and self.item_bar:
            self.item_bar.close()
            self.item_bar = None

        if self.enable and total_items > 0:
            self.item_bar = tqdm(
                total=total_items,
                desc=f"  {phase_name}",
                unit="record",
                position=1,
                leave=False,
            )

        logger.info(
            "phase_started",
            phase_name=phase_name,
            phase_number=self.current_phase,
            total_items=total_items,
        )

    def set_position(self, done: int) -> None:
        """Move the item bar to ``done`` items."""
        if self.enable and self.item_bar:
            self.item_bar.n = min(done, self.item_bar.total)
            self.item_bar.refresh()

    def on_message(self, message: str) -> None:
        """Show the latest engine message next to the item bar."""
        if self.enable and self.item_bar:
            self.item_bar.set_postfix_str(message[:60])

    def complete_phase(self) -> None:
        """Mark current phase as completed."""
        if self.enable:
            if self.item_bar:
                self.item_bar.close()
                self.item_bar = None
            if self.phase_bar:
                self.phase_bar.update(1)

        logger.info("phase_completed", phase_number=self.current_phase)

    def close(self) -> None:
        """Close all progress bars."""
        if self.enable:
            if self.item_bar:
                self.item_bar.close()
                self.item_bar = None
            if self.phase_bar:
                self.phase_bar.close()
                self.phase_bar = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
