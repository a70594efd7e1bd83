"""Idempotency store: durable ``legacy_id -> new_id`` mappings per entity type.

The store is the exactly-once guard for the import engine. Records already
marked migrated are filtered out before the importers run, so completed work
is skipped rather than re-submitted. Each entity type is persisted as a JSON
array (plus a CSV mirror for ad hoc inspection) that is rewritten whole, via
write-then-rename, on every save.
"""

import csv
import io
import json
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Generic, TypeVar

from recipe_migration.client.exceptions import StateError
from recipe_migration.migration.models import EntityType, IdentifierMapping, ImportableRecord
from recipe_migration.utils.files import atomic_write_json, atomic_write_text
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

R = TypeVar("R", bound=ImportableRecord)

MAPPING_FILES = {
    EntityType.RECIPE: "recipe-id-mapping.json",
    EntityType.USER: "user-id-mapping.json",
}

# Field holding the human-readable label in each mapping file
LABEL_FIELDS = {
    EntityType.RECIPE: "title",
    EntityType.USER: "email",
}


@dataclass
class FilterResult(Generic[R]):
    """Partition of a record list into work still to do and work already done."""

    unimported: list[R] = field(default_factory=list)
    skipped: list[R] = field(default_factory=list)


def mappings_to_csv(entity_type: EntityType, mappings: Iterable[IdentifierMapping]) -> str:
    """Render mappings as CSV with a ``legacy_id,new_uuid,<label>,migrated,migrated_at`` header."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["legacy_id", "new_uuid", LABEL_FIELDS[entity_type], "migrated", "migrated_at"])
    for mapping in mappings:
        writer.writerow(
            [
                mapping.legacy_id,
                mapping.new_id,
                mapping.label,
                "true" if mapping.migrated else "false",
                mapping.migrated_at or "",
            ]
        )
    return buffer.getvalue()


class IdempotencyStore:
    """Tracks which legacy records have been imported and their destination ids.

    Usage:
        store = IdempotencyStore("migration-data/imported")
        store.load_mappings()

        todo = store.filter_unimported(EntityType.RECIPE, recipes)
        ...
        store.mark_imported(EntityType.RECIPE, recipe.legacy_id, new_id, recipe.title)
        store.save_mappings()
    """

    def __init__(self, mapping_dir: str | Path = "migration-data/imported"):
        """Initialize the store.

        Args:
            mapping_dir: Directory holding the mapping files
        """
        self.mapping_dir = Path(mapping_dir)
        self._mappings: dict[EntityType, dict[int, IdentifierMapping]] = {
            entity_type: {} for entity_type in EntityType
        }
        self._lock = threading.RLock()

    def mapping_path(self, entity_type: EntityType) -> Path:
        """Path of the JSON mapping file for ``entity_type``."""
        return self.mapping_dir / MAPPING_FILES[entity_type]

    def load_mappings(self) -> None:
        """Load mappings from disk.

        A missing file means nothing has been imported yet for that entity
        type.

        Raises:
            StateError: If a mapping file exists but cannot be read or parsed
        """
        with self._lock:
            for entity_type in EntityType:
                path = self.mapping_path(entity_type)
                label_field = LABEL_FIELDS[entity_type]

                try:
                    raw = json.loads(path.read_text(encoding="utf-8"))
                except FileNotFoundError:
                    self._mappings[entity_type] = {}
                    continue
                except (OSError, ValueError) as e:
                    logger.error("mapping_load_failed", path=str(path), error=str(e))
                    raise StateError(f"Failed to load mappings from {path}: {e}") from e

                if not isinstance(raw, list):
                    raise StateError(f"Mapping file {path} must contain a JSON array")

                try:
                    mappings = [IdentifierMapping.from_dict(item, label_field) for item in raw]
                except (KeyError, TypeError, ValueError) as e:
                    raise StateError(f"Malformed mapping entry in {path}: {e}") from e

                self._mappings[entity_type] = {m.legacy_id: m for m in mappings}

            stats = self.get_stats()
            logger.info(
                "mappings_loaded",
                mapping_dir=str(self.mapping_dir),
                recipes=stats[EntityType.RECIPE.value]["total"],
                users=stats[EntityType.USER.value]["total"],
            )

    def save_mappings(self) -> None:
        """Rewrite every mapping file (and its CSV mirror) atomically.

        Raises:
            StateError: If a file cannot be written
        """
        with self._lock:
            for entity_type in EntityType:
                path = self.mapping_path(entity_type)
                mappings = list(self._mappings[entity_type].values())
                label_field = LABEL_FIELDS[entity_type]
                try:
                    atomic_write_json(path, [m.to_dict(label_field) for m in mappings])
                    atomic_write_text(
                        path.with_suffix(".csv"), mappings_to_csv(entity_type, mappings)
                    )
                except OSError as e:
                    raise StateError(f"Failed to save mappings to {path}: {e}") from e

            logger.debug("mappings_saved", mapping_dir=str(self.mapping_dir))

    def is_imported(self, entity_type: EntityType, legacy_id: int) -> bool:
        """True when a mapping exists for ``legacy_id`` and is marked migrated."""
        mapping = self._mappings[entity_type].get(legacy_id)
        return mapping is not None and mapping.migrated

    def get_mapping(self, entity_type: EntityType, legacy_id: int) -> IdentifierMapping | None:
        return self._mappings[entity_type].get(legacy_id)

    def get_new_id(self, entity_type: EntityType, legacy_id: int) -> str | None:
        mapping = self._mappings[entity_type].get(legacy_id)
        return mapping.new_id if mapping else None

    def get_mappings(self, entity_type: EntityType) -> list[IdentifierMapping]:
        """All mappings of one entity type, in insertion order."""
        return list(self._mappings[entity_type].values())

    def add_mapping(self, entity_type: EntityType, mapping: IdentifierMapping) -> None:
        """Insert or replace the mapping for ``mapping.legacy_id``.

        A mapping already marked migrated is never downgraded.
        """
        with self._lock:
            existing = self._mappings[entity_type].get(mapping.legacy_id)
            if existing is not None and existing.migrated and not mapping.migrated:
                logger.warning(
                    "mapping_downgrade_ignored",
                    entity_type=entity_type.value,
                    legacy_id=mapping.legacy_id,
                )
                return
            self._mappings[entity_type][mapping.legacy_id] = mapping

    def mark_imported(
        self, entity_type: EntityType, legacy_id: int, new_id: str, label: str
    ) -> IdentifierMapping:
        """Record a confirmed import.

        Args:
            entity_type: Entity type of the record
            legacy_id: Legacy primary key
            new_id: Effective destination id
            label: Title (recipes) or email (users)

        Returns:
            The stored mapping
        """
        if not new_id:
            raise ValueError("new_id is required to mark a record as imported")

        mapping = IdentifierMapping(
            legacy_id=legacy_id,
            new_id=new_id,
            label=label,
            migrated=True,
            migrated_at=datetime.now(UTC).isoformat(),
        )
        with self._lock:
            self._mappings[entity_type][legacy_id] = mapping
        return mapping

    def mark_record_imported(self, record: ImportableRecord, new_id: str) -> IdentifierMapping:
        """``mark_imported`` keyed and labelled by the record's own variant."""
        return self.mark_imported(
            record.entity_type, record.legacy_id, new_id, record.display_label
        )

    def filter_unimported(self, entity_type: EntityType, items: Sequence[R]) -> FilterResult[R]:
        """Split ``items`` into records still to import and records already migrated.

        Order is preserved within both lists.
        """
        result: FilterResult[R] = FilterResult()
        for item in items:
            if self.is_imported(entity_type, item.legacy_id):
                result.skipped.append(item)
            else:
                result.unimported.append(item)

        logger.info(
            "records_filtered",
            entity_type=entity_type.value,
            unimported=len(result.unimported),
            skipped=len(result.skipped),
        )
        return result

    def get_stats(self) -> dict[str, dict[str, int]]:
        """Per-entity ``{total, imported, pending}`` counts."""
        stats = {}
        for entity_type in EntityType:
            mappings = self._mappings[entity_type].values()
            total = len(mappings)
            imported = sum(1 for m in mappings if m.migrated)
            stats[entity_type.value] = {
                "total": total,
                "imported": imported,
                "pending": total - imported,
            }
        return stats

    def clear_mappings(self) -> None:
        """Forget every mapping in memory (the files change on the next save)."""
        with self._lock:
            for entity_type in EntityType:
                self._mappings[entity_type] = {}
        logger.warning("mappings_cleared", mapping_dir=str(self.mapping_dir))

    def export_mappings(self) -> dict[str, list[dict]]:
        """All mappings in their on-disk JSON shape, keyed by entity type."""
        return {
            entity_type.value: [
                m.to_dict(LABEL_FIELDS[entity_type]) for m in self._mappings[entity_type].values()
            ]
            for entity_type in EntityType
        }
