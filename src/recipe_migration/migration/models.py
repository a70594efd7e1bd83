"""Record and result types for the import engine.

Import-ready records arrive from the upstream transform stage as camelCase
JSON. They are parsed into pydantic models; each model carries a class-level
``entity_type`` tag so ``ImportableRecord`` is a closed union that can be
matched on. Results produced by the importers are plain dataclasses.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_valid_uuid(value: object) -> bool:
    return isinstance(value, str) and UUID_PATTERN.match(value) is not None


class EntityType(str, Enum):
    """Kinds of records the engine migrates."""

    USER = "user"
    RECIPE = "recipe"


class ErrorType(str, Enum):
    """Classification of a failed import attempt."""

    VALIDATION = "validation"  # rejected by structural rules or a 4xx, never retried
    NETWORK = "network"  # transport failure, retried
    SERVER = "server"  # destination 5xx, retried
    UNKNOWN = "unknown"  # not retried, needs manual triage


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class Ingredient(_Record):
    id: str
    name: str = ""
    amount: int | float | str | None = None
    unit: str | None = None
    display_amount: str | None = None
    notes: str | None = None
    category: str | None = None
    parse_success: bool = True
    original_text: str | None = None


class Instruction(_Record):
    id: str
    step: int
    content: str = ""
    duration: int | None = None


class TransformedUser(_Record):
    """An account ready for import."""

    entity_type: ClassVar[EntityType] = EntityType.USER

    id: str
    legacy_id: int
    name: str = ""
    email: str = ""
    email_verified: datetime | None = None
    password: str | None = None
    image: str | None = None
    role: str = "user"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_label(self) -> str:
        return self.email


class TransformedRecipe(_Record):
    """A recipe ready for import, with nested ingredients and instructions."""

    entity_type: ClassVar[EntityType] = EntityType.RECIPE

    id: str
    legacy_id: int
    title: str = ""
    description: str | None = None
    ingredients: list[Ingredient] = []
    instructions: list[Instruction] = []
    ingredient_sections: list[dict[str, Any]] | None = None
    instruction_sections: list[dict[str, Any]] | None = None
    prep_time: int | float | None = None
    cook_time: int | float | None = None
    servings: int | float | None = None
    difficulty: str | None = None
    tags: list[str] = []
    notes: str | None = None
    image_url: str | None = None
    original_recipe_photo_urls: list[str] = []
    source_url: str | None = None
    author_id: str | None = None
    visibility: str = "public"
    comments_enabled: bool = True
    view_count: int = 0
    like_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_label(self) -> str:
        return self.title


ImportableRecord = TransformedUser | TransformedRecipe


@dataclass
class ImportResult:
    """Outcome of one import attempt (live or dry-run)."""

    success: bool
    legacy_id: int
    new_id: str | None = None
    error: str | None = None
    error_type: ErrorType | None = None
    retry_count: int = 0
    existed: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape used in report files."""
        data: dict[str, Any] = {"success": self.success, "legacyId": self.legacy_id}
        if self.new_id is not None:
            data["newId"] = self.new_id
        if self.error is not None:
            data["error"] = self.error
        if self.error_type is not None:
            data["errorType"] = self.error_type.value
        data["retryCount"] = self.retry_count
        if self.existed is not None:
            data["existed"] = self.existed
        return data


@dataclass
class BatchImportResult:
    """Results for one batch, in submission order."""

    batch_number: int
    total_batches: int
    results: list[ImportResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass
class IdentifierMapping:
    """``legacy_id -> new_id`` for one record, persisted by the idempotency store."""

    legacy_id: int
    new_id: str
    label: str
    migrated: bool = False
    migrated_at: str | None = None

    def to_dict(self, label_field: str) -> dict[str, Any]:
        """Convert to the on-disk JSON shape."""
        return {
            "legacyId": self.legacy_id,
            "newUuid": self.new_id,
            label_field: self.label,
            "migrated": self.migrated,
            "migratedAt": self.migrated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], label_field: str) -> "IdentifierMapping":
        """Build from the on-disk JSON shape."""
        return cls(
            legacy_id=int(data["legacyId"]),
            new_id=str(data["newUuid"]),
            label=data.get(label_field) or "",
            migrated=bool(data.get("migrated", False)),
            migrated_at=data.get("migratedAt"),
        )
