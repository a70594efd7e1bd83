"""Result types for post-migration verification.

Each check produces its own collection of frozen dataclasses. ``to_dict``
renders the camelCase shape written to the verification reports.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic.alias_generators import to_camel


class CountStatus(str, Enum):
    MATCH = "match"
    WARNING = "warning"
    MISMATCH = "mismatch"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OrderingType(str, Enum):
    INGREDIENTS = "ingredients"
    INSTRUCTIONS = "instructions"


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_camel(key): _camelize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_camelize(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


class _Result:
    def to_dict(self) -> dict[str, Any]:
        return _camelize(asdict(self))


@dataclass(frozen=True)
class RecordCountComparison(_Result):
    table: str
    legacy_count: int
    new_count: int
    difference: int
    percentage_match: float
    status: CountStatus


@dataclass(frozen=True)
class SpotChecks(_Result):
    title_match: bool = False
    ingredient_count_match: bool = False
    instruction_count_match: bool = False
    author_mapped: bool = False
    tags_preserved: bool = False
    no_html_artifacts: bool = False
    no_encoding_issues: bool = False


@dataclass(frozen=True)
class SpotCheckResult(_Result):
    recipe_id: str
    legacy_id: int
    title: str
    checks: SpotChecks
    issues: tuple[str, ...] = ()

    @property
    def status(self) -> CheckStatus:
        return CheckStatus.PASS if not self.issues else CheckStatus.FAIL

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"status": self.status.value}


@dataclass(frozen=True)
class FieldPopulationCheck(_Result):
    field: str
    total_records: int
    populated_count: int
    null_count: int
    empty_count: int
    population_rate: float
    required: bool
    status: CheckStatus


@dataclass(frozen=True)
class HtmlArtifactCheck(_Result):
    recipe_id: str
    legacy_id: int | None
    title: str
    field: str
    artifacts: tuple[str, ...]

    @property
    def severity(self) -> Severity:
        if len(self.artifacts) > 3:
            return Severity.HIGH
        if len(self.artifacts) > 1:
            return Severity.MEDIUM
        return Severity.LOW

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"severity": self.severity.value}


@dataclass(frozen=True)
class OrderingCheck(_Result):
    recipe_id: str
    legacy_id: int
    title: str
    type: OrderingType
    issues: tuple[str, ...] = ()

    @property
    def order_preserved(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"orderPreserved": self.order_preserved}


@dataclass(frozen=True)
class TagAssociationCheck(_Result):
    recipe_id: str
    legacy_id: int
    title: str
    legacy_tags: tuple[str, ...]
    new_tags: tuple[str, ...]
    missing_tags: tuple[str, ...] = ()
    extra_tags: tuple[str, ...] = ()

    @property
    def all_tags_preserved(self) -> bool:
        return not self.missing_tags and not self.extra_tags

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"allTagsPreserved": self.all_tags_preserved}


@dataclass(frozen=True)
class UserOwnershipCheck(_Result):
    recipe_id: str
    legacy_id: int
    title: str
    legacy_user_id: int | None
    new_author_id: str | None
    issue: str | None = None

    @property
    def ownership_mapped(self) -> bool:
        return self.issue is None

    def to_dict(self) -> dict[str, Any]:
        return super().to_dict() | {"ownershipMapped": self.ownership_mapped}


@dataclass(frozen=True)
class VerificationSummary(_Result):
    overall_status: CheckStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_checks: int
    critical_issues: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class VerificationResult:
    """Everything one verification run found."""

    timestamp: str
    duration: float
    summary: VerificationSummary
    record_counts: tuple[RecordCountComparison, ...] = ()
    spot_checks: tuple[SpotCheckResult, ...] = ()
    field_population: tuple[FieldPopulationCheck, ...] = ()
    html_artifacts: tuple[HtmlArtifactCheck, ...] = ()
    ordering_checks: tuple[OrderingCheck, ...] = ()
    tag_associations: tuple[TagAssociationCheck, ...] = ()
    user_ownership: tuple[UserOwnershipCheck, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.summary.overall_status != CheckStatus.FAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "duration": self.duration,
            "metadata": self.metadata,
            "summary": self.summary.to_dict(),
            "recordCounts": [c.to_dict() for c in self.record_counts],
            "spotChecks": [c.to_dict() for c in self.spot_checks],
            "fieldPopulation": [c.to_dict() for c in self.field_population],
            "htmlArtifacts": [c.to_dict() for c in self.html_artifacts],
            "orderingChecks": [c.to_dict() for c in self.ordering_checks],
            "tagAssociations": [c.to_dict() for c in self.tag_associations],
            "userOwnership": [c.to_dict() for c in self.user_ownership],
        }
