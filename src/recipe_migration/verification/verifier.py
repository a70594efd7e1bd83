"""
Post-migration verification.

Compares the legacy and destination stores after an import, using the
persisted id mappings rather than re-deriving them. Seven independent checks
each produce their own result collection; ``calculate_summary`` rolls them up
into a single pass / warning / fail verdict that deployment tooling gates on.
"""

import random
import re
import time
from collections.abc import Sequence
from datetime import UTC, datetime

from recipe_migration.config import VerificationConfig
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.migration.models import EntityType, IdentifierMapping, is_valid_uuid
from recipe_migration.utils.logging import get_logger
from recipe_migration.verification.database import (
    JSON_ARRAY_FIELDS,
    OPTIONAL_FIELDS,
    REQUIRED_FIELDS,
    DestinationDatabase,
    LegacyDatabase,
)
from recipe_migration.verification.models import (
    CheckStatus,
    CountStatus,
    FieldPopulationCheck,
    HtmlArtifactCheck,
    OrderingCheck,
    OrderingType,
    RecordCountComparison,
    SpotCheckResult,
    SpotChecks,
    TagAssociationCheck,
    UserOwnershipCheck,
    VerificationResult,
    VerificationSummary,
)

logger = get_logger(__name__)

COUNTED_TABLES = ("users", "recipes")
ORDERING_COMPARE_COUNT = 3

HTML_PATTERNS = [
    re.compile(r"<[^>]+>"),
    re.compile(r"&lt;"),
    re.compile(r"&gt;"),
    re.compile(r"&amp;"),
    re.compile(r"&nbsp;"),
    re.compile(r"&quot;"),
]

# UTF-8 text decoded as Windows-1252
ENCODING_PATTERNS = [
    re.compile(r"â€™"),
    re.compile(r"â€œ"),
    re.compile(r"â€"),
    re.compile(r"Ã©"),
    re.compile(r"Ã¨"),
    re.compile(r"Ã "),
]


def has_html_artifacts(text: str | None) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in HTML_PATTERNS)


def has_encoding_issues(text: str | None) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in ENCODING_PATTERNS)


def compare_counts(table: str, legacy_count: int, new_count: int) -> RecordCountComparison:
    """Classify a count ratio: >=99% match, >=90% warning, else mismatch."""
    percentage = new_count / legacy_count * 100 if legacy_count > 0 else 0.0

    if percentage >= 99:
        status = CountStatus.MATCH
    elif percentage >= 90:
        status = CountStatus.WARNING
    else:
        status = CountStatus.MISMATCH

    return RecordCountComparison(
        table=table,
        legacy_count=legacy_count,
        new_count=new_count,
        difference=new_count - legacy_count,
        percentage_match=round(percentage, 2),
        status=status,
    )


def _content(step: object) -> str:
    return (step.get("content") if isinstance(step, dict) else None) or ""


def _position_matches(legacy_text: str, new_text: str) -> bool:
    """Containment in either direction; parsing may have reformatted the text."""
    legacy_text = legacy_text.lower().strip()
    new_text = new_text.lower().strip()
    return new_text in legacy_text or legacy_text.split(" ")[0] in new_text


def calculate_summary(
    record_counts: Sequence[RecordCountComparison] = (),
    spot_checks: Sequence[SpotCheckResult] = (),
    field_population: Sequence[FieldPopulationCheck] = (),
    html_artifacts: Sequence[HtmlArtifactCheck] = (),
    ordering_checks: Sequence[OrderingCheck] = (),
    tag_associations: Sequence[TagAssociationCheck] = (),
    user_ownership: Sequence[UserOwnershipCheck] = (),
) -> VerificationSummary:
    """Roll the individual check results up into one verdict.

    ``fail`` when any check failed or a critical issue was recorded,
    otherwise ``warning`` when any warning was raised, otherwise ``pass``.
    """
    critical_issues: list[str] = []
    recommendations: list[str] = []
    total = passed = failed = warnings = 0

    for comparison in record_counts:
        total += 1
        if comparison.status == CountStatus.MATCH:
            passed += 1
        elif comparison.status == CountStatus.WARNING:
            warnings += 1
        else:
            failed += 1
            critical_issues.append(
                f"{comparison.table} count mismatch: {comparison.difference} difference"
            )

    for check in spot_checks:
        total += 1
        if check.status == CheckStatus.PASS:
            passed += 1
        else:
            failed += 1
            if check.issues:
                critical_issues.append(f"Recipe {check.legacy_id}: {check.issues[0]}")

    for check in field_population:
        total += 1
        if check.status == CheckStatus.PASS:
            passed += 1
        elif check.status == CheckStatus.WARNING:
            warnings += 1
        else:
            failed += 1
            if check.required:
                critical_issues.append(
                    f"Required field {check.field} only {check.population_rate}% populated"
                )

    if html_artifacts:
        warnings += 1
        recommendations.append(
            f"Found {len(html_artifacts)} recipes with HTML/encoding artifacts. "
            "Review and clean if necessary."
        )

    ordering_failed = sum(1 for c in ordering_checks if not c.order_preserved)
    if ordering_failed:
        warnings += 1
        recommendations.append(
            f"{ordering_failed} recipes have ordering issues. Review transformation logic."
        )

    tags_failed = sum(1 for c in tag_associations if not c.all_tags_preserved)
    if tags_failed:
        warnings += 1
        recommendations.append(f"{tags_failed} recipes have tag preservation issues.")

    ownership_failed = sum(1 for c in user_ownership if not c.ownership_mapped)
    if ownership_failed:
        failed += 1
        critical_issues.append(
            f"{ownership_failed} recipes have incorrect user ownership mapping"
        )

    if failed > 0 or critical_issues:
        overall = CheckStatus.FAIL
        recommendations.append(
            "Migration verification failed. Address critical issues before using migrated data."
        )
    elif warnings > 0:
        overall = CheckStatus.WARNING
        recommendations.append(
            "Migration verification passed with warnings. Review warnings before proceeding."
        )
    else:
        overall = CheckStatus.PASS
        recommendations.append("Migration verification passed. Data quality is good.")

    return VerificationSummary(
        overall_status=overall,
        total_checks=total,
        passed_checks=passed,
        failed_checks=failed,
        warning_checks=warnings,
        critical_issues=tuple(critical_issues),
        recommendations=tuple(recommendations),
    )


class PostMigrationVerifier:
    """Runs the verification checks against both stores.

    Usage:
        verifier = PostMigrationVerifier(legacy_db, destination_db, store, config.verification)
        result = verifier.verify()
        if not result.passed:
            ...
    """

    def __init__(
        self,
        legacy: LegacyDatabase,
        destination: DestinationDatabase,
        store: IdempotencyStore,
        settings: VerificationConfig,
        rng: random.Random | None = None,
    ):
        """Initialize verifier.

        Args:
            legacy: Read-only legacy store
            destination: Read-only destination store
            store: Loaded idempotency store holding the id mappings
            settings: Sample sizes and seed
            rng: Random source for sampling (defaults to one seeded from settings)
        """
        self.legacy = legacy
        self.destination = destination
        self.store = store
        self.settings = settings
        self.rng = rng or random.Random(settings.random_seed)

    # ------------------------------------------------------------ mappings

    def recipe_mappings(self) -> list[IdentifierMapping]:
        return [m for m in self.store.get_mappings(EntityType.RECIPE) if m.migrated]

    def user_id_map(self) -> dict[int, str]:
        return {
            m.legacy_id: m.new_id for m in self.store.get_mappings(EntityType.USER) if m.migrated
        }

    def sample(self, count: int) -> list[IdentifierMapping]:
        mappings = self.recipe_mappings()
        return self.rng.sample(mappings, min(count, len(mappings)))

    # ------------------------------------------------------------ checks

    def compare_record_counts(self) -> list[RecordCountComparison]:
        comparisons = [
            compare_counts(table, self.legacy.count(table), self.destination.count(table))
            for table in COUNTED_TABLES
        ]
        for comparison in comparisons:
            logger.info(
                "record_count_compared",
                table=comparison.table,
                legacy=comparison.legacy_count,
                new=comparison.new_count,
                match_pct=comparison.percentage_match,
                status=comparison.status.value,
            )
        return comparisons

    def spot_check(self, mapping: IdentifierMapping) -> SpotCheckResult:
        """Field-by-field comparison of one mapped recipe."""
        legacy = self.legacy.get_recipe(mapping.legacy_id)
        new = self.destination.get_recipe(mapping.new_id)

        if legacy is None or new is None:
            return SpotCheckResult(
                recipe_id=mapping.new_id,
                legacy_id=mapping.legacy_id,
                title=mapping.label,
                checks=SpotChecks(),
                issues=("Recipe not found in one or both databases",),
            )

        legacy_ingredients = self.legacy.get_ingredients(mapping.legacy_id)
        legacy_instructions = self.legacy.get_instructions(mapping.legacy_id)
        legacy_tags = self.legacy.get_tags(mapping.legacy_id)
        issues = []

        title_match = legacy["name"] == new["title"]
        if not title_match:
            issues.append(f'Title mismatch: "{legacy["name"]}" vs "{new["title"]}"')

        ingredient_count_match = len(legacy_ingredients) == len(new["ingredients"])
        if not ingredient_count_match:
            issues.append(
                f"Ingredient count mismatch: {len(legacy_ingredients)} vs {len(new['ingredients'])}"
            )

        instruction_count_match = len(legacy_instructions) == len(new["instructions"])
        if not instruction_count_match:
            issues.append(
                f"Instruction count mismatch: {len(legacy_instructions)} vs "
                f"{len(new['instructions'])}"
            )

        author_mapped = is_valid_uuid(new["author_id"])
        if not author_mapped:
            issues.append("Author ID is not a valid UUID")

        tags_preserved = len(legacy_tags) == len(new["tags"])
        if not tags_preserved:
            issues.append(f"Tag count mismatch: {len(legacy_tags)} vs {len(new['tags'])}")

        no_html = not any(
            has_html_artifacts(_content(step)) for step in new["instructions"]
        )
        if not no_html:
            issues.append("HTML artifacts found in instructions")

        no_encoding = not has_encoding_issues(new["title"]) and not has_encoding_issues(
            new["description"]
        )
        if not no_encoding:
            issues.append("Encoding issues found in text fields")

        return SpotCheckResult(
            recipe_id=mapping.new_id,
            legacy_id=mapping.legacy_id,
            title=new["title"],
            checks=SpotChecks(
                title_match=title_match,
                ingredient_count_match=ingredient_count_match,
                instruction_count_match=instruction_count_match,
                author_mapped=author_mapped,
                tags_preserved=tags_preserved,
                no_html_artifacts=no_html,
                no_encoding_issues=no_encoding,
            ),
            issues=tuple(issues),
        )

    def run_spot_checks(self, count: int | None = None) -> list[SpotCheckResult]:
        count = self.settings.spot_check_count if count is None else count
        results = [self.spot_check(mapping) for mapping in self.sample(count)]
        for result in results:
            logger.info(
                "spot_check_completed",
                legacy_id=result.legacy_id,
                status=result.status.value,
                issues=len(result.issues),
            )
        return results

    def check_field_population(self) -> list[FieldPopulationCheck]:
        total = self.destination.count("recipes")
        checks = []

        for column in REQUIRED_FIELDS + OPTIONAL_FIELDS:
            required = column in REQUIRED_FIELDS
            non_null = self.destination.count_populated(column)
            empty = self.destination.count_empty_arrays(column) if column in JSON_ARRAY_FIELDS else 0
            populated = non_null - empty
            rate = populated / total * 100 if total > 0 else 0.0

            if required:
                status = CheckStatus.PASS if rate >= 99 else CheckStatus.FAIL
            else:
                status = CheckStatus.PASS if rate >= 50 else CheckStatus.WARNING

            check = FieldPopulationCheck(
                field=column,
                total_records=total,
                populated_count=populated,
                null_count=total - non_null,
                empty_count=empty,
                population_rate=round(rate, 2),
                required=required,
                status=status,
            )
            checks.append(check)
            logger.info(
                "field_population_checked",
                field=column,
                rate=check.population_rate,
                status=status.value,
            )

        return checks

    def scan_artifacts(self, limit: int | None = None) -> list[HtmlArtifactCheck]:
        limit = self.settings.artifact_sample_size if limit is None else limit
        legacy_ids = {m.new_id: m.legacy_id for m in self.recipe_mappings()}
        findings = []

        for recipe in self.destination.sample_recipes(limit):
            artifacts = []
            for label, text in (("title", recipe["title"]), ("description", recipe["description"])):
                if has_html_artifacts(text):
                    artifacts.append(f"HTML tags in {label}")
                if has_encoding_issues(text):
                    artifacts.append(f"Encoding issues in {label}")

            for index, step in enumerate(recipe["instructions"], start=1):
                content = _content(step)
                if has_html_artifacts(content):
                    artifacts.append(f"HTML tags in instruction {index}")
                if has_encoding_issues(content):
                    artifacts.append(f"Encoding issues in instruction {index}")

            if artifacts:
                findings.append(
                    HtmlArtifactCheck(
                        recipe_id=recipe["id"],
                        legacy_id=legacy_ids.get(recipe["id"]),
                        title=recipe["title"],
                        field="multiple",
                        artifacts=tuple(artifacts),
                    )
                )

        logger.info("artifact_scan_completed", scanned=limit, recipes_with_artifacts=len(findings))
        return findings

    def check_ordering(self, count: int | None = None) -> list[OrderingCheck]:
        count = self.settings.ordering_sample_size if count is None else count
        checks = []

        for mapping in self.sample(count):
            new = self.destination.get_recipe(mapping.new_id)
            if new is None:
                continue

            legacy_ingredients = self.legacy.get_ingredients(mapping.legacy_id)
            new_ingredients = [
                (i.get("name") if isinstance(i, dict) else None) or "" for i in new["ingredients"]
            ]
            issues = []
            compare = min(ORDERING_COMPARE_COUNT, len(legacy_ingredients), len(new_ingredients))
            for i in range(compare):
                if not _position_matches(legacy_ingredients[i], new_ingredients[i]):
                    issues.append(
                        f'Position {i + 1}: "{legacy_ingredients[i].lower().strip()}" vs '
                        f'"{new_ingredients[i].lower().strip()}"'
                    )
            checks.append(
                OrderingCheck(
                    recipe_id=mapping.new_id,
                    legacy_id=mapping.legacy_id,
                    title=mapping.label,
                    type=OrderingType.INGREDIENTS,
                    issues=tuple(issues),
                )
            )

            legacy_steps = self.legacy.get_instructions(mapping.legacy_id)
            new_steps = [_content(s) for s in new["instructions"]]
            issues = []
            if len(legacy_steps) != len(new_steps):
                issues.append(f"Count mismatch: {len(legacy_steps)} vs {len(new_steps)}")
            compare = min(ORDERING_COMPARE_COUNT, len(legacy_steps), len(new_steps))
            for i in range(compare):
                if not _position_matches(legacy_steps[i], new_steps[i]):
                    issues.append(f"Step {i + 1} does not match the legacy step at that position")
            checks.append(
                OrderingCheck(
                    recipe_id=mapping.new_id,
                    legacy_id=mapping.legacy_id,
                    title=mapping.label,
                    type=OrderingType.INSTRUCTIONS,
                    issues=tuple(issues),
                )
            )

        preserved = sum(1 for c in checks if c.order_preserved)
        logger.info("ordering_checked", preserved=preserved, total=len(checks))
        return checks

    def check_tag_associations(self, count: int | None = None) -> list[TagAssociationCheck]:
        count = self.settings.tag_sample_size if count is None else count
        checks = []

        for mapping in self.sample(count):
            new = self.destination.get_recipe(mapping.new_id)
            if new is None:
                continue

            legacy_tags = sorted(t.lower().strip() for t in self.legacy.get_tags(mapping.legacy_id))
            new_tags = sorted(str(t).lower().strip() for t in new["tags"])

            checks.append(
                TagAssociationCheck(
                    recipe_id=mapping.new_id,
                    legacy_id=mapping.legacy_id,
                    title=mapping.label,
                    legacy_tags=tuple(legacy_tags),
                    new_tags=tuple(new_tags),
                    missing_tags=tuple(t for t in legacy_tags if t not in new_tags),
                    extra_tags=tuple(t for t in new_tags if t not in legacy_tags),
                )
            )

        preserved = sum(1 for c in checks if c.all_tags_preserved)
        logger.info("tag_associations_checked", preserved=preserved, total=len(checks))
        return checks

    def check_user_ownership(self, count: int | None = None) -> list[UserOwnershipCheck]:
        count = self.settings.ownership_sample_size if count is None else count
        user_map = self.user_id_map()
        checks = []

        for mapping in self.sample(count):
            legacy = self.legacy.get_recipe(mapping.legacy_id)
            new = self.destination.get_recipe(mapping.new_id)
            if legacy is None or new is None:
                continue

            legacy_user_id = legacy["user_id"]
            new_author_id = new["author_id"]
            expected = user_map.get(legacy_user_id)

            if expected is None:
                issue = f"Legacy user {legacy_user_id} not found in user mapping"
            elif expected != new_author_id:
                issue = f"Author ID mismatch: expected {expected}, got {new_author_id}"
            else:
                issue = None

            checks.append(
                UserOwnershipCheck(
                    recipe_id=mapping.new_id,
                    legacy_id=mapping.legacy_id,
                    title=mapping.label,
                    legacy_user_id=legacy_user_id,
                    new_author_id=new_author_id,
                    issue=issue,
                )
            )

        mapped = sum(1 for c in checks if c.ownership_mapped)
        logger.info("user_ownership_checked", mapped=mapped, total=len(checks))
        return checks

    # ------------------------------------------------------------ run

    def verify(self) -> VerificationResult:
        """Run every check and roll up the verdict."""
        started = time.monotonic()
        logger.info("verification_started", recipe_mappings=len(self.recipe_mappings()))

        record_counts = self.compare_record_counts()
        spot_checks = self.run_spot_checks()
        field_population = self.check_field_population()
        html_artifacts = self.scan_artifacts()
        ordering_checks = self.check_ordering()
        tag_associations = self.check_tag_associations()
        user_ownership = self.check_user_ownership()

        summary = calculate_summary(
            record_counts=record_counts,
            spot_checks=spot_checks,
            field_population=field_population,
            html_artifacts=html_artifacts,
            ordering_checks=ordering_checks,
            tag_associations=tag_associations,
            user_ownership=user_ownership,
        )

        result = VerificationResult(
            timestamp=datetime.now(UTC).isoformat(),
            duration=round(time.monotonic() - started, 3),
            summary=summary,
            record_counts=tuple(record_counts),
            spot_checks=tuple(spot_checks),
            field_population=tuple(field_population),
            html_artifacts=tuple(html_artifacts),
            ordering_checks=tuple(ordering_checks),
            tag_associations=tuple(tag_associations),
            user_ownership=tuple(user_ownership),
            metadata={
                "legacyDatabase": self.legacy.engine.url.render_as_string(hide_password=True),
                "destinationDatabase": self.destination.engine.url.render_as_string(
                    hide_password=True
                ),
            },
        )

        logger.info(
            "verification_finished",
            status=summary.overall_status.value,
            passed=summary.passed_checks,
            failed=summary.failed_checks,
            warnings=summary.warning_checks,
            duration_s=result.duration,
        )
        return result
