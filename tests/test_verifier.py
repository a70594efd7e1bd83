"""Tests for post-migration verification against in-memory SQLite stores."""

import json
import uuid

import pytest
from sqlalchemy import text

from recipe_migration.config import DatabaseConfig, VerificationConfig
from recipe_migration.migration.models import EntityType, IdentifierMapping
from recipe_migration.verification.database import (
    DestinationDatabase,
    LegacyDatabase,
    create_readonly_engine,
)
from recipe_migration.verification.models import (
    CheckStatus,
    CountStatus,
    HtmlArtifactCheck,
    Severity,
    UserOwnershipCheck,
)
from recipe_migration.verification.report import VerificationReportGenerator
from recipe_migration.verification.verifier import (
    PostMigrationVerifier,
    calculate_summary,
    compare_counts,
    has_encoding_issues,
    has_html_artifacts,
)

from conftest import uuid_for

LEGACY_SCHEMA = [
    "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT)",
    "CREATE TABLE recipes (id INTEGER PRIMARY KEY, name TEXT, description TEXT, user_id INTEGER)",
    "CREATE TABLE ingredients (recipe_id INTEGER, ingredient TEXT, order_number INTEGER)",
    "CREATE TABLE instructions (recipe_id INTEGER, step TEXT, step_number INTEGER)",
    "CREATE TABLE tags (id INTEGER PRIMARY KEY, name TEXT)",
    "CREATE TABLE recipe_tags (recipe_id INTEGER, tag_id INTEGER)",
]

DESTINATION_SCHEMA = [
    "CREATE TABLE users (id TEXT PRIMARY KEY)",
    "CREATE TABLE recipes (id TEXT PRIMARY KEY, title TEXT, description TEXT, "
    "ingredients TEXT, instructions TEXT, tags TEXT, author_id TEXT, image_url TEXT, "
    "source_url TEXT, prep_time INTEGER, cook_time INTEGER, servings INTEGER)",
]


def _engine(schema):
    engine = create_readonly_engine(DatabaseConfig(url="sqlite://"))
    with engine.begin() as conn:
        for statement in schema:
            conn.execute(text(statement))
    return engine


def _execute(db, sql, **params):
    with db.engine.begin() as conn:
        conn.execute(text(sql), params)


def add_legacy_recipe(db, legacy_id, name, user_id, ingredients, steps, tags=()):
    _execute(
        db,
        "INSERT INTO recipes (id, name, description, user_id) VALUES (:id, :name, 'desc', :uid)",
        id=legacy_id,
        name=name,
        uid=user_id,
    )
    for number, ingredient in enumerate(ingredients, 1):
        _execute(
            db,
            "INSERT INTO ingredients VALUES (:rid, :text, :n)",
            rid=legacy_id,
            text=ingredient,
            n=number,
        )
    for number, step in enumerate(steps, 1):
        _execute(
            db,
            "INSERT INTO instructions VALUES (:rid, :text, :n)",
            rid=legacy_id,
            text=step,
            n=number,
        )
    for tag in tags:
        _execute(
            db,
            "INSERT INTO tags (name) SELECT :name "
            "WHERE NOT EXISTS (SELECT 1 FROM tags WHERE name = :name)",
            name=tag,
        )
        _execute(
            db,
            "INSERT INTO recipe_tags SELECT :rid, id FROM tags WHERE name = :name",
            rid=legacy_id,
            name=tag,
        )


def add_destination_recipe(db, recipe_id, title, author_id, ingredients, steps, tags=(), **extra):
    row = {
        "description": "desc",
        "image_url": "https://img.example.com/a.jpg",
        "source_url": "https://example.com/a",
        "prep_time": 5,
        "cook_time": 10,
        "servings": 4,
    } | extra
    _execute(
        db,
        "INSERT INTO recipes VALUES (:id, :title, :description, :ingredients, :instructions, "
        ":tags, :author_id, :image_url, :source_url, :prep_time, :cook_time, :servings)",
        id=recipe_id,
        title=title,
        ingredients=json.dumps([{"name": name} for name in ingredients]),
        instructions=json.dumps(
            [{"step": n, "content": content} for n, content in enumerate(steps, 1)]
        ),
        tags=json.dumps(list(tags)),
        author_id=author_id,
        **row,
    )


class UuidColumnDatabase(DestinationDatabase):
    """Returns uuid columns as ``uuid.UUID`` objects, as psycopg does."""

    def _fetch_all(self, sql, **params):
        rows = super()._fetch_all(sql, **params)
        for row in rows:
            for key in ("id", "author_id"):
                if isinstance(row.get(key), str):
                    row[key] = uuid.UUID(row[key])
        return rows


@pytest.fixture
def legacy_db():
    db = LegacyDatabase(_engine(LEGACY_SCHEMA))
    yield db
    db.close()


@pytest.fixture
def destination_db():
    db = DestinationDatabase(_engine(DESTINATION_SCHEMA))
    yield db
    db.close()


@pytest.fixture
def migrated_pancakes(legacy_db, destination_db, store):
    """One user and one recipe, migrated faithfully."""
    _execute(legacy_db, "INSERT INTO users VALUES (1, 'cook1@example.com')")
    _execute(destination_db, "INSERT INTO users VALUES (:id)", id=uuid_for("user", 1))
    add_legacy_recipe(
        legacy_db,
        1,
        "Pancakes",
        1,
        ["2 cups flour", "1 egg"],
        ["Whisk the batter", "Fry in a pan"],
        tags=["breakfast", "sweet"],
    )
    add_destination_recipe(
        destination_db,
        uuid_for("recipe", 1),
        "Pancakes",
        uuid_for("user", 1),
        ["flour", "egg"],
        ["Whisk the batter", "Fry in a pan"],
        tags=["sweet", "breakfast"],
    )
    store.mark_imported(EntityType.USER, 1, uuid_for("user", 1), "cook1@example.com")
    store.mark_imported(EntityType.RECIPE, 1, uuid_for("recipe", 1), "Pancakes")


@pytest.fixture
def verifier(legacy_db, destination_db, store):
    return PostMigrationVerifier(
        legacy_db, destination_db, store, VerificationConfig(random_seed=7)
    )


class TestHelpers:
    @pytest.mark.parametrize(
        "legacy, new, expected",
        [
            (100, 100, CountStatus.MATCH),
            (1000, 991, CountStatus.MATCH),
            (100, 95, CountStatus.WARNING),
            (100, 50, CountStatus.MISMATCH),
        ],
    )
    def test_compare_counts(self, legacy, new, expected):
        comparison = compare_counts("recipes", legacy, new)

        assert comparison.status == expected
        assert comparison.difference == new - legacy

    @pytest.mark.parametrize(
        "count, expected",
        [(1, Severity.LOW), (2, Severity.MEDIUM), (3, Severity.MEDIUM), (4, Severity.HIGH)],
    )
    def test_artifact_severity(self, count, expected):
        artifacts = tuple(f"HTML tags in instruction {n}" for n in range(1, count + 1))

        check = HtmlArtifactCheck("r", 1, "t", "multiple", artifacts)

        assert check.severity == expected
        assert check.to_dict()["severity"] == expected.value

    def test_artifact_patterns(self):
        assert has_html_artifacts("Salt &amp; pepper")
        assert has_html_artifacts("<b>Bold</b>")
        assert not has_html_artifacts("Plain text")
        assert not has_html_artifacts(None)
        assert has_encoding_issues("Itâ€™s good")
        assert not has_encoding_issues("It's good")


class TestCalculateSummary:
    """Roll-up of individual check results."""

    def test_no_checks_pass(self):
        assert calculate_summary().overall_status == CheckStatus.PASS

    def test_count_warning_gives_warning(self):
        summary = calculate_summary(record_counts=[compare_counts("users", 100, 95)])

        assert summary.overall_status == CheckStatus.WARNING
        assert summary.warning_checks == 1

    def test_artifacts_alone_are_a_warning(self):
        artifact = HtmlArtifactCheck("r", 1, "t", "multiple", ("HTML tags in title",))

        summary = calculate_summary(html_artifacts=[artifact])

        assert summary.overall_status == CheckStatus.WARNING
        assert "1 recipes with HTML/encoding artifacts" in summary.recommendations[0]

    def test_count_mismatch_fails(self):
        summary = calculate_summary(record_counts=[compare_counts("recipes", 100, 10)])

        assert summary.overall_status == CheckStatus.FAIL
        assert summary.critical_issues == ("recipes count mismatch: -90 difference",)

    def test_ownership_failure_fails(self):
        check = UserOwnershipCheck("r", 1, "t", 1, "x", issue="Author ID mismatch")

        summary = calculate_summary(user_ownership=[check])

        assert summary.overall_status == CheckStatus.FAIL
        assert summary.failed_checks == 1


class TestVerifier:
    """Full runs over seeded stores."""

    def test_faithful_migration_passes(self, verifier, migrated_pancakes):
        result = verifier.verify()

        assert result.summary.overall_status == CheckStatus.PASS
        assert result.passed
        assert [c.status for c in result.record_counts] == [CountStatus.MATCH] * 2
        assert result.spot_checks[0].issues == ()
        assert all(c.order_preserved for c in result.ordering_checks)
        assert all(c.all_tags_preserved for c in result.tag_associations)
        assert all(c.ownership_mapped for c in result.user_ownership)
        assert result.html_artifacts == ()
        assert result.metadata["legacyDatabase"] == "sqlite://"

    def test_broken_recipe_fails(self, verifier, migrated_pancakes, legacy_db, destination_db, store):
        _execute(legacy_db, "INSERT INTO users VALUES (2, 'cook2@example.com')")
        _execute(destination_db, "INSERT INTO users VALUES (:id)", id=uuid_for("user", 2))
        add_legacy_recipe(legacy_db, 2, "Soup", 2, ["water"], ["Boil water"])
        # wrong author and HTML left in title and instructions
        add_destination_recipe(
            destination_db,
            uuid_for("recipe", 2),
            "Soup &amp; Bread",
            uuid_for("user", 1),
            ["water"],
            ["<p>Boil water</p>"],
        )
        store.mark_imported(EntityType.USER, 2, uuid_for("user", 2), "cook2@example.com")
        store.mark_imported(EntityType.RECIPE, 2, uuid_for("recipe", 2), "Soup")

        result = verifier.verify()

        assert result.summary.overall_status == CheckStatus.FAIL
        assert not result.passed
        broken = next(c for c in result.spot_checks if c.legacy_id == 2)
        assert not broken.checks.title_match
        assert not broken.checks.no_html_artifacts
        assert broken.checks.author_mapped
        assert [a.legacy_id for a in result.html_artifacts] == [2]
        assert result.html_artifacts[0].artifacts == (
            "HTML tags in title",
            "HTML tags in instruction 1",
        )
        ownership = next(c for c in result.user_ownership if c.legacy_id == 2)
        assert ownership.issue == (
            f"Author ID mismatch: expected {uuid_for('user', 2)}, got {uuid_for('user', 1)}"
        )

    def test_uuid_typed_columns_pass(self, legacy_db, destination_db, store, migrated_pancakes):
        uuid_db = UuidColumnDatabase(destination_db.engine)
        verifier = PostMigrationVerifier(
            legacy_db, uuid_db, store, VerificationConfig(random_seed=7)
        )

        result = verifier.verify()

        assert result.summary.overall_status == CheckStatus.PASS
        assert result.spot_checks[0].issues == ()
        assert result.user_ownership[0].issue is None
        assert result.user_ownership[0].new_author_id == uuid_for("user", 1)

    def test_author_without_user_mapping(self, verifier, legacy_db, destination_db, store):
        add_legacy_recipe(legacy_db, 3, "Stew", 9, ["beef"], ["Simmer"])
        add_destination_recipe(
            destination_db, uuid_for("recipe", 3), "Stew", uuid_for("user", 9), ["beef"], ["Simmer"]
        )
        store.mark_imported(EntityType.RECIPE, 3, uuid_for("recipe", 3), "Stew")

        checks = verifier.check_user_ownership()

        assert [c.issue for c in checks] == ["Legacy user 9 not found in user mapping"]
        assert not checks[0].ownership_mapped
        assert calculate_summary(user_ownership=checks).overall_status == CheckStatus.FAIL

    def test_missing_destination_recipe(self, verifier, store):
        store.mark_imported(EntityType.RECIPE, 5, uuid_for("recipe", 5), "Ghost")

        results = verifier.run_spot_checks()

        assert results[0].issues == ("Recipe not found in one or both databases",)
        assert results[0].status == CheckStatus.FAIL

    def test_unmigrated_mappings_are_not_sampled(self, verifier, store):
        store.mark_imported(EntityType.RECIPE, 1, uuid_for("recipe", 1), "Pancakes")
        store.add_mapping(
            EntityType.RECIPE, IdentifierMapping(2, uuid_for("recipe", 2), "Pending")
        )

        assert [m.legacy_id for m in verifier.sample(10)] == [1]
        assert verifier.sample(0) == []

    def test_field_population_counts_empty_arrays(self, verifier, destination_db):
        add_destination_recipe(destination_db, "a", "A", uuid_for("user", 1), ["x"], ["Mix it all"])
        add_destination_recipe(
            destination_db, "b", "B", uuid_for("user", 1), [], ["Mix it all"], image_url=None
        )

        checks = {c.field: c for c in verifier.check_field_population()}

        assert checks["ingredients"].populated_count == 1
        assert checks["ingredients"].empty_count == 1
        assert checks["ingredients"].status == CheckStatus.FAIL
        assert checks["image_url"].null_count == 1
        assert checks["image_url"].population_rate == 50.0
        assert checks["image_url"].status == CheckStatus.PASS
        assert checks["title"].status == CheckStatus.PASS

    def test_field_population_on_empty_store(self, verifier):
        checks = verifier.check_field_population()

        assert all(c.population_rate == 0.0 for c in checks)
        assert all(c.total_records == 0 for c in checks)

    def test_tag_difference_is_reported(self, verifier, migrated_pancakes, destination_db):
        _execute(
            destination_db,
            "UPDATE recipes SET tags = :tags WHERE id = :id",
            tags=json.dumps(["breakfast", "brunch"]),
            id=uuid_for("recipe", 1),
        )

        check = verifier.check_tag_associations()[0]

        assert check.missing_tags == ("sweet",)
        assert check.extra_tags == ("brunch",)
        assert not check.all_tags_preserved

    def test_instruction_count_mismatch_breaks_ordering(
        self, verifier, migrated_pancakes, destination_db
    ):
        _execute(
            destination_db,
            "UPDATE recipes SET instructions = :steps WHERE id = :id",
            steps=json.dumps([{"step": 1, "content": "Whisk the batter"}]),
            id=uuid_for("recipe", 1),
        )

        checks = {c.type.value: c for c in verifier.check_ordering()}

        assert checks["ingredients"].order_preserved
        assert checks["instructions"].issues[0] == "Count mismatch: 2 vs 1"


class TestVerificationReports:
    def test_files_written(self, verifier, migrated_pancakes, tmp_path):
        result = verifier.verify()
        generator = VerificationReportGenerator(tmp_path, timestamp="ts")

        paths = generator.generate(result)

        assert {"report", "summary", "markdown", "spot-check-details"} <= set(paths)
        assert "ownership-issues" not in paths
        assert paths["report"].name == "verification-report-ts.json"
        report = json.loads(paths["report"].read_text())
        assert report["results"]["summary"]["overallStatus"] == "pass"
        assert report["recommendations"]
        assert "PASS" in paths["summary"].read_text().upper()

    def test_reports_are_not_overwritten(self, verifier, migrated_pancakes, tmp_path):
        result = verifier.verify()
        generator = VerificationReportGenerator(tmp_path, timestamp="ts")

        first = generator.generate(result)["report"]
        second = generator.generate(result)["report"]

        assert first != second
        assert second.name == "verification-report-ts-1.json"
