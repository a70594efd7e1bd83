"""Tests for the dry-run validator."""

import json

from recipe_migration.config import ImporterConfig
from recipe_migration.migration.importer import BatchImporter
from recipe_migration.migration.models import ErrorType
from recipe_migration.validation.dry_run import DryRunValidator

from conftest import make_recipe, make_user, uuid_for


class TestRecipeValidation:
    """Recipe errors and warnings."""

    def test_valid_recipe(self):
        validator = DryRunValidator()

        result = validator.validate_recipe(make_recipe(1))

        assert result.success
        assert result.new_id == uuid_for("recipe", 1)
        assert validator.get_summary()["recipes"] == {
            "total": 1,
            "valid": 1,
            "invalid": 0,
            "withWarnings": 0,
        }

    def test_format_errors(self):
        validator = DryRunValidator()
        recipe = make_recipe(1, id="not-a-uuid", title="x" * 501, servings=-2, authorId="nope")

        errors = validator.recipe_errors(recipe)

        assert "Title exceeds 500 characters" in errors
        assert "Invalid recipe ID format: not-a-uuid" in errors
        assert "Invalid author ID format: nope" in errors
        assert "Invalid servings: -2" in errors

    def test_invalid_result_shape(self):
        validator = DryRunValidator()

        result = validator.validate_recipe(make_recipe(1, ingredients=[]))

        assert not result.success
        assert result.error_type == ErrorType.VALIDATION
        assert "At least one ingredient is required" in result.error

    def test_warnings_do_not_block(self):
        validator = DryRunValidator()
        recipe = make_recipe(
            1,
            description=None,
            tags=[],
            instructions=[{"id": uuid_for("instruction", 1), "step": 1, "content": "Stir."}],
        )

        warnings = validator.recipe_warnings(recipe)
        result = validator.validate_recipe(recipe)

        assert "Missing description" in warnings
        assert "No tags" in warnings
        assert "Some instructions are very short" in warnings
        assert result.success


class TestUserValidation:
    """User errors and warnings."""

    def test_invalid_email(self):
        validator = DryRunValidator()

        result = validator.validate_user(make_user(1, email="not-an-email"))

        assert not result.success
        assert "Invalid email format" in result.error

    def test_name_derived_from_email_warns(self):
        validator = DryRunValidator()

        warnings = validator.user_warnings(make_user(1, name="cook1"))

        assert any("derived from email" in w for w in warnings)


class TestParity:
    """Validator and dry-run importer agree on structural acceptance."""

    async def test_validator_accepts_only_what_importer_accepts(self):
        recipes = [
            make_recipe(1),
            make_recipe(2, title=""),
            make_recipe(3, instructions=[]),
            make_recipe(4, id="legacy-style-id"),
            make_recipe(5, authorId=None),
        ]
        validator = DryRunValidator()
        importer = BatchImporter(None, ImporterConfig(dry_run=True, delay_between_batches_ms=0))

        validated = validator.validate_recipes(recipes)
        imported = [r for b in await importer.import_recipes(recipes) for r in b.results]

        for checked, structural in zip(validated, imported, strict=True):
            assert checked.legacy_id == structural.legacy_id
            if checked.success:
                assert structural.success
        assert [r.success for r in validated] == [True, False, False, False, False]
        assert [r.success for r in imported] == [True, False, False, True, False]


class TestReport:
    """The would-import report file."""

    def test_report_contents(self, tmp_path):
        validator = DryRunValidator()
        validator.validate_recipes([make_recipe(1), make_recipe(2, title="")])
        validator.validate_users([make_user(1)])

        path = validator.generate_report(tmp_path / "dry-run-report.json")

        report = json.loads(path.read_text())
        assert report["summary"]["recipes"]["invalid"] == 1
        assert report["recipes"][0]["wouldImport"] is True
        assert report["recipes"][1]["title"] == ""
        assert report["users"][0]["email"] == "cook1@example.com"

    def test_existing_report_is_not_overwritten(self, tmp_path):
        target = tmp_path / "dry-run-report.json"
        target.write_text("{}")

        path = DryRunValidator().generate_report(target)

        assert path != target
        assert target.read_text() == "{}"

    def test_reset(self):
        validator = DryRunValidator()
        validator.validate_recipe(make_recipe(1))
        validator.reset()

        assert validator.get_summary()["recipes"]["total"] == 0
