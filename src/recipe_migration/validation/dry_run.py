"""Dry-run validation for import-ready records.

The validator runs the same required-field checks as live payload assembly
(``check_required_recipe_fields`` / ``check_required_user_fields``) plus
stricter format rules, without touching the network. Results use the same
``ImportResult`` shape as a live run so reports need no special casing, and
a standalone "would import" report can be written for review.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from recipe_migration.migration.importer import (
    check_required_recipe_fields,
    check_required_user_fields,
)
from recipe_migration.migration.models import (
    ErrorType,
    ImportResult,
    TransformedRecipe,
    TransformedUser,
    is_valid_uuid,
)
from recipe_migration.utils.files import atomic_write_json, unique_path
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 500
MIN_INSTRUCTION_LENGTH = 10
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class RecordValidation:
    """Validation outcome for one record."""

    legacy_id: int
    label: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_result(self, new_id: str) -> ImportResult:
        """Express the outcome as the ImportResult a live run would produce."""
        if self.errors:
            return ImportResult(
                success=False,
                legacy_id=self.legacy_id,
                error="; ".join(self.errors),
                error_type=ErrorType.VALIDATION,
            )
        return ImportResult(success=True, legacy_id=self.legacy_id, new_id=new_id)

    def to_dict(self, label_field: str) -> dict[str, Any]:
        return {
            "legacyId": self.legacy_id,
            label_field: self.label,
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "wouldImport": self.valid,
        }


def _is_non_negative_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    return isinstance(value, float) and value.is_integer() and value >= 0


class DryRunValidator:
    """Validates recipes and users offline and accumulates a report."""

    def __init__(self):
        self.recipe_validations: list[RecordValidation] = []
        self.user_validations: list[RecordValidation] = []

    # ------------------------------------------------------------ recipes

    def recipe_errors(self, recipe: TransformedRecipe) -> list[str]:
        """Blocking problems for ``recipe``."""
        errors = check_required_recipe_fields(recipe)

        if recipe.title and len(recipe.title) > MAX_TITLE_LENGTH:
            errors.append(f"Title exceeds {MAX_TITLE_LENGTH} characters")
        if not is_valid_uuid(recipe.id):
            errors.append(f"Invalid recipe ID format: {recipe.id}")
        if recipe.author_id and not is_valid_uuid(recipe.author_id):
            errors.append(f"Invalid author ID format: {recipe.author_id}")

        for field_name in ("servings", "prep_time", "cook_time"):
            value = getattr(recipe, field_name)
            if value is not None and not _is_non_negative_int(value):
                errors.append(f"Invalid {field_name}: {value}")

        for index, ingredient in enumerate(recipe.ingredients, start=1):
            if not ingredient.name or not ingredient.name.strip():
                errors.append(f"Ingredient {index} is missing a name")
            if not is_valid_uuid(ingredient.id):
                errors.append(f"Ingredient {index} has an invalid ID")

        for index, instruction in enumerate(recipe.instructions, start=1):
            if not instruction.content or not instruction.content.strip():
                errors.append(f"Instruction {index} is missing content")
            if not is_valid_uuid(instruction.id):
                errors.append(f"Instruction {index} has an invalid ID")

        return errors

    def recipe_warnings(self, recipe: TransformedRecipe) -> list[str]:
        """Non-blocking quality notes for ``recipe``."""
        warnings = []
        if not recipe.description:
            warnings.append("Missing description")
        if not recipe.image_url:
            warnings.append("Missing image URL")
        if not recipe.source_url:
            warnings.append("Missing source URL")
        if not recipe.tags:
            warnings.append("No tags")
        if any(not ingredient.parse_success for ingredient in recipe.ingredients):
            warnings.append("Some ingredients could not be parsed")
        if any(
            len(instruction.content.strip()) < MIN_INSTRUCTION_LENGTH
            for instruction in recipe.instructions
            if instruction.content
        ):
            warnings.append("Some instructions are very short")
        return warnings

    def validate_recipe(self, recipe: TransformedRecipe) -> ImportResult:
        validation = RecordValidation(
            legacy_id=recipe.legacy_id,
            label=recipe.title,
            errors=self.recipe_errors(recipe),
            warnings=self.recipe_warnings(recipe),
        )
        self.recipe_validations.append(validation)
        if not validation.valid:
            logger.info(
                "dry_run_recipe_invalid", legacy_id=recipe.legacy_id, errors=validation.errors
            )
        return validation.to_result(recipe.id)

    def validate_recipes(self, recipes: list[TransformedRecipe]) -> list[ImportResult]:
        return [self.validate_recipe(recipe) for recipe in recipes]

    # ------------------------------------------------------------ users

    def user_errors(self, user: TransformedUser) -> list[str]:
        errors = check_required_user_fields(user)
        if user.email and not EMAIL_PATTERN.match(user.email):
            errors.append(f"Invalid email format: {user.email}")
        if not is_valid_uuid(user.id):
            errors.append(f"Invalid user ID format: {user.id}")
        return errors

    def user_warnings(self, user: TransformedUser) -> list[str]:
        warnings = []
        if not user.image:
            warnings.append("No profile image")
        if user.email and user.name == user.email.split("@")[0]:
            warnings.append("Name is derived from email (no username in legacy data)")
        return warnings

    def validate_user(self, user: TransformedUser) -> ImportResult:
        validation = RecordValidation(
            legacy_id=user.legacy_id,
            label=user.email,
            errors=self.user_errors(user),
            warnings=self.user_warnings(user),
        )
        self.user_validations.append(validation)
        if not validation.valid:
            logger.info("dry_run_user_invalid", legacy_id=user.legacy_id, errors=validation.errors)
        return validation.to_result(user.id)

    def validate_users(self, users: list[TransformedUser]) -> list[ImportResult]:
        return [self.validate_user(user) for user in users]

    # ------------------------------------------------------------ reporting

    @staticmethod
    def _summarize(validations: list[RecordValidation]) -> dict[str, int]:
        return {
            "total": len(validations),
            "valid": sum(1 for v in validations if v.valid),
            "invalid": sum(1 for v in validations if not v.valid),
            "withWarnings": sum(1 for v in validations if v.warnings),
        }

    def get_summary(self) -> dict[str, dict[str, int]]:
        return {
            "recipes": self._summarize(self.recipe_validations),
            "users": self._summarize(self.user_validations),
        }

    def generate_report(self, output_path: str | Path) -> Path:
        """Write the "would import" report as JSON.

        An existing file at ``output_path`` is never overwritten; a numbered
        sibling is used instead.

        Returns:
            Path of the written report
        """
        report = {
            "timestamp": datetime.now(UTC).isoformat(),
            "summary": self.get_summary(),
            "recipes": [v.to_dict("title") for v in self.recipe_validations],
            "users": [v.to_dict("email") for v in self.user_validations],
        }

        path = atomic_write_json(unique_path(output_path), report)
        logger.info("dry_run_report_created", path=str(path), **self.get_summary()["recipes"])
        return path

    def reset(self) -> None:
        self.recipe_validations.clear()
        self.user_validations.clear()
