"""Offline validation of transformed records before import."""

from recipe_migration.validation.dry_run import DryRunValidator, RecordValidation

__all__ = [
    "DryRunValidator",
    "RecordValidation",
]
