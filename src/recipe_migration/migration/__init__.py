"""
Migration module for Recipe Bridge.

This module provides the import engine: record models, the idempotency store,
progress checkpoints, and the recipe and user importers. The run-level
orchestrator lives in ``recipe_migration.migration.coordinator``.
"""

# Records and results
from recipe_migration.migration.models import (
    BatchImportResult,
    EntityType,
    ErrorType,
    IdentifierMapping,
    ImportResult,
    Ingredient,
    Instruction,
    TransformedRecipe,
    TransformedUser,
)

# Idempotency
from recipe_migration.migration.idempotency import FilterResult, IdempotencyStore

# Progress and checkpoints
from recipe_migration.migration.progress import (
    MigrationPhase,
    MigrationProgress,
    ProgressTracker,
    TrackerState,
    create_or_resume_tracker,
)

# Importers
from recipe_migration.migration.importer import BatchImporter, create_batches, total_batches
from recipe_migration.migration.user_importer import (
    UserImporter,
    UserImportStats,
    UserImportSummary,
)

__all__ = [
    # Models
    "EntityType",
    "ErrorType",
    "Ingredient",
    "Instruction",
    "TransformedUser",
    "TransformedRecipe",
    "ImportResult",
    "BatchImportResult",
    "IdentifierMapping",
    # Idempotency
    "IdempotencyStore",
    "FilterResult",
    # Progress
    "MigrationPhase",
    "MigrationProgress",
    "ProgressTracker",
    "TrackerState",
    "create_or_resume_tracker",
    # Importers
    "BatchImporter",
    "create_batches",
    "total_batches",
    "UserImporter",
    "UserImportStats",
    "UserImportSummary",
]
