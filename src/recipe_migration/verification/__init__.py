"""
Post-migration verification.

Read-only comparison of the legacy and destination stores, driven by the
persisted id mappings, with JSON, text and Markdown reports.
"""

from recipe_migration.verification.database import (
    DestinationDatabase,
    LegacyDatabase,
    create_readonly_engine,
)
from recipe_migration.verification.models import (
    CheckStatus,
    CountStatus,
    FieldPopulationCheck,
    HtmlArtifactCheck,
    OrderingCheck,
    OrderingType,
    RecordCountComparison,
    Severity,
    SpotCheckResult,
    SpotChecks,
    TagAssociationCheck,
    UserOwnershipCheck,
    VerificationResult,
    VerificationSummary,
)
from recipe_migration.verification.report import VerificationReportGenerator
from recipe_migration.verification.verifier import PostMigrationVerifier, calculate_summary

__all__ = [
    # Database access
    "create_readonly_engine",
    "LegacyDatabase",
    "DestinationDatabase",
    # Results
    "CheckStatus",
    "CountStatus",
    "Severity",
    "OrderingType",
    "RecordCountComparison",
    "SpotChecks",
    "SpotCheckResult",
    "FieldPopulationCheck",
    "HtmlArtifactCheck",
    "OrderingCheck",
    "TagAssociationCheck",
    "UserOwnershipCheck",
    "VerificationSummary",
    "VerificationResult",
    # Verification
    "PostMigrationVerifier",
    "calculate_summary",
    "VerificationReportGenerator",
]
