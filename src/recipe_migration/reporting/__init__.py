"""Import reports and console progress display."""

from recipe_migration.reporting.progress import ImportProgressBar
from recipe_migration.reporting.report import (
    ImportReportGenerator,
    ImportRunData,
    errors_by_type,
    result_stats,
)

__all__ = [
    "ImportProgressBar",
    "ImportReportGenerator",
    "ImportRunData",
    "errors_by_type",
    "result_stats",
]
