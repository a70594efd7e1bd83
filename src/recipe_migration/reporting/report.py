"""Import report generation.

Every run writes a set of timestamp-named files next to the mapping store:
a machine-readable summary, success and error logs (the latter also as
Markdown), snapshots of both id mappings and a statistics file. Files are
additive; an existing report is never overwritten.
"""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from recipe_migration.migration.idempotency import (
    LABEL_FIELDS,
    IdempotencyStore,
    mappings_to_csv,
)
from recipe_migration.migration.models import BatchImportResult, EntityType, ImportResult
from recipe_migration.migration.progress import MigrationProgress, format_duration
from recipe_migration.utils.files import (
    atomic_write_json,
    atomic_write_text,
    file_timestamp,
    unique_path,
)
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ImportRunData:
    """Everything a report needs about one import run."""

    progress: MigrationProgress
    recipe_results: list[ImportResult] = field(default_factory=list)
    user_results: list[ImportResult] = field(default_factory=list)
    recipes_skipped: int = 0
    users_skipped: int = 0
    batches: list[BatchImportResult] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False


def errors_by_type(results: Sequence[ImportResult]) -> dict[str, int]:
    """Count failed results per error kind."""
    counts = Counter(r.error_type.value for r in results if not r.success and r.error_type)
    return dict(counts)


def result_stats(results: Sequence[ImportResult], skipped: int = 0) -> dict[str, Any]:
    """Per-entity counts. ``total`` includes records skipped as already migrated."""
    succeeded = sum(1 for r in results if r.success)
    failed = len(results) - succeeded
    attempted = succeeded + failed
    return {
        "total": attempted + skipped,
        "succeeded": succeeded,
        "failed": failed,
        "skipped": skipped,
        "successRate": round(succeeded / attempted * 100, 2) if attempted else 0.0,
        "errorsByType": errors_by_type(results),
    }


def _elapsed_seconds(progress: MigrationProgress) -> float:
    started = datetime.fromisoformat(progress.start_time)
    return max((datetime.now(UTC) - started).total_seconds(), 0.0)


class ImportReportGenerator:
    """Writes the import report files for one run.

    Usage:
        generator = ImportReportGenerator("migration-data/imported")
        paths = generator.generate_all(run_data, store)
        generator.print_summary(run_data)
    """

    def __init__(
        self,
        output_dir: str | Path = "migration-data/imported",
        timestamp: str | None = None,
        console: Console | None = None,
    ):
        """Initialize report generator.

        Args:
            output_dir: Directory receiving the report files
            timestamp: File name timestamp (defaults to now)
            console: Rich console used by ``print_summary``
        """
        self.output_dir = Path(output_dir)
        self.timestamp = timestamp or file_timestamp()
        self.console = console or Console()

    def _path(self, name: str, suffix: str) -> Path:
        return unique_path(self.output_dir / f"{name}-{self.timestamp}{suffix}")

    def _write_json(self, name: str, data: Any) -> Path:
        path = atomic_write_json(self._path(name, ".json"), data)
        logger.debug("report_file_written", path=str(path))
        return path

    # ------------------------------------------------------------ content

    def build_summary(self, data: ImportRunData) -> dict[str, Any]:
        recipes = result_stats(data.recipe_results, data.recipes_skipped)
        users = result_stats(data.user_results, data.users_skipped)
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "migrationId": data.progress.migration_id,
            "phase": data.progress.phase,
            "dryRun": data.dry_run,
            "durationSeconds": round(_elapsed_seconds(data.progress), 2),
            "config": data.settings,
            "recipes": recipes,
            "users": users,
            "overall": {
                "totalRecords": recipes["total"] + users["total"],
                "totalSucceeded": recipes["succeeded"] + users["succeeded"],
                "totalFailed": recipes["failed"] + users["failed"],
                "totalSkipped": recipes["skipped"] + users["skipped"],
            },
        }

    @staticmethod
    def build_success_log(data: ImportRunData) -> dict[str, Any]:
        recipes = [r for r in data.recipe_results if r.success]
        users = [r for r in data.user_results if r.success]

        def entry(result: ImportResult) -> dict[str, Any]:
            return {
                "legacyId": result.legacy_id,
                "newId": result.new_id,
                "retryCount": result.retry_count,
            }

        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "recipes": [entry(r) for r in recipes],
            "users": [entry(r) | {"existed": r.existed} for r in users],
            "summary": {
                "totalRecipes": len(recipes),
                "totalUsers": len(users),
                "recipesWithRetries": sum(1 for r in recipes if r.retry_count > 0),
                "usersWithRetries": sum(1 for r in users if r.retry_count > 0),
            },
        }

    @staticmethod
    def build_error_log(data: ImportRunData) -> dict[str, Any]:
        recipes = [r for r in data.recipe_results if not r.success]
        users = [r for r in data.user_results if not r.success]

        def entry(result: ImportResult) -> dict[str, Any]:
            return {
                "legacyId": result.legacy_id,
                "error": result.error,
                "errorType": result.error_type.value if result.error_type else None,
                "retryCount": result.retry_count,
            }

        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "recipes": [entry(r) for r in recipes],
            "users": [entry(r) for r in users],
            "summary": {
                "totalRecipes": len(recipes),
                "totalUsers": len(users),
                "errorsByType": errors_by_type(recipes + users),
            },
        }

    @staticmethod
    def build_error_markdown(data: ImportRunData) -> str:
        lines = [
            "# Import Error Report",
            "",
            f"**Migration ID:** `{data.progress.migration_id}`  ",
            f"**Generated:** {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            "",
        ]

        for heading, results in (
            ("Failed Recipes", data.recipe_results),
            ("Failed Users", data.user_results),
        ):
            failed = [r for r in results if not r.success]
            if not failed:
                continue
            lines.extend([f"## {heading}", "", f"Total: {len(failed)}", ""])
            for result in failed:
                error_type = result.error_type.value if result.error_type else "unknown"
                lines.extend(
                    [
                        f"- **Legacy ID:** {result.legacy_id}",
                        f"  - Error Type: {error_type}",
                        f"  - Error: {result.error}",
                        f"  - Retry Count: {result.retry_count}",
                        "",
                    ]
                )

        if len(lines) == 5:
            lines.extend(["No errors recorded.", ""])

        return "\n".join(lines)

    def build_statistics(self, data: ImportRunData) -> dict[str, Any]:
        elapsed = _elapsed_seconds(data.progress)
        attempted = len(data.recipe_results) + len(data.user_results)
        durations = [b.duration for b in data.batches]
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "durationSeconds": round(elapsed, 2),
            "recipes": result_stats(data.recipe_results, data.recipes_skipped),
            "users": result_stats(data.user_results, data.users_skipped),
            "performance": {
                "totalRecords": attempted,
                "recordsPerSecond": round(attempted / elapsed, 2) if elapsed > 0 else 0.0,
                "batches": len(durations),
                "averageBatchDuration": (
                    round(sum(durations) / len(durations), 3) if durations else 0.0
                ),
                "retriedRecords": sum(
                    1 for r in data.recipe_results + data.user_results if r.retry_count > 0
                ),
            },
        }

    # ------------------------------------------------------------ writers

    def write_mapping_snapshots(self, store: IdempotencyStore) -> dict[str, Path]:
        """Timestamped JSON and CSV copies of both mapping tables."""
        paths = {}
        for entity_type in EntityType:
            mappings = store.get_mappings(entity_type)
            label_field = LABEL_FIELDS[entity_type]
            name = f"{entity_type.value}-id-mapping"
            paths[f"{entity_type.value}_mapping_json"] = self._write_json(
                name, [m.to_dict(label_field) for m in mappings]
            )
            paths[f"{entity_type.value}_mapping_csv"] = atomic_write_text(
                self._path(name, ".csv"), mappings_to_csv(entity_type, mappings)
            )
        return paths

    def generate_all(
        self, data: ImportRunData, store: IdempotencyStore | None = None
    ) -> dict[str, Path]:
        """Write every report file.

        Args:
            data: Results of the run
            store: Mapping store to snapshot (omitted in dry-run mode)

        Returns:
            Mapping of report kind to written path
        """
        paths = {
            "summary": self._write_json("import-summary", self.build_summary(data)),
            "success": self._write_json("import-success", self.build_success_log(data)),
            "errors": self._write_json("import-errors", self.build_error_log(data)),
            "errors_markdown": atomic_write_text(
                self._path("import-errors", ".md"), self.build_error_markdown(data)
            ),
            "statistics": self._write_json("import-statistics", self.build_statistics(data)),
        }
        if store is not None:
            paths.update(self.write_mapping_snapshots(store))

        logger.info("import_reports_generated", output_dir=str(self.output_dir), files=len(paths))
        return paths

    def print_summary(self, data: ImportRunData) -> None:
        """Render the run summary as a rich table."""
        recipes = result_stats(data.recipe_results, data.recipes_skipped)
        users = result_stats(data.user_results, data.users_skipped)

        title = "Import Summary (dry run)" if data.dry_run else "Import Summary"
        table = Table(title=title)
        table.add_column("Entity")
        table.add_column("Total", justify="right")
        table.add_column("Succeeded", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Skipped", justify="right", style="yellow")
        table.add_column("Success Rate", justify="right")

        for label, stats in (("Recipes", recipes), ("Users", users)):
            table.add_row(
                label,
                f"{stats['total']:,}",
                f"{stats['succeeded']:,}",
                f"{stats['failed']:,}",
                f"{stats['skipped']:,}",
                f"{stats['successRate']:.1f}%",
            )

        self.console.print(table)
        self.console.print(f"Duration: {format_duration(_elapsed_seconds(data.progress))}")

        errors = errors_by_type(data.recipe_results + data.user_results)
        if errors:
            breakdown = ", ".join(f"{kind}: {count}" for kind, count in sorted(errors.items()))
            self.console.print(f"[red]Errors by type:[/red] {breakdown}")
