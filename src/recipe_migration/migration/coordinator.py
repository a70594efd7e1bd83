"""Import orchestrator: wires the engine components into one import run.

Users are imported first because recipes reference their author by
destination user id. Each recipe batch is committed to the idempotency store
and the checkpoint as soon as it completes, so an interrupted run resumes
where it stopped and never re-submits migrated records.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

import pydantic
from rich.console import Console

from recipe_migration.client.destination_client import DestinationClient
from recipe_migration.client.exceptions import DataLoadError, MigrationCancelledError
from recipe_migration.config import MigrationConfig
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.migration.importer import BatchImporter, SleepFunc, total_batches
from recipe_migration.migration.models import (
    BatchImportResult,
    EntityType,
    ImportResult,
    TransformedRecipe,
    TransformedUser,
)
from recipe_migration.migration.progress import (
    MigrationPhase,
    MigrationProgress,
    ProgressTracker,
    create_or_resume_tracker,
)
from recipe_migration.migration.user_importer import UserImporter, UserImportSummary
from recipe_migration.reporting.progress import ImportProgressBar
from recipe_migration.reporting.report import ImportReportGenerator, ImportRunData
from recipe_migration.utils.logging import get_logger, log_error, log_migration_progress
from recipe_migration.validation.dry_run import DryRunValidator

logger = get_logger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)

RECIPE_FILES = ("recipes-pass.json", "recipes-warn.json")
USERS_FILE = "users-normalized.json"
RUN_DIR_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")


# ---------------------------------------------------------------- data loading


def load_records(path: Path, model: type[M]) -> list[M]:
    """Parse a JSON array of records; a missing file yields an empty list.

    Raises:
        DataLoadError: If the file is unreadable, not an array, or holds an
            invalid record
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("data_file_missing", path=str(path))
        return []
    except (OSError, ValueError) as e:
        raise DataLoadError(f"Failed to read {path}: {e}") from e

    if not isinstance(raw, list):
        raise DataLoadError(f"{path} must contain a JSON array")

    try:
        return [model.model_validate(item) for item in raw]
    except pydantic.ValidationError as e:
        raise DataLoadError(f"Invalid record in {path}: {e}") from e


def load_validated_recipes(validated_dir: str | Path) -> list[TransformedRecipe]:
    """Recipes that passed validation, with or without warnings.

    Raises:
        DataLoadError: If no recipes are found
    """
    validated_dir = Path(validated_dir)
    recipes: list[TransformedRecipe] = []
    for name in RECIPE_FILES:
        recipes.extend(load_records(validated_dir / name, TransformedRecipe))

    if not recipes:
        raise DataLoadError(f"No valid recipes found in {validated_dir}. Check validation output.")

    logger.info("recipes_loaded", path=str(validated_dir), count=len(recipes))
    return recipes


def load_transformed_users(transformed_dir: str | Path) -> list[TransformedUser]:
    users = load_records(Path(transformed_dir) / USERS_FILE, TransformedUser)
    logger.info("users_loaded", path=str(transformed_dir), count=len(users))
    return users


def find_latest_run_dir(base_dir: str | Path) -> Path:
    """Most recent ``YYYY-MM-DD...`` directory under ``base_dir``.

    Raises:
        DataLoadError: If there is none
    """
    base_dir = Path(base_dir)
    candidates = (
        sorted(
            (p for p in base_dir.iterdir() if p.is_dir() and RUN_DIR_PATTERN.match(p.name)),
            key=lambda p: p.name,
            reverse=True,
        )
        if base_dir.is_dir()
        else []
    )
    if not candidates:
        raise DataLoadError(f"No validated data found in {base_dir}. Run validation first.")
    return candidates[0]


def resolve_data_dirs(
    config: MigrationConfig,
    validated_dir: str | Path | None = None,
    transformed_dir: str | Path | None = None,
) -> tuple[Path, Path]:
    """Work out where validated recipes and transformed users live.

    Users sit in the transform stage's output for the same run, so when no
    directory is given the run directory name is reused under ``transformed``.
    """
    paths = config.paths
    validated = validated_dir or paths.validated_dir
    validated = (
        Path(validated)
        if validated
        else find_latest_run_dir(Path(paths.data_dir) / "validated")
    )

    transformed = transformed_dir or paths.transformed_dir
    transformed = (
        Path(transformed) if transformed else Path(paths.data_dir) / "transformed" / validated.name
    )
    return validated, transformed


def rewrite_author_ids(
    recipes: list[TransformedRecipe], id_map: dict[str, str]
) -> list[TransformedRecipe]:
    """Point each recipe at the destination id of its author.

    Recipes whose author has no mapping are kept unchanged (and logged).
    """
    rewritten = []
    unmapped: set[str] = set()
    for recipe in recipes:
        new_author = id_map.get(recipe.author_id) if recipe.author_id else None
        if new_author is None:
            if recipe.author_id:
                unmapped.add(recipe.author_id)
            rewritten.append(recipe)
        elif new_author != recipe.author_id:
            rewritten.append(recipe.model_copy(update={"author_id": new_author}))
        else:
            rewritten.append(recipe)

    if unmapped:
        logger.warning(
            "author_mapping_missing",
            authors=len(unmapped),
            recipes=sum(1 for r in recipes if r.author_id in unmapped),
        )
    return rewritten


def default_migration_id() -> str:
    return datetime.now(UTC).date().isoformat()


def user_progress_key(legacy_id: int) -> str:
    """Tracker key for a user (recipes use their bare legacy id)."""
    return f"user-{legacy_id}"


# ---------------------------------------------------------------- orchestrator


@dataclass
class ImportRunSummary:
    """Outcome of one ``ImportOrchestrator.run``."""

    migration_id: str
    dry_run: bool
    resumed: bool
    progress: MigrationProgress
    recipe_results: list[ImportResult] = field(default_factory=list)
    recipe_batches: list[BatchImportResult] = field(default_factory=list)
    recipes_skipped: int = 0
    user_summary: UserImportSummary | None = None
    stopped_on_error: bool = False
    checkpoint_deleted: bool = False
    report_paths: dict[str, Path] = field(default_factory=dict)
    dry_run_report: Path | None = None

    @property
    def recipes_failed(self) -> int:
        return sum(1 for r in self.recipe_results if not r.success)

    @property
    def users_failed(self) -> int:
        return self.user_summary.stats.failed if self.user_summary else 0

    @property
    def ok(self) -> bool:
        return self.recipes_failed == 0 and self.users_failed == 0 and not self.stopped_on_error


class ImportOrchestrator:
    """Runs the import phase end to end.

    Usage:
        orchestrator = ImportOrchestrator(config, cancel_event=stop)
        summary = await orchestrator.run()
    """

    def __init__(
        self,
        config: MigrationConfig,
        client: DestinationClient | None = None,
        cancel_event: asyncio.Event | None = None,
        sleep: SleepFunc | None = None,
        console: Console | None = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Full migration configuration
            client: Destination client (created from ``config.destination`` when
                omitted and not in dry-run mode)
            cancel_event: Set by the operator to stop between records
            sleep: Awaitable sleep taking seconds (injectable for tests)
            console: Rich console for the printed summary
        """
        self.config = config
        self.client = client
        self.cancel_event = cancel_event
        self._sleep = sleep
        self.console = console or Console()
        self.migration_id = config.progress.migration_id or default_migration_id()

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def run(
        self,
        validated_dir: str | Path | None = None,
        transformed_dir: str | Path | None = None,
    ) -> ImportRunSummary:
        """Import (or dry-run) every validated recipe and transformed user.

        Raises:
            DataLoadError: If the input data cannot be loaded
            MigrationCancelledError: If the cancel event was set mid-run
            StateError: If mappings or checkpoints cannot be persisted
        """
        validated, transformed = resolve_data_dirs(self.config, validated_dir, transformed_dir)
        recipes = load_validated_recipes(validated)
        users = load_transformed_users(transformed)

        store = IdempotencyStore(self.config.paths.imported_dir)
        store.load_mappings()

        tracker, resumed = create_or_resume_tracker(
            self.migration_id,
            MigrationPhase.IMPORT,
            self.config.paths.progress_dir,
            auto_save_interval_ms=self.config.progress.auto_save_interval_ms,
        )
        if not resumed:
            tracker.initialize(len(recipes) + len(users))

        logger.info(
            "import_run_started",
            migration_id=self.migration_id,
            recipes=len(recipes),
            users=len(users),
            resumed=resumed,
            dry_run=self.config.importer.dry_run,
        )

        if self.config.importer.dry_run:
            return await self._dry_run(recipes, users, store, tracker, resumed)

        if self.client is not None:
            return await self._import(recipes, users, store, tracker, resumed, self.client)

        async with DestinationClient(self.config.destination, self.config.logging) as client:
            return await self._import(recipes, users, store, tracker, resumed, client)

    # ------------------------------------------------------------ dry run

    async def _dry_run(
        self,
        recipes: list[TransformedRecipe],
        users: list[TransformedUser],
        store: IdempotencyStore,
        tracker: ProgressTracker,
        resumed: bool,
    ) -> ImportRunSummary:
        """Validate everything and write reports; nothing is persisted to the stores."""
        validator = DryRunValidator()
        user_results = validator.validate_users(users)
        recipe_results = validator.validate_recipes(recipes)

        report_path = validator.generate_report(
            Path(self.config.paths.imported_dir)
            / f"dry-run-report-{int(datetime.now(UTC).timestamp() * 1000)}.json"
        )

        importer = BatchImporter(None, self.config.importer, cancel_event=self.cancel_event)
        batches = await importer.import_recipes(recipes)
        structural = {r.legacy_id: r.success for b in batches for r in b.results}
        mismatched = [
            r.legacy_id for r in recipe_results if r.success and not structural.get(r.legacy_id)
        ]
        if mismatched:
            logger.error("dry_run_parity_mismatch", legacy_ids=mismatched[:20])

        data = ImportRunData(
            progress=tracker.progress,
            recipe_results=recipe_results,
            user_results=user_results,
            batches=batches,
            settings=self._report_settings(),
            dry_run=True,
        )
        generator = ImportReportGenerator(self.config.paths.imported_dir, console=self.console)
        report_paths = generator.generate_all(data)
        generator.print_summary(data)

        logger.info(
            "dry_run_completed", report=str(report_path), **validator.get_summary()["recipes"]
        )
        return ImportRunSummary(
            migration_id=self.migration_id,
            dry_run=True,
            resumed=resumed,
            progress=tracker.progress,
            recipe_results=recipe_results,
            recipe_batches=batches,
            report_paths=report_paths,
            dry_run_report=report_path,
        )

    # ------------------------------------------------------------ live import

    def _abort_cancelled(self, store: IdempotencyStore, tracker: ProgressTracker) -> None:
        store.save_mappings()
        tracker.save_checkpoint()
        progress = tracker.progress
        logger.warning(
            "import_cancelled",
            migration_id=self.migration_id,
            processed=progress.processed_records,
            total=progress.total_records,
        )
        raise MigrationCancelledError(
            f"Import cancelled after {progress.processed_records}/{progress.total_records} "
            f"records; re-run with migration id {self.migration_id} to resume"
        )

    async def _import_users(
        self,
        users: list[TransformedUser],
        store: IdempotencyStore,
        tracker: ProgressTracker,
        client: DestinationClient,
    ) -> UserImportSummary:
        newly_skipped = sum(
            1
            for user in users
            if store.is_imported(EntityType.USER, user.legacy_id)
            and not tracker.is_processed(user_progress_key(user.legacy_id))
        )

        importer = UserImporter(
            client, store, self.config.importer, cancel_event=self.cancel_event, sleep=self._sleep
        )
        summary = await importer.import_users(users)

        for result in summary.attempted_results:
            tracker.record_processed(user_progress_key(result.legacy_id), result.success)
        tracker.record_skipped(newly_skipped)
        tracker.save_checkpoint()
        return summary

    async def _import(
        self,
        recipes: list[TransformedRecipe],
        users: list[TransformedUser],
        store: IdempotencyStore,
        tracker: ProgressTracker,
        resumed: bool,
        client: DestinationClient,
    ) -> ImportRunSummary:
        try:
            user_summary = await self._import_users(users, store, tracker, client)
            if user_summary.cancelled or self._cancelled():
                self._abort_cancelled(store, tracker)

            recipes = rewrite_author_ids(recipes, user_summary.id_map(users))

            partition = store.filter_unimported(EntityType.RECIPE, recipes)
            tracker.record_skipped(
                sum(1 for r in partition.skipped if not tracker.is_processed(r.legacy_id))
            )
            tracker.update_batch(
                0, total_batches(len(partition.unimported), self.config.importer.batch_size)
            )

            pending = {r.legacy_id: r for r in partition.unimported}
            importer = BatchImporter(
                client, self.config.importer, cancel_event=self.cancel_event, sleep=self._sleep
            )
            progress_bar = ImportProgressBar(
                total=len(recipes),
                initial=len(partition.skipped),
                enable=not self.config.logging.disable_progress,
            )

            def commit_batch(batch: BatchImportResult) -> None:
                tracker.update_batch(batch.batch_number, batch.total_batches)
                for result in batch.results:
                    tracker.record_processed(result.legacy_id, result.success)
                    if result.success and result.new_id:
                        store.mark_record_imported(pending[result.legacy_id], result.new_id)
                store.save_mappings()
                tracker.save_checkpoint()
                progress_bar.on_batch(batch)

                progress = tracker.progress
                log_migration_progress(
                    logger,
                    phase=MigrationPhase.IMPORT.value,
                    entity_type=EntityType.RECIPE.value,
                    completed=progress.processed_records + progress.skipped_records,
                    total=progress.total_records,
                    batch=batch.batch_number,
                    total_batches=batch.total_batches,
                )

            with progress_bar:
                batches = await importer.import_recipes(partition.unimported, on_batch=commit_batch)

            store.save_mappings()
            if importer.cancelled:
                self._abort_cancelled(store, tracker)
            tracker.save_checkpoint()

        except MigrationCancelledError:
            raise
        except Exception as e:
            log_error(logger, e, context="import_run", migration_id=self.migration_id)
            raise

        recipe_results = [r for b in batches for r in b.results]
        data = ImportRunData(
            progress=tracker.progress,
            recipe_results=recipe_results,
            user_results=user_summary.attempted_results,
            recipes_skipped=len(partition.skipped),
            users_skipped=user_summary.stats.skipped,
            batches=batches,
            settings=self._report_settings(),
        )
        generator = ImportReportGenerator(self.config.paths.imported_dir, console=self.console)
        report_paths = generator.generate_all(data, store)
        generator.print_summary(data)

        checkpoint_deleted = False
        if tracker.is_complete() and not importer.stopped_on_error:
            checkpoint_deleted = tracker.delete_checkpoint()

        summary = ImportRunSummary(
            migration_id=self.migration_id,
            dry_run=False,
            resumed=resumed,
            progress=tracker.progress,
            recipe_results=recipe_results,
            recipe_batches=batches,
            recipes_skipped=len(partition.skipped),
            user_summary=user_summary,
            stopped_on_error=importer.stopped_on_error,
            checkpoint_deleted=checkpoint_deleted,
            report_paths=report_paths,
        )
        logger.info(
            "import_run_finished",
            migration_id=self.migration_id,
            recipes_imported=len(recipe_results) - summary.recipes_failed,
            recipes_failed=summary.recipes_failed,
            recipes_skipped=summary.recipes_skipped,
            users_created=user_summary.stats.created,
            users_existing=user_summary.stats.existing,
            users_failed=user_summary.stats.failed,
            stopped_on_error=summary.stopped_on_error,
        )
        return summary

    def _report_settings(self) -> dict[str, Any]:
        """Run settings for the summary report (no credentials)."""
        importer = self.config.importer
        return {
            "dryRun": importer.dry_run,
            "batchSize": importer.batch_size,
            "stopOnError": importer.stop_on_error,
            "delayBetweenBatchesMs": importer.delay_between_batches_ms,
            "maxRetries": importer.max_retries,
            "retryBackoffMs": importer.retry_backoff_ms,
            "apiBaseUrl": self.config.destination.url,
        }
