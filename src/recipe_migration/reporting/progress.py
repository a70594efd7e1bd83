"""Console progress bar for the import phase.

Driven from the batch importer's per-batch callback; it only displays, the
durable counters live in ``migration.progress.ProgressTracker``.
"""

from tqdm import tqdm

from recipe_migration.migration.models import BatchImportResult
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


class ImportProgressBar:
    """tqdm bar counting imported recipes.

    Usage:
        with ImportProgressBar(total=len(recipes), initial=already_done) as bar:
            await importer.import_recipes(recipes, on_batch=bar.on_batch)
    """

    def __init__(self, total: int, initial: int = 0, enable: bool = True, desc: str = "Recipes"):
        """Initialize progress bar.

        Args:
            total: Number of records in the phase (skipped ones included)
            initial: Records already accounted for (resumed or skipped)
            enable: Whether to draw the bar (False for CI/automation)
            desc: Bar label
        """
        self.enable = enable
        self.succeeded = 0
        self.failed = 0
        self.bar: tqdm | None = None

        if self.enable:
            self.bar = tqdm(
                total=total,
                initial=initial,
                desc=desc,
                unit="recipe",
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]",
            )

    def on_batch(self, batch: BatchImportResult) -> None:
        """Advance by one completed batch."""
        self.succeeded += batch.success_count
        self.failed += batch.failure_count

        if self.bar is not None:
            self.bar.update(len(batch.results))
            self.bar.set_postfix(
                batch=f"{batch.batch_number}/{batch.total_batches}",
                ok=self.succeeded,
                failed=self.failed,
            )

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None
        logger.debug("progress_bar_closed", succeeded=self.succeeded, failed=self.failed)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
