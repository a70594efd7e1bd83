"""
Progress tracking and checkpoint/resume for migration phases.

A ``ProgressTracker`` owns the counters for one ``(migration_id, phase)``
pair together with the sets of processed and failed legacy ids. It is
persisted as a single JSON checkpoint file, rewritten atomically, so an
interrupted run can resume without reprocessing completed records.

Lifecycle per phase:

    initialized -> running -> (checkpointed)* -> complete

and, after a restart, ``checkpointed -> running`` via ``load_checkpoint``.
"""

import hashlib
import json
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from recipe_migration.client.exceptions import CheckpointError
from recipe_migration.utils.files import atomic_write_json
from recipe_migration.utils.logging import get_logger, log_checkpoint

logger = get_logger(__name__)

DEFAULT_PROGRESS_DIR = "migration-data/progress"
DEFAULT_AUTO_SAVE_INTERVAL_MS = 30000

LegacyKey = int | str


class MigrationPhase(str, Enum):
    """Pipeline phases that keep their own checkpoint."""

    EXTRACT = "extract"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    IMPORT = "import"
    VERIFY = "verify"


class TrackerState(str, Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    CHECKPOINTED = "checkpointed"
    COMPLETE = "complete"


# camelCase keys used in the checkpoint file
_PROGRESS_KEYS = {
    "migration_id": "migrationId",
    "phase": "phase",
    "start_time": "startTime",
    "last_checkpoint": "lastCheckpoint",
    "total_records": "totalRecords",
    "processed_records": "processedRecords",
    "succeeded_records": "succeededRecords",
    "failed_records": "failedRecords",
    "warned_records": "warnedRecords",
    "skipped_records": "skippedRecords",
    "current_batch": "currentBatch",
    "total_batches": "totalBatches",
    "metadata": "metadata",
}


@dataclass
class MigrationProgress:
    """Counters for one phase. ``processed_records == succeeded + failed`` always holds."""

    migration_id: str
    phase: str
    start_time: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    last_checkpoint: str | None = None
    total_records: int = 0
    processed_records: int = 0
    succeeded_records: int = 0
    failed_records: int = 0
    warned_records: int = 0
    skipped_records: int = 0
    current_batch: int = 0
    total_batches: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {_PROGRESS_KEYS[key]: value for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationProgress":
        reverse = {camel: snake for snake, camel in _PROGRESS_KEYS.items()}
        kwargs = {reverse[key]: value for key, value in data.items() if key in reverse}
        return cls(**kwargs)


def checkpoint_path(
    migration_id: str, phase: MigrationPhase | str, progress_dir: str | Path = DEFAULT_PROGRESS_DIR
) -> Path:
    """``{progress_dir}/{migration_id}-{phase}.json``"""
    phase_value = phase.value if isinstance(phase, MigrationPhase) else phase
    return Path(progress_dir) / f"{migration_id}-{phase_value}.json"


def _calculate_checksum(data: dict[str, Any]) -> str:
    """SHA256 over the canonical JSON form of the checkpoint body."""
    return hashlib.sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()


class ProgressTracker:
    """
    Tracks progress of one migration phase and persists it as a checkpoint.

    Usage:
        tracker, resumed = create_or_resume_tracker("2024-05-01", MigrationPhase.IMPORT)
        if not resumed:
            tracker.initialize(total=len(recipes))

        for recipe in recipes:
            if tracker.is_processed(recipe.legacy_id):
                continue
            ...
            tracker.record_processed(recipe.legacy_id, success=True)

        tracker.save_checkpoint()
        if tracker.is_complete():
            tracker.delete_checkpoint()
    """

    def __init__(
        self,
        migration_id: str,
        phase: MigrationPhase | str,
        progress_dir: str | Path = DEFAULT_PROGRESS_DIR,
        auto_save_interval_ms: int = DEFAULT_AUTO_SAVE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize tracker.

        Args:
            migration_id: Identifier shared by all phases of one migration run
            phase: Phase this tracker covers
            progress_dir: Directory for checkpoint files
            auto_save_interval_ms: Save automatically when this much time has
                passed since the last save (0 disables auto-save)
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.phase = MigrationPhase(phase)
        self.progress_dir = Path(progress_dir)
        self.auto_save_interval_ms = auto_save_interval_ms
        self._clock = clock
        self._last_save = clock()
        self._lock = threading.RLock()

        self._progress = MigrationProgress(migration_id=migration_id, phase=self.phase.value)
        self._processed_ids: set[LegacyKey] = set()
        self._failed_ids: set[LegacyKey] = set()
        self.state = TrackerState.INITIALIZED

    @property
    def migration_id(self) -> str:
        return self._progress.migration_id

    @property
    def checkpoint_path(self) -> Path:
        return checkpoint_path(self.migration_id, self.phase, self.progress_dir)

    # ------------------------------------------------------------------ mutation

    def initialize(self, total: int, total_batches: int = 0) -> None:
        """Reset counters for a fresh phase run."""
        with self._lock:
            self._progress = MigrationProgress(
                migration_id=self.migration_id,
                phase=self.phase.value,
                total_records=total,
                total_batches=total_batches,
            )
            self._processed_ids.clear()
            self._failed_ids.clear()
            self._last_save = self._clock()
            self.state = TrackerState.RUNNING

        logger.info(
            "progress_initialized",
            migration_id=self.migration_id,
            phase=self.phase.value,
            total=total,
            total_batches=total_batches,
        )

    def record_processed(self, legacy_id: LegacyKey, success: bool, warned: bool = False) -> None:
        """Record the outcome for one record.

        Recording the same id twice never double-counts. A record that failed
        earlier and now succeeds moves from the failed to the succeeded count.
        """
        with self._lock:
            progress = self._progress
            self.state = TrackerState.RUNNING

            if legacy_id in self._processed_ids:
                if success and legacy_id in self._failed_ids:
                    self._failed_ids.discard(legacy_id)
                    progress.failed_records -= 1
                    progress.succeeded_records += 1
            else:
                self._processed_ids.add(legacy_id)
                progress.processed_records += 1
                if success:
                    progress.succeeded_records += 1
                else:
                    progress.failed_records += 1
                    self._failed_ids.add(legacy_id)
                if warned:
                    progress.warned_records += 1

            if progress.processed_records + progress.skipped_records > progress.total_records:
                logger.warning(
                    "progress_total_exceeded",
                    total=progress.total_records,
                    processed=progress.processed_records,
                    skipped=progress.skipped_records,
                )
                progress.total_records = progress.processed_records + progress.skipped_records

        self._maybe_auto_save()

    def record_skipped(self, count: int) -> None:
        """Record records skipped because they were already migrated."""
        with self._lock:
            self._progress.skipped_records += count

    def update_batch(self, batch_number: int, total_batches: int | None = None) -> None:
        """Record that ``batch_number`` has completed."""
        with self._lock:
            self._progress.current_batch = batch_number
            if total_batches is not None:
                self._progress.total_batches = total_batches
            self._progress.last_checkpoint = datetime.now(UTC).isoformat()

    def set_metadata(self, key: str, value: Any) -> None:
        with self._lock:
            self._progress.metadata[key] = value

    def _maybe_auto_save(self) -> None:
        if self.auto_save_interval_ms <= 0:
            return
        elapsed_ms = (self._clock() - self._last_save) * 1000
        if elapsed_ms > self.auto_save_interval_ms:
            self.save_checkpoint()

    # ------------------------------------------------------------------ queries

    @property
    def progress(self) -> MigrationProgress:
        """Snapshot copy of the counters."""
        with self._lock:
            return MigrationProgress.from_dict(json.loads(json.dumps(self._progress.to_dict())))

    def is_processed(self, legacy_id: LegacyKey) -> bool:
        return legacy_id in self._processed_ids

    def is_failed(self, legacy_id: LegacyKey) -> bool:
        return legacy_id in self._failed_ids

    def processed_ids(self) -> set[LegacyKey]:
        return set(self._processed_ids)

    def failed_ids(self) -> set[LegacyKey]:
        return set(self._failed_ids)

    def is_complete(self) -> bool:
        """Every record has been processed or skipped."""
        progress = self._progress
        return progress.processed_records + progress.skipped_records >= progress.total_records

    def percentage(self) -> int:
        progress = self._progress
        if progress.total_records == 0:
            return 0
        done = progress.processed_records + progress.skipped_records
        return round(done / progress.total_records * 100)

    def success_rate(self) -> float:
        progress = self._progress
        if progress.processed_records == 0:
            return 0.0
        return round(progress.succeeded_records / progress.processed_records * 100, 2)

    def estimated_time_remaining(self) -> float | None:
        """Seconds left at the current throughput, or None before the first record."""
        progress = self._progress
        if progress.processed_records == 0:
            return None

        elapsed = (datetime.now(UTC) - datetime.fromisoformat(progress.start_time)).total_seconds()
        rate = progress.processed_records / elapsed if elapsed > 0 else 0
        if rate <= 0:
            return None

        remaining = max(
            progress.total_records - progress.processed_records - progress.skipped_records, 0
        )
        return remaining / rate

    def formatted_time_remaining(self) -> str:
        seconds = self.estimated_time_remaining()
        if seconds is None:
            return "Calculating..."
        return format_duration(seconds)

    # ------------------------------------------------------------------ persistence

    def save_checkpoint(self) -> Path:
        """Write progress and the processed/failed id sets to the checkpoint file.

        Raises:
            CheckpointError: If the file cannot be written
        """
        with self._lock:
            self._progress.last_checkpoint = datetime.now(UTC).isoformat()
            body = {
                "progress": self._progress.to_dict(),
                "processedIds": sorted(self._processed_ids, key=str),
                "failedIds": sorted(self._failed_ids, key=str),
            }
            body["checksum"] = _calculate_checksum(body)

            path = self.checkpoint_path
            try:
                atomic_write_json(path, body)
            except OSError as e:
                logger.error("checkpoint_save_failed", path=str(path), error=str(e))
                raise CheckpointError(f"Failed to save checkpoint {path}: {e}") from e

            self._last_save = self._clock()
            self.state = TrackerState.CHECKPOINTED

        log_checkpoint(
            logger,
            checkpoint_path=str(path),
            phase=self.phase.value,
            items_processed=self._progress.processed_records,
        )
        return path

    @staticmethod
    def load_checkpoint(
        migration_id: str,
        phase: MigrationPhase | str,
        progress_dir: str | Path = DEFAULT_PROGRESS_DIR,
        auto_save_interval_ms: int = DEFAULT_AUTO_SAVE_INTERVAL_MS,
    ) -> "ProgressTracker | None":
        """Restore a tracker from its checkpoint file.

        Returns:
            The restored tracker, or None when no checkpoint exists

        Raises:
            CheckpointError: If the file exists but is unreadable, malformed
                or fails its integrity check
        """
        path = checkpoint_path(migration_id, phase, progress_dir)
        try:
            body = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error("checkpoint_load_failed", path=str(path), error=str(e))
            raise CheckpointError(f"Failed to load checkpoint {path}: {e}") from e

        try:
            checksum = body.pop("checksum", None)
            if checksum is not None and checksum != _calculate_checksum(body):
                raise CheckpointError(f"Checkpoint integrity check failed: {path}")

            tracker = ProgressTracker(
                migration_id,
                phase,
                progress_dir=progress_dir,
                auto_save_interval_ms=auto_save_interval_ms,
            )
            tracker._progress = MigrationProgress.from_dict(body["progress"])
            tracker._processed_ids = set(body.get("processedIds", []))
            tracker._failed_ids = set(body.get("failedIds", []))
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointError(f"Malformed checkpoint {path}: {e}") from e

        tracker.state = TrackerState.CHECKPOINTED
        logger.info(
            "checkpoint_restored",
            path=str(path),
            processed=tracker._progress.processed_records,
            total=tracker._progress.total_records,
        )
        return tracker

    def delete_checkpoint(self) -> bool:
        """Remove the checkpoint file once the phase is complete.

        Returns:
            True if a file was removed

        Raises:
            CheckpointError: If the phase is not complete yet
        """
        if not self.is_complete():
            raise CheckpointError(
                f"Refusing to delete checkpoint for incomplete phase "
                f"({self._progress.processed_records}/{self._progress.total_records})"
            )

        self.state = TrackerState.COMPLETE
        try:
            self.checkpoint_path.unlink()
        except FileNotFoundError:
            return False

        logger.info("checkpoint_deleted", path=str(self.checkpoint_path))
        return True

    def summary_lines(self) -> list[str]:
        """Human-readable progress summary."""
        progress = self._progress
        return [
            f"Migration: {progress.migration_id} ({progress.phase})",
            f"Progress: {progress.processed_records}/{progress.total_records} ({self.percentage()}%)",
            f"Succeeded: {progress.succeeded_records}",
            f"Failed: {progress.failed_records}",
            f"Warnings: {progress.warned_records}",
            f"Skipped: {progress.skipped_records}",
            f"Batch: {progress.current_batch}/{progress.total_batches}",
            f"Success rate: {self.success_rate()}%",
            f"Time remaining: {self.formatted_time_remaining()}",
        ]


def create_or_resume_tracker(
    migration_id: str,
    phase: MigrationPhase | str,
    progress_dir: str | Path = DEFAULT_PROGRESS_DIR,
    auto_save_interval_ms: int = DEFAULT_AUTO_SAVE_INTERVAL_MS,
) -> tuple[ProgressTracker, bool]:
    """Load the checkpoint for ``(migration_id, phase)`` or start a new tracker.

    Returns:
        ``(tracker, resumed)``
    """
    tracker = ProgressTracker.load_checkpoint(
        migration_id, phase, progress_dir, auto_save_interval_ms=auto_save_interval_ms
    )
    if tracker is not None:
        logger.info(
            "resuming_from_checkpoint",
            migration_id=migration_id,
            phase=MigrationPhase(phase).value,
            processed=tracker.progress.processed_records,
        )
        return tracker, True

    return (
        ProgressTracker(
            migration_id, phase, progress_dir, auto_save_interval_ms=auto_save_interval_ms
        ),
        False,
    )


def format_duration(seconds: float) -> str:
    """Format a duration as ``Xh Ym``, ``Xm Ys`` or ``Xs``."""
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
