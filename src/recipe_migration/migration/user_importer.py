"""User importer with email-based deduplication.

Accounts are not batched. Each unseen user is posted with its full profile;
the destination answers with the effective id and an ``existed`` flag when an
account with the same email was already present. Both outcomes count as a
successful migration but are reported separately.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field

from recipe_migration.client.destination_client import DestinationClient
from recipe_migration.client.exceptions import ValidationError
from recipe_migration.config import ImporterConfig
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.migration.importer import (
    SleepFunc,
    check_required_user_fields,
    failure_result,
    prepare_user_payload,
)
from recipe_migration.migration.models import EntityType, ErrorType, ImportResult, TransformedUser
from recipe_migration.utils.logging import get_logger
from recipe_migration.utils.retry import is_retryable, with_retry

logger = get_logger(__name__)


@dataclass
class UserImportStats:
    total: int = 0
    created: int = 0
    existing: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class UserImportSummary:
    """Counts plus one result per input user (skipped users included)."""

    stats: UserImportStats = field(default_factory=UserImportStats)
    results: list[ImportResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def attempted_results(self) -> list[ImportResult]:
        """Results for users submitted in this run (skipped users excluded)."""
        return self.results[: len(self.results) - self.stats.skipped]

    def id_map(self, users: Sequence[TransformedUser]) -> dict[str, str]:
        """``{transformed user id: destination user id}`` for successful users.

        Recipes reference their author by the id the transform stage
        generated; the destination may have kept a different id for an email
        it already knew.
        """
        new_ids = {r.legacy_id: r.new_id for r in self.results if r.success and r.new_id}
        return {u.id: new_ids[u.legacy_id] for u in users if u.legacy_id in new_ids}


class UserImporter:
    """Imports accounts one by one, deduplicating on legacy id and email."""

    def __init__(
        self,
        client: DestinationClient | None,
        store: IdempotencyStore,
        config: ImporterConfig,
        cancel_event: asyncio.Event | None = None,
        sleep: SleepFunc | None = None,
    ):
        """Initialize user importer.

        Args:
            client: Destination client (may be None in dry-run mode)
            store: Idempotency store (mutated only in live mode)
            config: Import configuration
            cancel_event: Set by the operator to stop between users
            sleep: Awaitable sleep taking seconds (defaults to ``asyncio.sleep``)
        """
        if client is None and not config.dry_run:
            raise ValueError("A destination client is required unless dry_run is enabled")

        self.client = client
        self.store = store
        self.config = config
        self.cancel_event = cancel_event
        self._sleep = sleep or asyncio.sleep

    @property
    def item_delay_seconds(self) -> float:
        """Pause between users: the batch delay, capped at ``user_delay_cap_ms``."""
        delay_ms = self.config.delay_between_batches_ms
        if delay_ms <= 0:
            return 0.0
        return min(delay_ms, self.config.user_delay_cap_ms) / 1000

    async def import_user(self, user: TransformedUser) -> ImportResult:
        """Import one user (with retries)."""
        if self.config.dry_run:
            errors = check_required_user_fields(user)
            if errors:
                return ImportResult(
                    success=False,
                    legacy_id=user.legacy_id,
                    error="; ".join(errors),
                    error_type=ErrorType.VALIDATION,
                )
            return ImportResult(
                success=True, legacy_id=user.legacy_id, new_id=user.id, existed=False
            )

        try:
            payload = prepare_user_payload(user)
        except ValidationError as e:
            logger.warning("user_rejected_locally", legacy_id=user.legacy_id, errors=e.errors)
            return failure_result(user.legacy_id, e)

        outcome = await with_retry(
            lambda: self.client.create_user(payload),
            max_retries=self.config.max_retries,
            base_backoff_ms=self.config.retry_backoff_ms,
            should_retry=is_retryable,
            sleep=self._sleep,
        )

        if not outcome.ok:
            result = failure_result(user.legacy_id, outcome.error, outcome.retry_count)
            logger.error(
                "user_import_failed",
                legacy_id=user.legacy_id,
                email=user.email,
                error_type=result.error_type.value,
                error=result.error,
            )
            return result

        return ImportResult(
            success=True,
            legacy_id=user.legacy_id,
            new_id=outcome.value.new_id,
            retry_count=outcome.retry_count,
            existed=outcome.value.existed,
        )

    async def import_users(self, users: Sequence[TransformedUser]) -> UserImportSummary:
        """Import every user not already marked migrated.

        Args:
            users: Transformed users

        Returns:
            UserImportSummary with ``total/created/existing/skipped/failed``
        """
        summary = UserImportSummary()
        summary.stats.total = len(users)

        partition = self.store.filter_unimported(EntityType.USER, users)
        summary.stats.skipped = len(partition.skipped)

        logger.info(
            "user_import_started",
            total=len(users),
            to_import=len(partition.unimported),
            skipped=len(partition.skipped),
            dry_run=self.config.dry_run,
        )

        delay = self.item_delay_seconds
        try:
            for index, user in enumerate(partition.unimported):
                if self.cancel_event is not None and self.cancel_event.is_set():
                    summary.cancelled = True
                    logger.warning("user_import_cancelled", next_legacy_id=user.legacy_id)
                    break

                result = await self.import_user(user)
                summary.results.append(result)

                if result.success:
                    if result.existed:
                        summary.stats.existing += 1
                    else:
                        summary.stats.created += 1
                    if not self.config.dry_run:
                        self.store.mark_record_imported(user, result.new_id)
                else:
                    summary.stats.failed += 1

                if delay > 0 and index < len(partition.unimported) - 1:
                    await self._sleep(delay)
        finally:
            if not self.config.dry_run:
                self.store.save_mappings()

        for user in partition.skipped:
            summary.results.append(
                ImportResult(
                    success=True,
                    legacy_id=user.legacy_id,
                    new_id=self.store.get_new_id(EntityType.USER, user.legacy_id),
                )
            )

        logger.info("user_import_finished", **summary.stats.to_dict())
        return summary
