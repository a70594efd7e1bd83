"""Batch importer for pushing transformed recipes to the destination API.

Records are split into fixed-size batches and imported one at a time within
each batch, so a partial failure leaves an ordered trail. The importer does
not persist anything itself: callers react to the ``ImportResult`` values it
hands back (typically through the per-batch callback) by updating the
idempotency store and the progress tracker.
"""

import asyncio
import inspect
import re
import time
from collections.abc import Awaitable, Callable, Iterator, Sequence
from datetime import datetime
from typing import Any, TypeVar

from recipe_migration.client.destination_client import DestinationClient
from recipe_migration.client.exceptions import (
    ClientError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from recipe_migration.config import ImporterConfig
from recipe_migration.migration.models import (
    BatchImportResult,
    ErrorType,
    ImportResult,
    TransformedRecipe,
    TransformedUser,
)
from recipe_migration.utils.logging import get_logger
from recipe_migration.utils.retry import is_retryable, with_retry

logger = get_logger(__name__)

T = TypeVar("T")

BatchCallback = Callable[[BatchImportResult], Awaitable[None] | None]
SleepFunc = Callable[[float], Awaitable[Any]]

VALID_ROLES = ("user", "admin")


def create_batches(items: Sequence[T], batch_size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``items`` of at most ``batch_size`` elements."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    for start in range(0, len(items), batch_size):
        yield list(items[start : start + batch_size])


def total_batches(item_count: int, batch_size: int) -> int:
    return (item_count + batch_size - 1) // batch_size


def classify_error(exc: BaseException) -> ErrorType:
    """Map an exception onto the four import error kinds."""
    if isinstance(exc, (ClientError, ValidationError)):
        return ErrorType.VALIDATION
    if isinstance(exc, NetworkError):
        return ErrorType.NETWORK
    if isinstance(exc, (ServerError, RateLimitError)):
        return ErrorType.SERVER
    return ErrorType.UNKNOWN


# ---------------------------------------------------------------- structural checks


def check_required_recipe_fields(recipe: TransformedRecipe) -> list[str]:
    """Checks every recipe must pass before it can be submitted."""
    errors = []
    if not recipe.title or not recipe.title.strip():
        errors.append("Title is required")
    if not recipe.ingredients:
        errors.append("At least one ingredient is required")
    if not recipe.instructions:
        errors.append("At least one instruction is required")
    if not recipe.author_id:
        errors.append("Author ID is required")
    return errors


def check_required_user_fields(user: TransformedUser) -> list[str]:
    """Checks every user must pass before it can be submitted."""
    errors = []
    if not user.name or not user.name.strip():
        errors.append("Name is required")
    if not user.email or not user.email.strip():
        errors.append("Email is required")
    if user.role not in VALID_ROLES:
        errors.append(f"Invalid role: {user.role}")
    return errors


# ---------------------------------------------------------------- payloads


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def prepare_recipe_payload(recipe: TransformedRecipe) -> dict[str, Any]:
    """Shape a recipe for the destination API.

    Raises:
        ValidationError: If the recipe fails the required-field checks
    """
    errors = check_required_recipe_fields(recipe)
    if errors:
        raise ValidationError("; ".join(errors), errors)

    return {
        "id": recipe.id,
        "title": recipe.title,
        "description": recipe.description,
        "ingredients": [
            {
                "id": ingredient.id,
                "name": ingredient.name,
                "amount": ingredient.amount,
                "unit": ingredient.unit,
                "displayAmount": ingredient.display_amount,
                "notes": ingredient.notes,
                "category": ingredient.category,
            }
            for ingredient in recipe.ingredients
        ],
        "instructions": [
            {
                "id": instruction.id,
                "step": instruction.step,
                "content": instruction.content,
                "duration": instruction.duration,
            }
            for instruction in recipe.instructions
        ],
        "ingredientSections": recipe.ingredient_sections,
        "instructionSections": recipe.instruction_sections,
        "prepTime": recipe.prep_time,
        "cookTime": recipe.cook_time,
        "servings": recipe.servings,
        "difficulty": recipe.difficulty,
        "tags": list(recipe.tags),
        "notes": recipe.notes,
        "imageUrl": recipe.image_url,
        "originalRecipePhotoUrls": list(recipe.original_recipe_photo_urls),
        "sourceUrl": recipe.source_url,
        "authorId": recipe.author_id,
        "visibility": recipe.visibility,
        "commentsEnabled": recipe.comments_enabled,
        "viewCount": recipe.view_count,
        "likeCount": recipe.like_count,
        "createdAt": _iso(recipe.created_at),
        "updatedAt": _iso(recipe.updated_at),
    }


def prepare_user_payload(user: TransformedUser) -> dict[str, Any]:
    """Shape a user for the destination API.

    Raises:
        ValidationError: If the user fails the required-field checks
    """
    errors = check_required_user_fields(user)
    if errors:
        raise ValidationError("; ".join(errors), errors)

    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "emailVerified": _iso(user.email_verified),
        "password": user.password,
        "image": user.image,
        "role": user.role,
        "createdAt": _iso(user.created_at),
        "updatedAt": _iso(user.updated_at),
    }


def failure_result(legacy_id: int, exc: BaseException, retry_count: int = 0) -> ImportResult:
    """Build the failed ``ImportResult`` for ``exc``."""
    return ImportResult(
        success=False,
        legacy_id=legacy_id,
        error=str(exc) or type(exc).__name__,
        error_type=classify_error(exc),
        retry_count=retry_count,
    )


_WHITESPACE = re.compile(r"\s+")


def _short(text: str, limit: int = 80) -> str:
    text = _WHITESPACE.sub(" ", text).strip()
    return text if len(text) <= limit else text[: limit - 3] + "..."


class BatchImporter:
    """Drives ordered batches of recipes through the destination client.

    Usage:
        importer = BatchImporter(client, config.importer)
        batches = await importer.import_recipes(recipes, on_batch=handle_batch)
    """

    def __init__(
        self,
        client: DestinationClient | None,
        config: ImporterConfig,
        cancel_event: asyncio.Event | None = None,
        sleep: SleepFunc | None = None,
    ):
        """Initialize batch importer.

        Args:
            client: Destination client (may be None in dry-run mode)
            config: Import configuration
            cancel_event: Set by the operator to stop between items/batches
            sleep: Awaitable sleep taking seconds (defaults to ``asyncio.sleep``)
        """
        if client is None and not config.dry_run:
            raise ValueError("A destination client is required unless dry_run is enabled")

        self.client = client
        self.config = config
        self.cancel_event = cancel_event
        self._sleep = sleep or asyncio.sleep
        self.cancelled = False
        self.stopped_on_error = False

    def _cancel_requested(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.cancelled = True
        return self.cancelled

    def dry_run_recipe(self, recipe: TransformedRecipe) -> ImportResult:
        """Structural checks only, using the pre-assigned id as the new id."""
        errors = check_required_recipe_fields(recipe)
        if errors:
            return ImportResult(
                success=False,
                legacy_id=recipe.legacy_id,
                error="; ".join(errors),
                error_type=ErrorType.VALIDATION,
            )
        return ImportResult(success=True, legacy_id=recipe.legacy_id, new_id=recipe.id)

    async def import_recipe(self, recipe: TransformedRecipe) -> ImportResult:
        """Import one recipe (with retries) and return its result."""
        if self.config.dry_run:
            return self.dry_run_recipe(recipe)

        try:
            payload = prepare_recipe_payload(recipe)
        except ValidationError as e:
            logger.warning(
                "recipe_rejected_locally",
                legacy_id=recipe.legacy_id,
                title=_short(recipe.title),
                errors=e.errors,
            )
            return failure_result(recipe.legacy_id, e)

        outcome = await with_retry(
            lambda: self.client.create_recipe(payload),
            max_retries=self.config.max_retries,
            base_backoff_ms=self.config.retry_backoff_ms,
            should_retry=is_retryable,
            sleep=self._sleep,
        )

        if not outcome.ok:
            result = failure_result(recipe.legacy_id, outcome.error, outcome.retry_count)
            logger.error(
                "recipe_import_failed",
                legacy_id=recipe.legacy_id,
                title=_short(recipe.title),
                error_type=result.error_type.value,
                error=result.error,
                retry_count=outcome.retry_count,
            )
            return result

        logger.debug(
            "recipe_imported",
            legacy_id=recipe.legacy_id,
            new_id=outcome.value.new_id,
            retry_count=outcome.retry_count,
        )
        return ImportResult(
            success=True,
            legacy_id=recipe.legacy_id,
            new_id=outcome.value.new_id,
            retry_count=outcome.retry_count,
        )

    async def import_recipes(
        self,
        recipes: Sequence[TransformedRecipe],
        on_batch: BatchCallback | None = None,
    ) -> list[BatchImportResult]:
        """Import ``recipes`` in order, batch by batch.

        After each batch the callback is invoked, then the importer pauses for
        the configured inter-batch delay (not after the last batch). With
        ``stop_on_error`` the remaining batches are abandoned as soon as a
        batch contains a failure.

        Args:
            recipes: Records to import, in submission order
            on_batch: Optional sync or async callback receiving each batch result

        Returns:
            One BatchImportResult per batch that was started
        """
        batch_size = self.config.batch_size
        batch_count = total_batches(len(recipes), batch_size)
        results: list[BatchImportResult] = []

        logger.info(
            "batch_import_started",
            total=len(recipes),
            batch_size=batch_size,
            total_batches=batch_count,
            dry_run=self.config.dry_run,
        )

        for index, batch in enumerate(create_batches(recipes, batch_size), start=1):
            if self._cancel_requested():
                logger.warning("batch_import_cancelled", next_batch=index)
                break

            started = time.monotonic()
            batch_result = BatchImportResult(batch_number=index, total_batches=batch_count)

            for recipe in batch:
                if self._cancel_requested():
                    logger.warning(
                        "batch_import_cancelled", batch=index, next_legacy_id=recipe.legacy_id
                    )
                    break
                batch_result.results.append(await self.import_recipe(recipe))

            batch_result.duration = time.monotonic() - started
            results.append(batch_result)

            logger.info(
                "batch_completed",
                batch=index,
                total_batches=batch_count,
                succeeded=batch_result.success_count,
                failed=batch_result.failure_count,
                duration_s=round(batch_result.duration, 2),
            )

            if on_batch is not None:
                callback_result = on_batch(batch_result)
                if inspect.isawaitable(callback_result):
                    await callback_result

            if self.cancelled:
                break

            if self.config.stop_on_error and batch_result.failure_count > 0:
                self.stopped_on_error = True
                logger.warning(
                    "batch_import_stopped_on_error",
                    batch=index,
                    failed=batch_result.failure_count,
                    remaining_batches=batch_count - index,
                )
                break

            if index < batch_count and self.config.delay_between_batches_ms > 0:
                await self._sleep(self.config.delay_between_batches_ms / 1000)

        logger.info(
            "batch_import_finished",
            batches=len(results),
            succeeded=sum(b.success_count for b in results),
            failed=sum(b.failure_count for b in results),
            cancelled=self.cancelled,
        )
        return results
