"""Tests for the batch importer."""

import asyncio

import pytest

from recipe_migration.client.destination_client import RECIPES_ENDPOINT
from recipe_migration.config import ImporterConfig
from recipe_migration.migration.importer import (
    BatchImporter,
    classify_error,
    create_batches,
    prepare_recipe_payload,
    total_batches,
)
from recipe_migration.migration.models import ErrorType
from recipe_migration.client.exceptions import (
    ClientError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)

from conftest import CONNECT_ERROR, make_recipe, uuid_for


class TestBatching:
    """Batch slicing."""

    def test_137_items_in_batches_of_50(self):
        batches = list(create_batches(list(range(137)), 50))

        assert [len(b) for b in batches] == [50, 50, 37]
        assert batches[2][-1] == 136
        assert total_batches(137, 50) == 3

    def test_empty_input(self):
        assert list(create_batches([], 50)) == []
        assert total_batches(0, 50) == 0

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            list(create_batches([1], 0))


class TestPayload:
    """Destination payload assembly."""

    def test_camel_case_payload(self):
        recipe = make_recipe(3)

        payload = prepare_recipe_payload(recipe)

        assert payload["id"] == recipe.id
        assert payload["authorId"] == recipe.author_id
        assert payload["imageUrl"] == recipe.image_url
        assert payload["ingredients"][0]["name"] == "flour"
        assert payload["instructions"][1]["step"] == 2
        assert "legacyId" not in payload

    def test_missing_fields_raise_validation_error(self):
        recipe = make_recipe(3, title=" ", ingredients=[], authorId=None)

        with pytest.raises(ValidationError) as excinfo:
            prepare_recipe_payload(recipe)

        assert excinfo.value.errors == [
            "Title is required",
            "At least one ingredient is required",
            "Author ID is required",
        ]


@pytest.mark.parametrize(
    "exc, expected",
    [
        (ClientError("bad", status_code=400), ErrorType.VALIDATION),
        (ValidationError("bad"), ErrorType.VALIDATION),
        (NetworkError("down"), ErrorType.NETWORK),
        (ServerError("boom", status_code=500), ErrorType.SERVER),
        (RateLimitError("slow", status_code=429), ErrorType.SERVER),
        (RuntimeError("?"), ErrorType.UNKNOWN),
    ],
)
def test_classify_error(exc, expected):
    assert classify_error(exc) == expected


class TestImportRecipes:
    """Live imports against the fake API."""

    async def test_all_succeed_in_order(self, destination_client, fake_destination, sleep_recorder):
        recipes = [make_recipe(i) for i in range(1, 138)]
        importer = BatchImporter(
            destination_client, ImporterConfig(batch_size=50), sleep=sleep_recorder
        )
        seen = []

        batches = await importer.import_recipes(recipes, on_batch=seen.append)

        assert [len(b.results) for b in batches] == [50, 50, 37]
        assert [b.batch_number for b in seen] == [1, 2, 3]
        assert all(b.total_batches == 3 for b in batches)
        submitted = [body["id"] for body in fake_destination.requests_to(RECIPES_ENDPOINT)]
        assert submitted == [r.id for r in recipes]
        # inter-batch delay only between batches
        assert sleep_recorder.calls == [0.1, 0.1]

    async def test_client_error_is_not_retried(
        self, destination_client, fake_destination, sleep_recorder
    ):
        recipe = make_recipe(1)
        fake_destination.queue(recipe.id, 422)
        importer = BatchImporter(destination_client, ImporterConfig(), sleep=sleep_recorder)

        result = await importer.import_recipe(recipe)

        assert not result.success
        assert result.error_type == ErrorType.VALIDATION
        assert result.retry_count == 0
        assert len(fake_destination.requests_to(RECIPES_ENDPOINT)) == 1

    async def test_persistent_server_error_exhausts_retries(
        self, destination_client, fake_destination, sleep_recorder
    ):
        recipe = make_recipe(1)
        fake_destination.queue(recipe.id, 500, 502, 503, 500)
        importer = BatchImporter(destination_client, ImporterConfig(), sleep=sleep_recorder)

        result = await importer.import_recipe(recipe)

        assert not result.success
        assert result.error_type == ErrorType.SERVER
        assert result.retry_count == 3
        assert len(fake_destination.requests_to(RECIPES_ENDPOINT)) == 4
        assert sleep_recorder.calls == [1.0, 2.0, 4.0]

    async def test_transient_failures_recover(
        self, destination_client, fake_destination, sleep_recorder
    ):
        recipe = make_recipe(1)
        fake_destination.queue(recipe.id, CONNECT_ERROR, 503)
        importer = BatchImporter(destination_client, ImporterConfig(), sleep=sleep_recorder)

        result = await importer.import_recipe(recipe)

        assert result.success
        assert result.new_id == recipe.id
        assert result.retry_count == 2
        assert sleep_recorder.calls == [1.0, 2.0]

    async def test_invalid_recipe_never_reaches_api(
        self, destination_client, fake_destination, sleep_recorder
    ):
        importer = BatchImporter(destination_client, ImporterConfig(), sleep=sleep_recorder)

        result = await importer.import_recipe(make_recipe(1, instructions=[]))

        assert not result.success
        assert result.error_type == ErrorType.VALIDATION
        assert fake_destination.requests == []

    async def test_stop_on_error_abandons_remaining_batches(
        self, destination_client, fake_destination, sleep_recorder
    ):
        recipes = [make_recipe(i) for i in range(1, 11)]
        fake_destination.queue(recipes[2].id, 400)
        importer = BatchImporter(
            destination_client,
            ImporterConfig(batch_size=5, stop_on_error=True),
            sleep=sleep_recorder,
        )

        batches = await importer.import_recipes(recipes)

        assert len(batches) == 1
        assert batches[0].failure_count == 1
        assert importer.stopped_on_error
        assert len(fake_destination.requests_to(RECIPES_ENDPOINT)) == 5
        assert sleep_recorder.calls == []

    async def test_failures_do_not_stop_by_default(
        self, destination_client, fake_destination, sleep_recorder
    ):
        recipes = [make_recipe(i) for i in range(1, 11)]
        fake_destination.queue(recipes[2].id, 400)
        importer = BatchImporter(destination_client, ImporterConfig(batch_size=5), sleep=sleep_recorder)

        batches = await importer.import_recipes(recipes)

        assert [b.failure_count for b in batches] == [1, 0]
        assert not importer.stopped_on_error

    async def test_cancel_between_records(self, destination_client, fake_destination, sleep_recorder):
        recipes = [make_recipe(i) for i in range(1, 11)]
        cancel = asyncio.Event()
        importer = BatchImporter(
            destination_client, ImporterConfig(batch_size=5), cancel_event=cancel, sleep=sleep_recorder
        )

        async def cancel_after_first_batch(batch):
            cancel.set()

        batches = await importer.import_recipes(recipes, on_batch=cancel_after_first_batch)

        assert len(batches) == 1
        assert importer.cancelled
        assert len(fake_destination.requests_to(RECIPES_ENDPOINT)) == 5


class TestDryRun:
    """Dry-run mode never touches the network."""

    async def test_dry_run_uses_preassigned_ids(self):
        importer = BatchImporter(None, ImporterConfig(dry_run=True, batch_size=2))
        recipes = [make_recipe(1), make_recipe(2, title=""), make_recipe(3)]

        batches = await importer.import_recipes(recipes)
        results = [r for b in batches for r in b.results]

        assert [r.success for r in results] == [True, False, True]
        assert results[0].new_id == uuid_for("recipe", 1)
        assert results[1].error_type == ErrorType.VALIDATION

    def test_client_required_for_live_mode(self):
        with pytest.raises(ValueError):
            BatchImporter(None, ImporterConfig())
