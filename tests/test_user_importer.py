"""Tests for the user importer."""

import asyncio

from recipe_migration.client.destination_client import USERS_ENDPOINT
from recipe_migration.config import ImporterConfig
from recipe_migration.migration.models import EntityType, ErrorType
from recipe_migration.migration.user_importer import UserImporter

from conftest import make_user, uuid_for


class TestUserImporter:
    """Creating, deduplicating and skipping users."""

    async def test_created_and_existing_counts(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        users = [make_user(1), make_user(2), make_user(3)]
        existing_id = uuid_for("user", 900)
        fake_destination.existing_emails[users[1].email] = existing_id
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        summary = await importer.import_users(users)

        assert summary.stats.to_dict() == {
            "total": 3,
            "created": 2,
            "existing": 1,
            "skipped": 0,
            "failed": 0,
        }
        assert store.get_new_id(EntityType.USER, 2) == existing_id
        assert store.get_mapping(EntityType.USER, 1).label == users[0].email
        # per-user pause is the batch delay capped at 50 ms, none after the last user
        assert sleep_recorder.calls == [0.05, 0.05]

    async def test_id_map_uses_effective_ids(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        users = [make_user(1), make_user(2)]
        fake_destination.existing_emails[users[1].email] = "kept-id"
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        summary = await importer.import_users(users)

        assert summary.id_map(users) == {users[0].id: users[0].id, users[1].id: "kept-id"}

    async def test_already_imported_users_are_skipped(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        users = [make_user(1), make_user(2)]
        store.mark_imported(EntityType.USER, 1, "earlier-id", users[0].email)
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        summary = await importer.import_users(users)

        assert summary.stats.skipped == 1
        assert summary.stats.created == 1
        assert [b["id"] for b in fake_destination.requests_to(USERS_ENDPOINT)] == [users[1].id]
        assert [r.legacy_id for r in summary.attempted_results] == [2]
        assert summary.id_map(users)[users[0].id] == "earlier-id"

    async def test_failed_user_is_not_mapped(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        users = [make_user(1)]
        fake_destination.queue(users[0].id, 400)
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        summary = await importer.import_users(users)

        assert summary.stats.failed == 1
        assert summary.results[0].error_type == ErrorType.VALIDATION
        assert not store.is_imported(EntityType.USER, 1)

    async def test_invalid_role_rejected_locally(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        result = await importer.import_user(make_user(1, role="superuser"))

        assert not result.success
        assert "Invalid role" in result.error
        assert fake_destination.requests == []

    async def test_mappings_saved_to_disk(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        importer = UserImporter(destination_client, store, ImporterConfig(), sleep=sleep_recorder)

        await importer.import_users([make_user(1)])

        assert store.mapping_path(EntityType.USER).exists()

    async def test_cancel_stops_before_next_user(
        self, destination_client, fake_destination, store, sleep_recorder
    ):
        cancel = asyncio.Event()
        cancel.set()
        importer = UserImporter(
            destination_client, store, ImporterConfig(), cancel_event=cancel, sleep=sleep_recorder
        )

        summary = await importer.import_users([make_user(1), make_user(2)])

        assert summary.cancelled
        assert fake_destination.requests == []

    def test_delay_disabled_when_batch_delay_is_zero(self, store):
        importer = UserImporter(None, store, ImporterConfig(dry_run=True, delay_between_batches_ms=0))

        assert importer.item_delay_seconds == 0.0

    async def test_dry_run_does_not_touch_store(self, store, sleep_recorder):
        importer = UserImporter(None, store, ImporterConfig(dry_run=True), sleep=sleep_recorder)

        summary = await importer.import_users([make_user(1)])

        assert summary.stats.created == 1
        assert not store.is_imported(EntityType.USER, 1)
        assert not store.mapping_path(EntityType.USER).exists()
