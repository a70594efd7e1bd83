"""Tests for the recipe-bridge command line interface."""

import json

import httpx
import pytest
import yaml
from sqlalchemy import create_engine, text

from recipe_migration import __version__
from recipe_migration.cli.main import cli
from recipe_migration.client.destination_client import DestinationClient
from recipe_migration.migration import coordinator
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.migration.models import EntityType
from recipe_migration.migration.progress import ProgressTracker, checkpoint_path

from conftest import make_recipe, make_user, uuid_for
from test_verifier import DESTINATION_SCHEMA, LEGACY_SCHEMA


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def config_file(tmp_path, data_dir):
    """YAML config rooted in a temp directory."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "destination": {"url": "http://destination.test", "token": "test-token"},
                "paths": {
                    "data_dir": str(data_dir),
                    "imported_dir": str(data_dir / "imported"),
                    "progress_dir": str(data_dir / "progress"),
                    "verification_dir": str(data_dir / "verification"),
                },
                "importer": {"delay_between_batches_ms": 0, "retry_backoff_ms": 1},
                "progress": {"auto_save_interval_ms": 0, "migration_id": "cli-run"},
                "logging": {"disable_progress": True},
            }
        )
    )
    return path


@pytest.fixture
def invoke(cli_runner, config_file, tmp_path):
    """Run the CLI with the temp config and log file."""

    def run(*args, **kwargs):
        return cli_runner.invoke(
            cli,
            ["--config", str(config_file), "--log-file", str(tmp_path / "logs" / "cli.log"), *args],
            **kwargs,
        )

    return run


@pytest.fixture
def seeded_store(data_dir):
    store = IdempotencyStore(data_dir / "imported")
    store.load_mappings()
    store.mark_imported(EntityType.USER, 1, uuid_for("user", 1), "cook1@example.com")
    store.mark_imported(EntityType.RECIPE, 1, uuid_for("recipe", 1), "Pancakes")
    store.save_mappings()
    return store


class TestCLIBasics:
    """Group-level options."""

    def test_help_lists_commands(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("import", "verify", "checkpoint", "mappings"):
            assert command in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "mappings", "stats"])

        assert result.exit_code == 2

    def test_invalid_config_exits_with_config_code(self, cli_runner, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.safe_dump({"importer": {"batch_size": 0}}))

        result = cli_runner.invoke(
            cli,
            ["--config", str(bad), "--log-file", str(tmp_path / "cli.log"), "mappings", "stats"],
        )

        assert result.exit_code == 2
        assert "configuration" in result.output.lower()


class TestMappingCommands:
    def test_stats(self, invoke, seeded_store):
        result = invoke("mappings", "stats")

        assert result.exit_code == 0
        assert "recipe" in result.output
        assert "user" in result.output

    def test_export(self, invoke, seeded_store, tmp_path):
        output = tmp_path / "backup.json"

        result = invoke("mappings", "export", "-o", str(output))

        assert result.exit_code == 0
        exported = json.loads(output.read_text())
        assert exported["recipe"][0]["title"] == "Pancakes"
        assert exported["user"][0]["email"] == "cook1@example.com"

    def test_clear_requires_confirmation(self, invoke, seeded_store, data_dir):
        result = invoke("mappings", "clear", input="n\n")

        assert result.exit_code == 0
        assert "Operation cancelled" in result.output
        reloaded = IdempotencyStore(data_dir / "imported")
        reloaded.load_mappings()
        assert reloaded.is_imported(EntityType.RECIPE, 1)

    def test_clear_with_yes(self, invoke, seeded_store, data_dir):
        result = invoke("mappings", "clear", "--yes")

        assert result.exit_code == 0
        reloaded = IdempotencyStore(data_dir / "imported")
        reloaded.load_mappings()
        assert not reloaded.is_imported(EntityType.RECIPE, 1)


class TestCheckpointCommands:
    def test_show_without_checkpoint(self, invoke):
        result = invoke("checkpoint", "show")

        assert result.exit_code == 0
        assert "No checkpoint found for cli-run" in result.output

    def test_show_and_delete(self, invoke, data_dir):
        tracker = ProgressTracker("cli-run", "import", data_dir / "progress", auto_save_interval_ms=0)
        tracker.initialize(10)
        tracker.record_processed(1, success=True)
        tracker.save_checkpoint()

        shown = invoke("checkpoint", "show")
        deleted = invoke("checkpoint", "delete", "--yes")

        assert shown.exit_code == 0
        assert "Checkpoint cli-run" in shown.output
        assert deleted.exit_code == 0
        assert not checkpoint_path("cli-run", "import", data_dir / "progress").exists()

    def test_corrupt_checkpoint_is_a_state_error(self, invoke, data_dir):
        path = checkpoint_path("cli-run", "import", data_dir / "progress")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("not json")

        result = invoke("checkpoint", "show")

        assert result.exit_code == 5


@pytest.fixture
def write_import_data(data_dir):
    """Write validated recipes and transformed users for one run."""

    def write(recipe_ids=(1,), user_ids=(1,)):
        run_dir = data_dir / "validated" / "2024-05-01"
        run_dir.mkdir(parents=True)
        (run_dir / "recipes-pass.json").write_text(
            json.dumps([make_recipe(n).model_dump(mode="json", by_alias=True) for n in recipe_ids])
        )
        users_dir = data_dir / "transformed" / "2024-05-01"
        users_dir.mkdir(parents=True)
        (users_dir / "users-normalized.json").write_text(
            json.dumps([make_user(n).model_dump(mode="json", by_alias=True) for n in user_ids])
        )

    return write


@pytest.fixture
def fake_api(monkeypatch, fake_destination):
    """Route clients built by the orchestrator to the fake destination."""

    def build_client(config, logging_config=None):
        return DestinationClient(
            config, logging_config, transport=httpx.MockTransport(fake_destination.handler)
        )

    monkeypatch.setattr(coordinator, "DestinationClient", build_client)
    return fake_destination


class TestImportCommand:
    def test_dry_run(self, invoke, data_dir, write_import_data):
        write_import_data()

        result = invoke("import", "--dry-run")

        assert result.exit_code == 0, result.output
        assert "Dry run completed" in result.output
        assert list((data_dir / "imported").glob("dry-run-report-*.json"))
        assert not (data_dir / "imported" / "recipe-id-mapping.json").exists()

    def test_completed_run_with_rejected_recipe_exits_zero(
        self, invoke, data_dir, write_import_data, fake_api
    ):
        write_import_data(recipe_ids=(1, 2, 3))
        fake_api.queue(uuid_for("recipe", 2), 400)

        result = invoke("import", "--migration-id", "cli-run")

        assert result.exit_code == 0, result.output
        assert "1 failed recipe(s)" in result.output
        assert not checkpoint_path("cli-run", "import", data_dir / "progress").exists()
        store = IdempotencyStore(data_dir / "imported")
        store.load_mappings()
        assert store.is_imported(EntityType.RECIPE, 1)
        assert not store.is_imported(EntityType.RECIPE, 2)

    def test_stop_on_error_exits_nonzero_and_keeps_checkpoint(
        self, invoke, data_dir, write_import_data, fake_api
    ):
        write_import_data(recipe_ids=(1, 2, 3))
        fake_api.queue(uuid_for("recipe", 1), 400)

        result = invoke("import", "--migration-id", "cli-run", "--stop-on-error", "--batch-size", "1")

        assert result.exit_code == 1
        assert "stopped after a failed batch" in result.output
        assert checkpoint_path("cli-run", "import", data_dir / "progress").exists()

    def test_missing_data_is_a_data_error(self, invoke):
        result = invoke("import", "--dry-run")

        assert result.exit_code == 1
        assert "No validated data found" in result.output


class TestVerifyCommand:
    def test_requires_database_settings(self, invoke):
        result = invoke("verify")

        assert result.exit_code == 2
        assert "verification.legacy" in result.output

    def test_failed_verification_exits_6(self, cli_runner, tmp_path, data_dir):
        urls = {}
        for side, schema in (("legacy", LEGACY_SCHEMA), ("destination", DESTINATION_SCHEMA)):
            urls[side] = f"sqlite:///{tmp_path / f'{side}.db'}"
            engine = create_engine(urls[side])
            with engine.begin() as conn:
                for statement in schema:
                    conn.execute(text(statement))
            engine.dispose()
        config = tmp_path / "verify.yaml"
        config.write_text(
            yaml.safe_dump(
                {
                    "paths": {
                        "imported_dir": str(data_dir / "imported"),
                        "verification_dir": str(data_dir / "verification"),
                    },
                    "verification": {
                        "legacy": {"url": urls["legacy"]},
                        "destination": {"url": urls["destination"]},
                    },
                }
            )
        )

        result = cli_runner.invoke(
            cli, ["--config", str(config), "--log-file", str(tmp_path / "cli.log"), "verify"]
        )

        # empty legacy tables count as a mismatch
        assert result.exit_code == 6
        assert list((data_dir / "verification").glob("verification-report-*.json"))
