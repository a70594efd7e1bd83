"""Shared pytest fixtures for Recipe Bridge tests.

The destination API is faked with ``httpx.MockTransport`` so the real client,
error mapping and retry policy run end to end without a network. Sleeps are
recorded instead of awaited.
"""

import json
import uuid
from typing import Any

import httpx
import pytest
from click.testing import CliRunner

from recipe_migration.client.destination_client import (
    RECIPES_ENDPOINT,
    USERS_ENDPOINT,
    DestinationClient,
)
from recipe_migration.config import DestinationConfig, ImporterConfig
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.migration.models import TransformedRecipe, TransformedUser

CONNECT_ERROR = "connect-error"
TIMEOUT = "timeout"


def uuid_for(kind: str, number: int) -> str:
    """Deterministic, valid UUID for test records."""
    prefix = {"recipe": 1, "user": 2, "ingredient": 3, "instruction": 4}[kind]
    return str(uuid.UUID(int=(prefix << 64) + number))


def make_user(legacy_id: int, **overrides: Any) -> TransformedUser:
    data = {
        "id": uuid_for("user", legacy_id),
        "legacyId": legacy_id,
        "name": f"Cook {legacy_id}",
        "email": f"cook{legacy_id}@example.com",
        "role": "user",
        "image": f"https://img.example.com/u/{legacy_id}.png",
    }
    data.update(overrides)
    return TransformedUser.model_validate(data)


def make_recipe(legacy_id: int, author_legacy_id: int = 1, **overrides: Any) -> TransformedRecipe:
    data = {
        "id": uuid_for("recipe", legacy_id),
        "legacyId": legacy_id,
        "title": f"Recipe {legacy_id}",
        "description": "A tasty dish",
        "ingredients": [
            {"id": uuid_for("ingredient", legacy_id * 10 + n), "name": name, "amount": amount,
             "unit": "cup"}
            for n, (name, amount) in enumerate((("flour", 2), ("sugar", 1)), 1)
        ],
        "instructions": [
            {"id": uuid_for("instruction", legacy_id * 10 + n), "step": n, "content": content}
            for n, content in enumerate(("Mix the flour and sugar.", "Bake for 30 minutes."), 1)
        ],
        "tags": ["dessert"],
        "imageUrl": f"https://img.example.com/r/{legacy_id}.jpg",
        "sourceUrl": "https://example.com/source",
        "servings": 4,
        "prepTime": 10,
        "cookTime": 30,
        "authorId": uuid_for("user", author_legacy_id),
    }
    data.update(overrides)
    return TransformedRecipe.model_validate(data)


class FakeDestination:
    """In-memory stand-in for the destination migration API.

    ``queue(record_id, ...)`` makes the next requests for that pre-assigned id
    answer with the given status codes (or raise a transport error) before the
    normal success response.
    """

    def __init__(self):
        self.requests: list[tuple[str, dict]] = []
        self.failures: dict[str, list[int | str]] = {}
        self.existing_emails: dict[str, str] = {}

    def queue(self, record_id: str, *outcomes: int | str) -> None:
        self.failures.setdefault(record_id, []).extend(outcomes)

    def requests_to(self, endpoint: str) -> list[dict]:
        return [body for path, body in self.requests if path == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((request.url.path, body))

        queued = self.failures.get(body["id"])
        if queued:
            outcome = queued.pop(0)
            if outcome == CONNECT_ERROR:
                raise httpx.ConnectError("connection refused", request=request)
            if outcome == TIMEOUT:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(outcome, json={"error": f"simulated {outcome}"})

        if request.url.path == USERS_ENDPOINT:
            existing = self.existing_emails.get(body["email"])
            if existing:
                return httpx.Response(200, json={"id": existing, "existed": True})
            return httpx.Response(201, json={"id": body["id"], "existed": False})

        if request.url.path == RECIPES_ENDPOINT:
            return httpx.Response(201, json={"recipe": {"id": body["id"]}})

        return httpx.Response(404, json={"error": "not found"})


class SleepRecorder:
    """Awaitable sleep replacement that records requested durations."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_destination():
    """Provide a fresh FakeDestination."""
    return FakeDestination()


@pytest.fixture
def destination_config():
    """Destination settings pointing at the fake API."""
    return DestinationConfig(url="http://destination.test", token="test-token")


@pytest.fixture
async def destination_client(fake_destination, destination_config):
    """DestinationClient whose transport is the fake API."""
    client = DestinationClient(
        destination_config, transport=httpx.MockTransport(fake_destination.handler)
    )
    yield client
    await client.close()


@pytest.fixture
def sleep_recorder():
    """Provide a SleepRecorder."""
    return SleepRecorder()


@pytest.fixture
def importer_config():
    """Import settings with the documented defaults."""
    return ImporterConfig()


@pytest.fixture
def store(tmp_path):
    """Empty idempotency store rooted in a temp directory."""
    mapping_store = IdempotencyStore(tmp_path / "imported")
    mapping_store.load_mappings()
    return mapping_store


@pytest.fixture
def cli_runner():
    """Provide a CliRunner instance for CLI command testing."""
    return CliRunner()
