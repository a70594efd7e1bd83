"""
Read-only database access for post-migration verification.

Both stores are opened through SQLAlchemy engines. On PostgreSQL every new
connection is switched to read-only transactions so verification can never
write to either side. Queries use ``text()`` with bound parameters and
return plain dicts.
"""

import json
from typing import Any

from sqlalchemy import Engine, create_engine, event, pool, text
from sqlalchemy.exc import SQLAlchemyError

from recipe_migration.client.exceptions import ConfigurationError, VerificationError
from recipe_migration.config import DatabaseConfig
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _set_read_only(dbapi_conn, connection_record):
    """Make every transaction on a PostgreSQL connection read-only."""
    cursor = dbapi_conn.cursor()
    cursor.execute("SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY")
    cursor.close()
    # close the implicit transaction opened by SET
    dbapi_conn.commit()


def create_readonly_engine(config: DatabaseConfig, pool_size: int = 2) -> Engine:
    """
    Create an engine for verification queries.

    Args:
        config: Connection parameters
        pool_size: Connections kept open (PostgreSQL only)

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If the URL is missing or invalid
    """
    if not config.url and not config.database:
        raise ConfigurationError("Database URL or database name is required for verification")

    url = config.sqlalchemy_url()
    backend = str(url).split(":", 1)[0]
    try:
        if backend.startswith("sqlite"):
            engine = create_engine(
                url,
                poolclass=pool.StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(url, pool_size=pool_size, pool_pre_ping=True)
            if backend.startswith("postgresql"):
                event.listen(engine, "connect", _set_read_only)
    except (SQLAlchemyError, ValueError) as e:
        logger.error("readonly_engine_failed", backend=backend, error=str(e))
        raise ConfigurationError(f"Failed to create database engine: {e}") from e

    logger.info("readonly_engine_created", backend=backend)
    return engine


def _decode_json(value: Any, default: Any) -> Any:
    """JSON/array columns come back as strings on some drivers."""
    if value is None:
        return default
    if isinstance(value, str | bytes):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


class _Database:
    """Shared query plumbing."""

    label = "database"

    def __init__(self, engine: Engine):
        self.engine = engine

    def _fetch_all(self, sql: str, **params: Any) -> list[dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error("verification_query_failed", database=self.label, error=str(e))
            raise VerificationError(f"Query against {self.label} database failed: {e}") from e

    def _fetch_one(self, sql: str, **params: Any) -> dict[str, Any] | None:
        rows = self._fetch_all(sql, **params)
        return rows[0] if rows else None

    def _scalar(self, sql: str, **params: Any) -> int:
        row = self._fetch_one(sql, **params)
        if not row:
            return 0
        return int(next(iter(row.values())) or 0)

    def count(self, table: str) -> int:
        """Row count of ``table`` (trusted, fixed table names only)."""
        return self._scalar(f"SELECT COUNT(*) AS count FROM {table}")

    def close(self) -> None:
        self.engine.dispose()


class LegacyDatabase(_Database):
    """Queries against the legacy schema."""

    label = "legacy"

    def get_recipe(self, legacy_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT id, name, description, user_id FROM recipes WHERE id = :id", id=legacy_id
        )

    def get_ingredients(self, legacy_id: int) -> list[str]:
        rows = self._fetch_all(
            "SELECT ingredient FROM ingredients WHERE recipe_id = :id ORDER BY order_number",
            id=legacy_id,
        )
        return [row["ingredient"] or "" for row in rows]

    def get_instructions(self, legacy_id: int) -> list[str]:
        rows = self._fetch_all(
            "SELECT step FROM instructions WHERE recipe_id = :id ORDER BY step_number",
            id=legacy_id,
        )
        return [row["step"] or "" for row in rows]

    def get_tags(self, legacy_id: int) -> list[str]:
        rows = self._fetch_all(
            "SELECT t.name FROM tags t JOIN recipe_tags rt ON t.id = rt.tag_id "
            "WHERE rt.recipe_id = :id ORDER BY t.name",
            id=legacy_id,
        )
        return [row["name"] for row in rows if row["name"]]


# Columns checked for population, in report order
REQUIRED_FIELDS = ("title", "ingredients", "instructions", "author_id")
OPTIONAL_FIELDS = ("description", "image_url", "source_url", "prep_time", "cook_time", "servings")
JSON_ARRAY_FIELDS = ("ingredients", "instructions")


class DestinationDatabase(_Database):
    """Queries against the destination schema."""

    label = "destination"

    def _normalize(self, row: dict[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None
        # uuid columns come back as uuid.UUID under psycopg
        for key in ("id", "author_id"):
            if row.get(key) is not None:
                row[key] = str(row[key])
        for key in ("ingredients", "instructions", "tags"):
            if key in row:
                row[key] = _decode_json(row[key], [])
        return row

    def get_recipe(self, recipe_id: str) -> dict[str, Any] | None:
        return self._normalize(
            self._fetch_one(
                "SELECT id, title, description, ingredients, instructions, tags, author_id "
                "FROM recipes WHERE id = :id",
                id=recipe_id,
            )
        )

    def sample_recipes(self, limit: int) -> list[dict[str, Any]]:
        rows = self._fetch_all(
            "SELECT id, title, description, instructions FROM recipes LIMIT :limit", limit=limit
        )
        return [self._normalize(row) for row in rows]

    def count_populated(self, column: str) -> int:
        """Rows where ``column`` is not NULL (trusted, fixed column names only)."""
        return self._scalar(f"SELECT COUNT(*) AS count FROM recipes WHERE {column} IS NOT NULL")

    def count_empty_arrays(self, column: str) -> int:
        """Rows whose JSON array ``column`` is empty."""
        rows = self._fetch_all(f"SELECT {column} AS value FROM recipes WHERE {column} IS NOT NULL")
        return sum(1 for row in rows if _decode_json(row["value"], None) == [])
