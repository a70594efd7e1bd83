"""Durable file helpers shared by the mapping store, checkpoints and reports."""

import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


def atomic_write_text(path: str | Path, content: str) -> Path:
    """Write ``content`` to ``path`` through a temp file and a rename.

    The temp file lives in the destination directory so the final
    ``os.replace`` never crosses a filesystem boundary. A crash mid-write
    leaves the previous version of the file untouched.

    Args:
        path: Destination file
        content: Text to write (UTF-8)

    Returns:
        The destination path

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise

    return path


def atomic_write_json(path: str | Path, data: Any) -> Path:
    """Serialise ``data`` as indented JSON and write it atomically."""
    return atomic_write_text(path, json.dumps(data, indent=2, default=str))


def file_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 timestamp safe for use in file names (``:`` and ``.`` become ``-``)."""
    moment = moment or datetime.now(UTC)
    return moment.isoformat().replace(":", "-").replace(".", "-").replace("+", "-")


def unique_path(path: str | Path) -> Path:
    """Return ``path`` or, if it already exists, the first free ``name-N.ext`` sibling.

    Report files are additive: a second run in the same second never
    overwrites the first run's evidence.
    """
    path = Path(path)
    if not path.exists():
        return path

    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1
