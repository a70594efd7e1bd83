"""Logging configuration for Recipe Bridge using structlog.

Console output is rendered by rich for operators watching an import; the
optional log file receives one JSON object per line, with every bound field
(``legacy_id``, ``batch``, ``migration_id`` ...) kept as a key so runs can be
audited and grepped afterwards.
"""

import json
import logging
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

APP_NAME = "recipe-bridge"
APP_VERSION = "0.1.0"

# Substrings that mark a payload key as sensitive (case-insensitive)
SENSITIVE_FIELDS = (
    "token",
    "password",
    "secret",
    "api_key",
    "authorization",
)

REDACTED = "[REDACTED]"

_STATUS_EVENTS = (
    (range(200, 300), logging.DEBUG, "api_request_success"),
    (range(400, 500), logging.WARNING, "api_request_client_error"),
    (range(500, 600), logging.INFO, "api_request_server_error"),
)


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the application name and version."""
    event_dict.setdefault("app", APP_NAME)
    event_dict.setdefault("version", APP_VERSION)
    return event_dict


def _level(name: str | None, default: int) -> int:
    return getattr(logging, name.upper(), default) if name else default


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _file_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ]
    else:
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ]
    return structlog.stdlib.ProcessorFormatter(
        processors=processors, foreign_pre_chain=_shared_processors()
    )


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default: WARNING
        log_format: File output format ('json' or 'console').
                   Console output always uses human-readable format.
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG for detailed file logs)
    """
    console_level = _level(level, logging.WARNING)
    file_log_level = _level(file_level, logging.DEBUG)

    rich_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)
    rich_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(_file_formatter(log_format))
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            min(console_level, file_log_level) if log_file else console_level
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """Log one destination API call at a level chosen by its status code.

    Server errors log at INFO; the importer reports the final outcome once
    retries are exhausted.
    """
    fields: dict[str, Any] = {"method": method, "url": url, **extra}
    if duration_ms is not None:
        fields["duration_ms"] = round(duration_ms, 2)

    if status_code is None:
        logger.info("api_request_started", **fields)
        return

    fields["status_code"] = status_code
    for codes, level, event in _STATUS_EVENTS:
        if status_code in codes:
            logger.log(level, event, **fields)
            return
    logger.info("api_request_completed", **fields)


def log_migration_progress(
    logger: structlog.stdlib.BoundLogger,
    phase: str,
    entity_type: str,
    completed: int,
    total: int,
    **extra: Any,
) -> None:
    """Log records handled so far, with a percentage of the run's total."""
    logger.info(
        "migration_progress",
        phase=phase,
        entity_type=entity_type,
        completed=completed,
        total=total,
        percentage=round(completed / total * 100, 2) if total > 0 else 0.0,
        **extra,
    )


def log_checkpoint(
    logger: structlog.stdlib.BoundLogger,
    checkpoint_path: str,
    phase: str,
    items_processed: int,
    **extra: Any,
) -> None:
    logger.info(
        "checkpoint_saved",
        checkpoint_path=checkpoint_path,
        phase=phase,
        items_processed=items_processed,
        **extra,
    )


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    context: str,
    **extra: Any,
) -> None:
    """Log an exception with its type, message and traceback."""
    logger.error(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
        **extra,
        exc_info=True,
    )


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy of ``payload`` with sensitive values replaced by ``[REDACTED]``.

    Legacy user records carry a ``password`` field (always null after the
    transform stage, but redacted regardless).
    """
    if isinstance(payload, dict | list) and max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(payload, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """Pretty JSON for ``payload``, cut to ``max_size`` characters."""
    try:
        text = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        text = str(payload)

    if len(text) <= max_size:
        return text
    return text[:max_size] + f"\n... [TRUNCATED - {len(text)} total chars]"


def should_log_payloads(logger: structlog.stdlib.BoundLogger, log_payloads_enabled: bool) -> bool:
    """Payloads are logged only with ``log_payloads`` on and DEBUG enabled."""
    if not log_payloads_enabled:
        return False

    try:
        return logger.is_enabled_for(logging.DEBUG)
    except AttributeError:
        # unconfigured structlog
        return logging.getLogger().isEnabledFor(logging.DEBUG)
