"""
CLI context for Recipe Bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration and the stores shared between commands.
"""

from dataclasses import dataclass, field
from pathlib import Path

from recipe_migration.client.exceptions import ConfigurationError
from recipe_migration.config import MigrationConfig, load_config_from_yaml
from recipe_migration.migration.idempotency import IdempotencyStore
from recipe_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Path to configuration file (environment only when None)
        log_level: Console logging level
        log_file: Optional log file path
        config: Loaded migration configuration
        store: Idempotency store over ``paths.imported_dir``
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _store: IdempotencyStore | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration.

        Without a config file the settings come from the environment
        (``DESTINATION__TOKEN``, ``IMPORTER__BATCH_SIZE`` ...).
        """
        if self._config is None:
            try:
                if self.config_path is None:
                    logger.debug("config_from_environment")
                    self._config = MigrationConfig()
                else:
                    logger.debug("config_loading", config_path=str(self.config_path))
                    self._config = load_config_from_yaml(self.config_path)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f"Invalid configuration: {e}") from e

        return self._config

    @property
    def store(self) -> IdempotencyStore:
        """Get or load the idempotency store."""
        if self._store is None:
            self._store = IdempotencyStore(self.config.paths.imported_dir)
            self._store.load_mappings()

        return self._store
