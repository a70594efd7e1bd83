"""Configuration management for Recipe Bridge using Pydantic.

This module provides type-safe configuration models for the destination API,
the import engine, file locations, checkpointing, verification and logging.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class DestinationConfig(BaseModel):
    """Configuration for the destination application's write API."""

    url: str = Field(default="http://localhost:3000", description="Destination base URL")
    token: str | None = Field(default=None, description="Migration API bearer token")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: float = Field(default=30.0, gt=0, le=600, description="Read timeout in seconds")
    connect_timeout: float = Field(
        default=10.0, gt=0, le=120, description="Connect timeout in seconds"
    )
    rate_limit: int = Field(
        default=0, ge=0, le=1000, description="Maximum requests per second (0 disables)"
    )
    max_connections: int = Field(default=10, ge=1, le=200)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str | None) -> str | None:
        """Treat a blank token as unset."""
        if v is not None and v.strip() == "":
            return None
        return v


class ImporterConfig(BaseModel):
    """Batch import tuning."""

    batch_size: int = Field(default=50, ge=1, le=10000, description="Records per batch")
    dry_run: bool = Field(default=False, description="Validate and report without writes")
    stop_on_error: bool = Field(
        default=False, description="Abort remaining batches after a batch with failures"
    )
    delay_between_batches_ms: int = Field(
        default=100, ge=0, description="Pause between batches in milliseconds"
    )
    user_delay_cap_ms: int = Field(
        default=50, ge=0, description="Upper bound for the pause between user imports"
    )
    max_retries: int = Field(default=3, ge=0, le=20, description="Retries per record")
    retry_backoff_ms: int = Field(
        default=1000, ge=0, description="Base backoff; doubles on each retry"
    )


class PathConfig(BaseModel):
    """Configuration for file paths."""

    data_dir: str = Field(default="migration-data", description="Root of all migration data")
    validated_dir: str | None = Field(
        default=None, description="Validated recipes (latest run under data_dir if unset)"
    )
    transformed_dir: str | None = Field(
        default=None, description="Transformed users (derived from validated_dir if unset)"
    )
    imported_dir: str = Field(
        default="migration-data/imported", description="Mappings and import reports"
    )
    progress_dir: str = Field(default="migration-data/progress", description="Checkpoints")
    verification_dir: str = Field(
        default="migration-data/verification", description="Verification reports"
    )


class ProgressConfig(BaseModel):
    """Checkpoint configuration."""

    auto_save_interval_ms: int = Field(
        default=30000, ge=0, description="Save a checkpoint when this much time has passed"
    )
    migration_id: str | None = Field(
        default=None, description="Checkpoint namespace (defaults to today's date)"
    )


class DatabaseConfig(BaseModel):
    """Read-only connection parameters for one side of the verification."""

    url: str | None = Field(default=None, description="Full SQLAlchemy URL (overrides parts)")
    driver: str = Field(default="postgresql+psycopg")
    host: str = Field(default="localhost")
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="")
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)

    def sqlalchemy_url(self) -> str | URL:
        """Build the connection URL."""
        if self.url:
            return self.url
        return URL.create(
            self.driver,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class VerificationConfig(BaseModel):
    """Post-migration verification configuration."""

    legacy: DatabaseConfig | None = Field(default=None, description="Legacy store")
    destination: DatabaseConfig | None = Field(default=None, description="Destination store")
    spot_check_count: int = Field(default=10, ge=0, le=10000)
    artifact_sample_size: int = Field(default=100, ge=0, le=100000)
    ordering_sample_size: int = Field(default=20, ge=0, le=10000)
    tag_sample_size: int = Field(default=20, ge=0, le=10000)
    ownership_sample_size: int = Field(default=20, ge=0, le=10000)
    random_seed: int | None = Field(
        default=None, description="Seed for sample selection (reproducible runs)"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")
    disable_progress: bool = Field(
        default=False, description="Disable the console progress bar (useful for CI)"
    )
    log_payloads: bool = Field(
        default=False,
        description="Log request/response payloads at DEBUG level (secrets are redacted)",
    )
    max_payload_size: int = Field(default=10000, ge=100, le=1000000)

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    destination: DestinationConfig = Field(
        default_factory=DestinationConfig, description="Destination API configuration"
    )
    importer: ImporterConfig = Field(
        default_factory=ImporterConfig, description="Import engine configuration"
    )
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    progress: ProgressConfig = Field(
        default_factory=ProgressConfig, description="Checkpoint configuration"
    )
    verification: VerificationConfig = Field(
        default_factory=VerificationConfig, description="Verification configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def redacted(self) -> dict:
        """Configuration as a dict with credentials removed (for reports)."""
        data = self.model_dump()
        data["destination"].pop("token", None)
        for side in ("legacy", "destination"):
            database = data["verification"].get(side)
            if database:
                database.pop("password", None)
                database.pop("url", None)
        return data


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    Values from the file take precedence over environment variables.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data):
    """Recursively expand ``${VAR_NAME}`` references in config values.

    Args:
        data: Configuration value (dict, list or scalar)

    Returns:
        The value with environment variables substituted
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data
