"""Configuration management for Dataverse Bridge using Pydantic.

This module provides type-safe configuration models for the migration tool:
the source and target Dataverse organizations, record filters, import
behavior, performance tuning and logging.
"""

import os
from datetime import date
from pathlib import Path
from uuid import UUID

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PathConfig(BaseModel):
    """Configuration for file paths."""

    report_dir: str = Field(default="reports", description="Directory for import reports")


class DataverseInstanceConfig(BaseModel):
    """Configuration for a Dataverse organization (source or target)."""

    url: str = Field(..., description="Organization URL, e.g. https://contoso.crm.dynamics.com")
    token: str = Field(..., description="OAuth bearer token for the Web API")
    api_version: str = Field(default="9.2", description="Web API version")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=30, ge=1, le=1200, description="API request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        if not v.startswith("https://"):
            raise ValueError("URL should use HTTPS for security")
        return v.rstrip("/")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Validate token is not empty."""
        if not v or v.strip() == "":
            raise ValueError("Token cannot be empty")
        return v

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v: str) -> str:
        """Strip a leading 'v' so both '9.2' and 'v9.2' are accepted."""
        return v.lstrip("vV")

    @property
    def api_url(self) -> str:
        """Base URL of the Web API endpoint."""
        return f"{self.url}/api/data/v{self.api_version}"


class FilterConfig(BaseModel):
    """Filters applied when retrieving records from the source organization."""

    create_filter: date | None = Field(
        default=None, description="Only records created on or after this date"
    )
    modify_filter: date | None = Field(
        default=None, description="Only records modified on or after this date"
    )
    website_filter: UUID | None = Field(
        default=None, description="Only records belonging to this portal website"
    )
    active_items_only: bool = Field(
        default=False, description="Only retrieve active records (statecode = 0)"
    )


class ImportOptionsConfig(BaseModel):
    """Behavior of the record import engine."""

    max_sweeps: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum passes over the batch before remaining records are abandoned",
    )
    exempt_entity: str = Field(
        default="annotation",
        description="Entity whose records skip reference analysis (notes/attachments)",
    )
    owner_attribute: str = Field(
        default="ownerid", description="Ownership attribute stripped before every write"
    )
    deactivate_after_import: bool = Field(
        default=True,
        description="Deactivate records that were inactive in the source after import",
    )


class PerformanceConfig(BaseModel):
    """Performance tuning configuration."""

    rate_limit: int = Field(default=20, ge=1, le=100, description="Requests per second limit")
    page_size: int = Field(
        default=5000,
        ge=1,
        le=5000,
        description="Records per page when retrieving (odata.maxpagesize)",
    )
    http_max_connections: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum number of connections in the connection pool",
    )
    http_max_keepalive_connections: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum number of keepalive connections",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log file format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")

    disable_progress: bool = Field(
        default=False, description="Disable the progress bar (useful for CI/logging)"
    )

    log_payloads: bool = Field(
        default=False,
        description=(
            "Enable request/response payload logging at DEBUG level. "
            "WARNING: may log record contents (tokens are redacted)."
        ),
    )
    max_payload_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum payload size (characters) to log. Larger payloads are truncated.",
    )

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

    source: DataverseInstanceConfig = Field(..., description="Source organization")
    target: DataverseInstanceConfig = Field(..., description="Target organization")

    # Entities are retrieved and imported in this order
    entities: list[str] = Field(
        default_factory=list, description="Logical names of the entities to move"
    )

    filters: FilterConfig = Field(default_factory=FilterConfig, description="Record filters")

    import_options: ImportOptionsConfig = Field(
        default_factory=ImportOptionsConfig, description="Import engine options"
    )

    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")

    dry_run: bool = Field(default=False, description="Retrieve and report, but write nothing")

    @field_validator("entities")
    @classmethod
    def validate_entities(cls, v: list[str]) -> list[str]:
        """Normalize logical names and reject duplicates."""
        names = [name.strip().lower() for name in v if name and name.strip()]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate entities in configuration: {', '.join(duplicates)}")
        return names


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

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


def _expand_env_vars(data: dict) -> dict:
    """Recursively expand environment variables in config dict.

    Supports ${VAR_NAME} syntax for environment variable substitution.

    Args:
        data: Configuration dictionary

    Returns:
        dict: Dictionary with expanded environment variables
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
