"""
CLI context for Dataverse Bridge.

This module provides the context object that is passed to all CLI commands,
containing the configuration and the organization clients.
"""

from dataclasses import dataclass, field
from pathlib import Path

from dataverse_migration.client.dataverse_client import DataverseClient
from dataverse_migration.config import (
    DataverseInstanceConfig,
    MigrationConfig,
    load_config_from_yaml,
)
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    This object holds configuration and clients that are shared across CLI
    commands. It is passed via Click's context mechanism.

    Attributes:
        config_path: Path to configuration file
        log_level: Logging level
        log_file: Optional log file path
        config: Loaded migration configuration
        source_client: Client for the source organization
        target_client: Client for the target organization
    """

    config_path: Path | None = None
    log_level: str = "INFO"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _source_client: DataverseClient | None = field(default=None, init=False, repr=False)
    _target_client: DataverseClient | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ValueError(
                    "Configuration file path not provided. "
                    "Use --config option or set DATAVERSE_BRIDGE_CONFIG environment variable."
                )

            logger.debug("loading_configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)
            logger.debug("configuration_loaded")

        return self._config

    def _create_client(self, instance: DataverseInstanceConfig) -> DataverseClient:
        performance = self.config.performance
        return DataverseClient(
            config=instance,
            rate_limit=performance.rate_limit,
            log_payloads=self.config.logging.log_payloads,
            max_payload_size=self.config.logging.max_payload_size,
            max_connections=performance.http_max_connections,
            max_keepalive_connections=performance.http_max_keepalive_connections,
        )

    @property
    def source_client(self) -> DataverseClient:
        """Get or create the source organization client."""
        if self._source_client is None:
            logger.debug("creating_source_client", url=self.config.source.url)
            self._source_client = self._create_client(self.config.source)

        return self._source_client

    @property
    def target_client(self) -> DataverseClient:
        """Get or create the target organization client."""
        if self._target_client is None:
            logger.debug("creating_target_client", url=self.config.target.url)
            self._target_client = self._create_client(self.config.target)

        return self._target_client

    async def close_clients(self) -> None:
        """Close the clients created so far.

        Clients are bound to the event loop they were used in, so commands
        close them before their ``asyncio.run`` call returns.
        """
        if self._source_client is not None:
            await self._source_client.close()
            self._source_client = None

        if self._target_client is not None:
            await self._target_client.close()
            self._target_client = None

    def __enter__(self) -> "MigrationContext":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        logger.debug("context_cleanup_complete")
