"""
Base Connector Module.

Defines the Connector capability protocol and the ConnectorRuntime helper
that every connector implementation holds for connection state, retries,
timeouts, metrics, health checks and sync bookkeeping.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, List, Optional, Protocol, Type, runtime_checkable
)

from fastrag.config.settings import ConnectorSettings
from fastrag.sync.errors import (
    DataSourceConnectionError,
    DataSourceError,
    ErrorCode,
)
from fastrag.sync.models import (
    ConnectorMetrics,
    Content,
    DataSource,
    DataSourceHealth,
    DataSourceStatus,
    DataSourceType,
    SyncResult,
    utc_now,
)
from fastrag.system.logging_config import get_logger
from fastrag.utils.retry import Classifier, RetryConfig, RetryExecutor

logger = logging.getLogger(__name__)

# Failures that end a sync by raising instead of being reported in SyncResult
FATAL_ERROR_CODES = frozenset({
    ErrorCode.CONNECTION_ERROR,
    ErrorCode.AUTH_ERROR,
    ErrorCode.INVALID_CONFIG,
})


class ConnectionStatus(str, Enum):
    """Connection status enumeration."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class FetchOutcome:
    """Documents collected by one fetch, in source order."""
    contents: List[Content] = field(default_factory=list)
    requests: int = 0
    truncated: bool = False


@runtime_checkable
class Connector(Protocol):
    """Capability interface implemented by every data source connector."""

    data_source: DataSource

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def validate_connection(self) -> bool:
        ...

    async def sync(self, incremental: bool = True) -> SyncResult:
        ...

    async def get_content(self, last_sync: Optional[datetime] = None) -> List[Content]:
        ...

    async def health_check(self) -> DataSourceHealth:
        ...

    def get_metrics(self) -> ConnectorMetrics:
        ...


class ConnectorRuntime:
    """
    Shared machinery composed into each connector.

    Owns the connection status, the metrics, and the retry executor built
    from the source configuration and connector settings.
    """

    def __init__(
        self,
        data_source: DataSource,
        settings: Optional[ConnectorSettings] = None,
        classifier: Optional[Classifier] = None,
        logger_name: str = __name__
    ):
        self.data_source = data_source
        self.config = data_source.config
        self.settings = settings or ConnectorSettings()
        self.status = ConnectionStatus.DISCONNECTED
        self.metrics = ConnectorMetrics()
        self.last_health_check: Optional[datetime] = None
        self.log = get_logger(
            logger_name,
            source_id=data_source.id,
            source_name=data_source.name,
            source_type=data_source.type.value
        )

        retry_attempts = self.config.retry_attempts
        if retry_attempts is None:
            retry_attempts = self.settings.retry_attempts

        self.retry_config = RetryConfig(
            max_attempts=max(1, retry_attempts),
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            jitter_range=self.settings.retry_jitter_range,
            timeout=self.timeout
        )
        self.executor = RetryExecutor(
            self.retry_config,
            source_id=data_source.id,
            classifier=classifier,
            on_attempt=self.metrics.record,
            log=self.log
        )

    @property
    def timeout(self) -> float:
        return self.config.timeout or self.settings.default_timeout

    @property
    def batch_size(self) -> int:
        return self.config.batch_size or self.settings.default_batch_size

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def set_status(self, status: ConnectionStatus) -> None:
        """Update connection status."""
        self.status = status
        self.log.debug(f"Connector status changed to: {status.value}")

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        single_attempt: bool = False
    ) -> Any:
        """Run an operation through the retry/timeout executor."""
        return await self.executor.async_execute(
            operation,
            max_attempts=1 if single_attempt else None
        )

    async def connect(self, probe: Callable[[], Awaitable[Any]]) -> None:
        """
        Transition to CONNECTED once the probe succeeds.

        Raises:
            DataSourceError: AUTH_ERROR as is, any other failure as
                DataSourceConnectionError; status stays DISCONNECTED
        """
        if self.is_connected:
            return

        self.set_status(ConnectionStatus.CONNECTING)
        self.log.info("Connecting to data source")

        try:
            await self.execute(probe)
        except DataSourceError as e:
            self.set_status(ConnectionStatus.DISCONNECTED)
            self.log.error(f"Connection failed: {e}")
            if e.code in (ErrorCode.AUTH_ERROR, ErrorCode.CONNECTION_ERROR):
                raise
            raise DataSourceConnectionError(
                f"Failed to validate connection: {e.message}",
                self.data_source.id,
                status_code=e.status_code,
                cause=e
            ) from e

        self.set_status(ConnectionStatus.CONNECTED)
        self.log.info("Successfully connected to data source")

    async def health_check(self, probe: Callable[[], Awaitable[Any]]) -> DataSourceHealth:
        """
        Run the probe once and report, never raise.

        Connection status is left as it was.
        """
        started = time.monotonic()
        health = DataSourceHealth(source_id=self.data_source.id, is_healthy=False)

        try:
            await self.execute(probe, single_attempt=True)
            health.is_healthy = True
            health.response_time_ms = (time.monotonic() - started) * 1000
            self.log.debug(
                f"Health check completed: healthy in {health.response_time_ms:.1f}ms"
            )
        except DataSourceError as e:
            health.response_time_ms = (time.monotonic() - started) * 1000
            health.error_count = 1
            health.last_error = e.message
            self.log.error(f"Health check failed: {e}")

        self.last_health_check = health.last_check
        return health

    async def run_sync(
        self,
        ensure_connected: Callable[[], Awaitable[None]],
        fetch: Callable[[Optional[datetime]], Awaitable[FetchOutcome]],
        incremental: bool
    ) -> SyncResult:
        """
        Collect every document and settle the sync bookkeeping.

        last_sync advances to the start time of this sync only when it
        succeeds; a failed sync discards what it collected.
        """
        started = time.monotonic()
        sync_started_at = utc_now()
        since = self.data_source.last_sync if incremental else None

        self.log.info(
            f"Starting sync (incremental={incremental}, "
            f"since={since.isoformat() if since else None})"
        )

        try:
            await ensure_connected()
        except DataSourceError as e:
            self.data_source.mark_failed(str(e))
            raise

        self.data_source.status = DataSourceStatus.SYNCING

        try:
            outcome = await fetch(since)
        except DataSourceError as e:
            self.data_source.mark_failed(str(e))
            if e.code in FATAL_ERROR_CODES:
                self.log.error(f"Sync aborted: {e}")
                raise

            duration = time.monotonic() - started
            self.log.error(f"Sync failed after {duration:.2f}s: {e}")
            return SyncResult(
                success=False,
                errors=(str(e),),
                duration_seconds=duration,
                metadata={"error_code": e.code.value, "incremental": incremental}
            )

        processed = len(outcome.contents)
        self.data_source.mark_synced(sync_started_at, processed)
        duration = time.monotonic() - started

        self.log.info(f"Sync completed: {processed} documents in {duration:.2f}s")
        return SyncResult(
            success=True,
            documents_processed=processed,
            documents_added=processed,
            duration_seconds=duration,
            metadata={
                "requests": outcome.requests,
                "truncated": outcome.truncated,
                "incremental": incremental
            }
        )


class ConnectorFactory:
    """Factory for creating connector instances."""

    _connectors: Dict[DataSourceType, Type] = {}

    @classmethod
    def register(cls, source_type: DataSourceType, connector_class: Type) -> None:
        """Register a connector type."""
        cls._connectors[DataSourceType(source_type)] = connector_class
        logger.debug(f"Registered connector type: {DataSourceType(source_type).value}")

    @classmethod
    def create(cls, data_source: DataSource, **kwargs) -> Connector:
        """
        Create a connector instance.

        Args:
            data_source: Data source to connect to
            **kwargs: Passed to the connector constructor

        Returns:
            Connector instance

        Raises:
            ValueError: If connector type not registered
        """
        if data_source.type not in cls._connectors:
            raise ValueError(f"Unknown connector type: {data_source.type.value}")

        return cls._connectors[data_source.type](data_source, **kwargs)

    @classmethod
    def list_types(cls) -> List[str]:
        """List registered connector types."""
        return [t.value for t in cls._connectors]
