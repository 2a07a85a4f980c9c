"""
REST API Connector Module.

Provides connector for synchronizing documents from REST APIs with support
for API key, bearer and basic authentication, offset/cursor/page pagination
and client-side rate limiting.
"""

import asyncio
import json
import logging
from base64 import b64encode
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from fastrag.config.settings import ConnectorSettings
from fastrag.sync.connectors.api.pagination import PaginationEngine
from fastrag.sync.connectors.base import (
    ConnectionStatus,
    ConnectorFactory,
    ConnectorRuntime,
    FetchOutcome,
)
from fastrag.sync.connectors.normalizer import ResponseNormalizer
from fastrag.sync.connectors.rate_limiter import SlidingWindowRateLimiter
from fastrag.sync.errors import (
    DataSourceConnectionError,
    DataSourceError,
    DataSourceTimeoutError,
    ErrorCode,
    classify_exception,
    invalid_config,
)
from fastrag.sync.models import (
    ConnectorMetrics,
    Content,
    DataSource,
    DataSourceHealth,
    DataSourceType,
    SyncResult,
)

logger = logging.getLogger(__name__)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def http_status_error(
    status: int,
    reason: Optional[str],
    source_id: Optional[str] = None,
    retry_after: Optional[str] = None
) -> DataSourceError:
    """Classify a non-2xx HTTP status."""
    reason = reason or ""

    if status in (401, 403):
        return DataSourceError(
            f"Authentication failed: {reason}".strip(),
            ErrorCode.AUTH_ERROR,
            source_id,
            retryable=False,
            status_code=status
        )
    if status == 429:
        return DataSourceError(
            "Rate limit exceeded",
            ErrorCode.RATE_LIMIT_EXCEEDED,
            source_id,
            retryable=True,
            status_code=status,
            retry_after=_parse_retry_after(retry_after)
        )
    if status >= 500:
        return DataSourceError(
            f"Server error: {reason}".strip(),
            ErrorCode.SERVER_ERROR,
            source_id,
            retryable=True,
            status_code=status
        )
    return DataSourceError(
        f"Request failed: {status} {reason}".strip(),
        ErrorCode.UNKNOWN_ERROR,
        source_id,
        retryable=True,
        status_code=status
    )


def classify_http_error(error: BaseException, source_id: Optional[str] = None) -> DataSourceError:
    """Map an exception raised around an HTTP call to a DataSourceError."""
    if isinstance(error, DataSourceError):
        return error

    if isinstance(error, asyncio.TimeoutError):
        return DataSourceTimeoutError(f"Request timeout: {error}".rstrip(": "), source_id, cause=error)

    if isinstance(error, aiohttp.ClientResponseError):
        classified = http_status_error(error.status, error.message, source_id)
        classified.cause = error
        return classified

    if isinstance(error, aiohttp.ClientConnectorError):
        return DataSourceConnectionError(f"Cannot reach API endpoint: {error}", source_id, cause=error)

    if isinstance(error, aiohttp.ServerDisconnectedError):
        return DataSourceError(
            f"Server closed the connection: {error}",
            ErrorCode.SERVER_ERROR,
            source_id,
            retryable=True,
            cause=error
        )

    return classify_exception(error, source_id)


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return value
    return str(value)


def query_items(params: Dict[str, Any]) -> List[Tuple[str, Any]]:
    """Flatten request parameters; list values become repeated keys."""
    items = []
    for key, value in params.items():
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple, set)) else [value]
        items.extend((key, _query_value(v)) for v in values)
    return items


class APIConnector:
    """
    REST API Connector.

    Supports:
    - API key, bearer token and basic authentication
    - Offset, cursor and page pagination under a request cap
    - Sliding-window rate limiting per connector instance
    - Retry with exponential backoff for transient failures
    """

    def __init__(
        self,
        data_source: DataSource,
        settings: Optional[ConnectorSettings] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize REST connector."""
        if data_source.type != DataSourceType.API:
            raise invalid_config(
                f"APIConnector cannot serve a {data_source.type.value} data source",
                data_source.id
            )
        data_source.config.validate_for(DataSourceType.API, data_source.id)

        self.data_source = data_source
        self.api_config = data_source.config
        self.runtime = ConnectorRuntime(
            data_source,
            settings,
            classifier=classify_http_error,
            logger_name=__name__
        )
        self.settings = self.runtime.settings

        self._session = session
        self._owns_session = session is None

        self.rate_limiter = SlidingWindowRateLimiter(
            self.api_config.requests_per_second or self.settings.requests_per_second
        )
        self.pagination = PaginationEngine(
            self.api_config.pagination,
            batch_size=self.runtime.batch_size,
            since_param=self.api_config.since_param,
            max_requests=self.settings.max_pagination_requests,
            log=self.runtime.log
        )
        self.normalizer = ResponseNormalizer(
            data_source.id,
            source_type=DataSourceType.API.value,
            fetch_metadata={"api_endpoint": self.api_config.api_endpoint},
            log=self.runtime.log
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session and probe the endpoint."""
        if self.runtime.is_connected:
            return

        if self._session is None or self._session.closed:
            self._session = self._open_session()
            self._owns_session = True

        try:
            await self.runtime.connect(self._probe)
        except DataSourceError:
            await self._close_session()
            raise

    async def disconnect(self) -> None:
        """Close HTTP session."""
        await self._close_session()
        self.runtime.set_status(ConnectionStatus.DISCONNECTED)
        self.runtime.log.info("Disconnected from API endpoint")

    async def validate_connection(self) -> bool:
        """Make one minimal request and report whether it succeeded."""
        try:
            if self._session and not self._session.closed:
                await self.runtime.execute(self._probe, single_attempt=True)
            else:
                async with self._open_session() as session:
                    await self.runtime.execute(lambda: self._probe(session), single_attempt=True)
            return True
        except DataSourceError as e:
            self.runtime.log.warning(f"Connection validation failed: {e}")
            return False

    async def health_check(self) -> DataSourceHealth:
        """Probe the endpoint once without touching the connection state."""
        if self._session and not self._session.closed:
            return await self.runtime.health_check(self._probe)

        async with self._open_session() as session:
            return await self.runtime.health_check(lambda: self._probe(session))

    async def _fetch(self, since: Optional[datetime]) -> FetchOutcome:
        await self.connect()
        return await self.pagination.collect(
            fetch_page=self._fetch_page,
            normalize=self.normalizer.normalize,
            rate_limiter=self.rate_limiter,
            since=since,
            base_params=self.api_config.query_params
        )

    async def _fetch_page(self, params: Dict[str, Any]) -> Any:
        return await self.runtime.execute(lambda: self._request(params))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        """Authorization headers; API key wins over token, token over basic."""
        credentials = self.api_config.credentials
        if not credentials:
            return {}

        if credentials.api_key:
            return {"X-API-Key": credentials.api_key}
        if credentials.token:
            return {"Authorization": f"Bearer {credentials.token}"}
        if credentials.has_basic:
            encoded = b64encode(
                f"{credentials.username}:{credentials.password}".encode()
            ).decode()
            return {"Authorization": f"Basic {encoded}"}
        return {}

    def _headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": self.settings.user_agent,
            "Accept": "application/json",
        }
        headers.update(self.api_config.headers)
        headers.update(self._auth_headers())
        return headers

    def _open_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.runtime.timeout)
        )

    async def _close_session(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _probe_params(self) -> Dict[str, Any]:
        limit_param = self.api_config.pagination.limit_param if self.api_config.pagination else "limit"
        return {**self.api_config.query_params, limit_param: 1}

    async def _probe(self, session: Optional[aiohttp.ClientSession] = None) -> Any:
        await self.rate_limiter.acquire()
        return await self._request(self._probe_params(), session)

    async def _request(
        self,
        params: Dict[str, Any],
        session: Optional[aiohttp.ClientSession] = None
    ) -> Any:
        """Make one HTTP request and return the decoded JSON body."""
        session = session or self._session
        if session is None or session.closed:
            raise DataSourceConnectionError("Not connected", self.data_source.id)

        method = self.api_config.method.value
        url = self.api_config.api_endpoint
        query = query_items(params)

        self.runtime.log.debug(f"Making API request: {method} {url} params={query}")

        async with session.request(method, url, params=query) as response:
            self.runtime.log.debug(f"Received API response: {response.status} {response.reason}")

            if response.status >= 400:
                raise http_status_error(
                    response.status,
                    response.reason,
                    self.data_source.id,
                    response.headers.get("Retry-After")
                )

            try:
                return await response.json(content_type=None)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DataSourceError(
                    f"Failed to parse API response: {e}",
                    ErrorCode.PARSE_ERROR,
                    self.data_source.id,
                    retryable=False,
                    status_code=response.status,
                    cause=e
                ) from e

    # ------------------------------------------------------------------
    # Sync and accessors
    # ------------------------------------------------------------------

    async def sync(self, incremental: bool = True) -> SyncResult:
        """Sync all documents, or only those changed since last_sync."""
        return await self.runtime.run_sync(self.connect, self._fetch, incremental)

    async def get_content(self, last_sync: Optional[datetime] = None) -> List[Content]:
        """Fetch every document changed after last_sync (all when None)."""
        return (await self._fetch(last_sync)).contents

    @property
    def status(self) -> ConnectionStatus:
        return self.runtime.status

    def get_connection_status(self) -> bool:
        return self.runtime.is_connected

    def get_metrics(self) -> ConnectorMetrics:
        return self.runtime.metrics.snapshot()

    def reset_metrics(self) -> None:
        self.runtime.metrics.reset()

    def get_data_source(self) -> DataSource:
        return self.data_source.model_copy(deep=True)

    def get_last_health_check(self) -> Optional[datetime]:
        return self.runtime.last_health_check

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()


# Register connector
ConnectorFactory.register(DataSourceType.API, APIConnector)
