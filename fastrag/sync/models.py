"""
Data Sync Models.

Data sources, their configuration, the canonical document representation
and the bookkeeping records produced by connectors.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fastrag.sync.errors import invalid_config


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# ============================================================================
# Enumerations
# ============================================================================

class DataSourceType(str, Enum):
    """Data source type."""
    API = "api"
    FILE = "file"
    DATABASE = "database"


class DataSourceStatus(str, Enum):
    """Data source status."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    SYNCING = "syncing"


class HttpMethod(str, Enum):
    """HTTP methods accepted for API sources."""
    GET = "GET"
    POST = "POST"


class PaginationType(str, Enum):
    """Pagination strategies."""
    OFFSET = "offset"   # offset + limit
    CURSOR = "cursor"   # opaque next cursor
    PAGE = "page"       # page number + limit


SUPPORTED_FILE_TYPES = ("pdf", "docx", "txt", "md", "json", "jsonl")


# ============================================================================
# Configuration
# ============================================================================

class Credentials(BaseModel):
    """Credentials used to shape an auth header or a database URL."""
    username: Optional[str] = Field(default=None, min_length=1, max_length=100)
    password: Optional[str] = Field(default=None, min_length=1, max_length=100)
    api_key: Optional[str] = Field(default=None, min_length=1, max_length=200)
    token: Optional[str] = Field(default=None, min_length=1, max_length=500)

    @field_validator("username", "api_key", "token", mode="before")
    @classmethod
    def strip_value(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def has_basic(self) -> bool:
        return bool(self.username and self.password)


class PaginationConfig(BaseModel):
    """Pagination descriptor for API sources."""
    type: PaginationType
    limit_param: str = "limit"
    offset_param: str = "offset"
    cursor_param: str = "cursor"
    page_param: str = "page"

    @model_validator(mode="after")
    def check_param_names(self) -> "PaginationConfig":
        required = {
            PaginationType.OFFSET: "offset_param",
            PaginationType.CURSOR: "cursor_param",
            PaginationType.PAGE: "page_param",
        }[self.type]
        if not getattr(self, required).strip():
            raise ValueError(f"{required} is required for {self.type.value} pagination")
        if not self.limit_param.strip():
            raise ValueError("limit_param cannot be empty")
        return self


class DataSourceConfig(BaseModel):
    """
    Configuration of a single data source.

    One model covers all source types; validate_for() applies the rules of a
    specific type.
    """

    # API sources
    api_endpoint: Optional[str] = None
    method: HttpMethod = HttpMethod.GET
    headers: Dict[str, str] = Field(default_factory=dict)
    query_params: Dict[str, Any] = Field(default_factory=dict)
    pagination: Optional[PaginationConfig] = None
    since_param: str = "since"
    requests_per_second: Optional[int] = Field(default=None, ge=1, le=1000)

    # Shared
    credentials: Optional[Credentials] = None
    timeout: Optional[float] = Field(default=None, ge=1, le=300)  # seconds
    batch_size: Optional[int] = Field(default=None, ge=1, le=10000)
    retry_attempts: Optional[int] = Field(default=None, ge=0, le=10)

    # File sources
    file_path: Optional[str] = Field(default=None, max_length=500)
    file_types: Optional[List[str]] = None
    recursive: bool = False
    exclude_patterns: List[str] = Field(default_factory=list)

    # Database sources
    connection_string: Optional[str] = Field(default=None, max_length=1000)
    query: Optional[str] = Field(default=None, max_length=5000)
    table: Optional[str] = Field(default=None, max_length=100)
    incremental_field: Optional[str] = Field(default=None, max_length=100)

    @field_validator("api_endpoint", "file_path", "connection_string", "table", mode="before")
    @classmethod
    def strip_value(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("file_types")
    @classmethod
    def check_file_types(cls, v):
        if v is None:
            return v
        normalized = [t.lower().lstrip(".") for t in v]
        unsupported = [t for t in normalized if t not in SUPPORTED_FILE_TYPES]
        if unsupported:
            raise ValueError(
                f"Unsupported file types: {', '.join(unsupported)}. "
                f"Supported types: {', '.join(SUPPORTED_FILE_TYPES)}"
            )
        return normalized

    def validate_for(self, source_type: "DataSourceType", source_id: Optional[str] = None) -> None:
        """
        Apply type-specific rules.

        Raises:
            DataSourceError: INVALID_CONFIG when a rule is violated
        """
        source_type = DataSourceType(source_type)

        if source_type == DataSourceType.API:
            if not self.api_endpoint:
                raise invalid_config("API endpoint is required for API data source", source_id)
            parsed = urlparse(self.api_endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise invalid_config("Invalid API endpoint URL format", source_id)
            creds = self.credentials
            if not creds or not (creds.api_key or creds.token or creds.has_basic):
                raise invalid_config(
                    "API credentials are required (api_key, token, or username/password)",
                    source_id
                )

        elif source_type == DataSourceType.FILE:
            if not self.file_path:
                raise invalid_config("File path is required for file data source", source_id)

        elif source_type == DataSourceType.DATABASE:
            if not self.connection_string or "://" not in self.connection_string:
                raise invalid_config(
                    "Database connection string must include a scheme (e.g., postgresql://)",
                    source_id
                )
            if not self.query and not self.table:
                raise invalid_config(
                    "Either query or table must be specified for database data source",
                    source_id
                )
            if not self.credentials or not self.credentials.has_basic:
                raise invalid_config(
                    "Database credentials (username and password) are required",
                    source_id
                )


class DataSource(BaseModel):
    """
    A configured data source.

    Identity and configuration are frozen; only the sync bookkeeping fields
    change after construction.
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()), frozen=True)
    name: str = Field(..., min_length=1, max_length=100, frozen=True)
    type: DataSourceType = Field(..., frozen=True)
    config: DataSourceConfig = Field(default_factory=DataSourceConfig, frozen=True)
    status: DataSourceStatus = DataSourceStatus.INACTIVE
    last_sync: Optional[datetime] = None
    document_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    def mark_synced(self, synced_at: datetime, document_count: int) -> None:
        """Record a successful sync."""
        self.last_sync = synced_at
        self.document_count = document_count
        self.status = DataSourceStatus.ACTIVE
        self.error_message = None

    def mark_failed(self, message: str) -> None:
        """Record a failed sync; last_sync is left untouched."""
        self.status = DataSourceStatus.ERROR
        self.error_message = message[:1000]


# ============================================================================
# Documents
# ============================================================================

class ContentChunk(BaseModel):
    """A chunk of a document, produced by the indexing pipeline."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    text: str
    embedding: List[float] = Field(default_factory=list)
    position: int = Field(..., ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Content(BaseModel):
    """Canonical document handed to the embedding/indexing pipeline."""
    id: str
    source_id: str
    title: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embedding: List[float] = Field(default_factory=list)
    chunks: List[ContentChunk] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1)


# ============================================================================
# Bookkeeping
# ============================================================================

@dataclass
class PaginationState:
    """Where the next page starts. Recomputed from every response."""
    has_more: bool
    next_cursor: Optional[str] = None
    next_offset: Optional[int] = None
    next_page: Optional[int] = None


@dataclass(frozen=True)
class SyncResult:
    """Result of a sync operation."""
    success: bool
    documents_processed: int = 0
    documents_added: int = 0
    documents_updated: int = 0
    documents_deleted: int = 0
    errors: Tuple[str, ...] = ()
    duration_seconds: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectorMetrics:
    """Running totals of connector queries."""
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    average_response_time_ms: float = 0.0
    last_query_time: Optional[datetime] = None

    SMOOTHING_FACTOR = 0.1

    def record(self, success: bool, response_time_ms: float = 0.0) -> None:
        """Record one attempt. Only successes feed the moving average."""
        self.total_queries += 1
        self.last_query_time = utc_now()

        if success:
            self.successful_queries += 1
            alpha = self.SMOOTHING_FACTOR
            self.average_response_time_ms = (
                self.average_response_time_ms * (1 - alpha) + response_time_ms * alpha
            )
        else:
            self.failed_queries += 1

    def snapshot(self) -> "ConnectorMetrics":
        return replace(self)

    def reset(self) -> None:
        self.total_queries = 0
        self.successful_queries = 0
        self.failed_queries = 0
        self.average_response_time_ms = 0.0
        self.last_query_time = None


@dataclass
class DataSourceHealth:
    """Snapshot produced by a single health check."""
    source_id: str
    is_healthy: bool
    last_check: datetime = field(default_factory=utc_now)
    response_time_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
