"""
Data Sync Module.

Data source models, the error taxonomy and the connectors that pull
documents from APIs, files and databases.
"""

from fastrag.sync.errors import (
    DataSourceConnectionError,
    DataSourceError,
    DataSourceTimeoutError,
    ErrorCode,
)
from fastrag.sync.models import (
    Content,
    DataSource,
    DataSourceConfig,
    DataSourceHealth,
    DataSourceStatus,
    DataSourceType,
    SyncResult,
)

__all__ = [
    "Content",
    "DataSource",
    "DataSourceConfig",
    "DataSourceConnectionError",
    "DataSourceError",
    "DataSourceHealth",
    "DataSourceStatus",
    "DataSourceTimeoutError",
    "DataSourceType",
    "ErrorCode",
    "SyncResult",
]
