"""
Sync Error Taxonomy.

Every failure that crosses a connector boundary is expressed as a
DataSourceError carrying a machine-readable code and an explicit retryable
flag. The retry executor decides purely on that flag.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error classification codes."""
    CONNECTION_ERROR = "CONNECTION_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    INVALID_CONFIG = "INVALID_CONFIG"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class DataSourceError(Exception):
    """Exception raised when a data source operation fails."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        source_id: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.code = ErrorCode(code)
        self.source_id = source_id
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after = retry_after
        self.cause = cause
        super().__init__(self.message)

    def __str__(self):
        base_msg = f"{self.code.value}: {self.message}"
        if self.status_code:
            base_msg += f" (HTTP {self.status_code})"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "source_id": self.source_id,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
            "cause": str(self.cause) if self.cause else None
        }


class DataSourceConnectionError(DataSourceError):
    """Connecting to the data source failed. Not retryable."""

    def __init__(self, message: str, source_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            code=ErrorCode.CONNECTION_ERROR,
            source_id=source_id,
            retryable=False,
            **kwargs
        )


class DataSourceTimeoutError(DataSourceError):
    """An operation exceeded its deadline. Retryable."""

    def __init__(self, message: str, source_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            code=ErrorCode.TIMEOUT_ERROR,
            source_id=source_id,
            retryable=True,
            **kwargs
        )


def invalid_config(message: str, source_id: Optional[str] = None) -> DataSourceError:
    """Build a non-retryable configuration error."""
    return DataSourceError(message, ErrorCode.INVALID_CONFIG, source_id, retryable=False)


def classify_exception(error: BaseException, source_id: Optional[str] = None) -> DataSourceError:
    """
    Map an arbitrary exception to a DataSourceError.

    Already classified errors pass through unchanged. Unrecognized failures
    are UNKNOWN_ERROR and retryable.
    """
    if isinstance(error, DataSourceError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return DataSourceTimeoutError(
            f"Operation timed out: {error}" if str(error) else "Operation timed out",
            source_id,
            cause=error
        )

    if isinstance(error, (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError)):
        return DataSourceConnectionError(str(error) or error.__class__.__name__, source_id, cause=error)

    message = str(error) or error.__class__.__name__
    return DataSourceError(
        message,
        ErrorCode.UNKNOWN_ERROR,
        source_id,
        retryable=True,
        cause=error
    )
