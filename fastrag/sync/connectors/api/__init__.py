"""
API Connectors Module.

Provides the REST connector and its pagination engine.
"""

from .pagination import PaginationEngine, format_since
from .rest_connector import APIConnector, classify_http_error, http_status_error

__all__ = [
    "APIConnector",
    "PaginationEngine",
    "classify_http_error",
    "format_since",
    "http_status_error",
]
