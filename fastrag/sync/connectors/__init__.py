"""
Data Source Connectors Module.

Provides connectors for REST APIs, local file systems and SQL databases.
Importing this package registers every connector with ConnectorFactory.
"""

from fastrag.sync.connectors.base import (
    ConnectionStatus,
    Connector,
    ConnectorFactory,
    ConnectorRuntime,
)
from fastrag.sync.connectors.api import APIConnector
from fastrag.sync.connectors.database import DatabaseConnector
from fastrag.sync.connectors.file import FileConnector

__all__ = [
    "APIConnector",
    "ConnectionStatus",
    "Connector",
    "ConnectorFactory",
    "ConnectorRuntime",
    "DatabaseConnector",
    "FileConnector",
]
