"""
Database Connectors Module.
"""

from .sql_connector import DatabaseConnector, classify_database_error

__all__ = ["DatabaseConnector", "classify_database_error"]
