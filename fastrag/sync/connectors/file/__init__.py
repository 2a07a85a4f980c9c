"""
File Connectors Module.
"""

from .local_connector import FileConnector

__all__ = ["FileConnector"]
