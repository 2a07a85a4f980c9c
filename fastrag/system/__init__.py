"""
System utilities: logging setup.
"""

from fastrag.system.logging_config import LoggerAdapter, get_logger, setup_logging

__all__ = ["LoggerAdapter", "get_logger", "setup_logging"]
