"""
Centralized Logging Configuration for FastRAG Sync.

Provides structured logging that tags every record with the data source it
belongs to.
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional

from fastrag.config.settings import AppSettings


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured logging."""

    def format(self, record):
        # Add custom fields to log record
        record.service_name = getattr(record, 'service_name', 'fastrag-sync')
        record.source_id = getattr(record, 'source_id', '-')
        record.source_name = getattr(record, 'source_name', '-')
        record.source_type = getattr(record, 'source_type', '-')

        # Format timestamp
        record.timestamp = datetime.fromtimestamp(record.created).isoformat()

        return super().format(record)


def setup_logging(app_settings: Optional[AppSettings] = None) -> None:
    """
    Setup logging for the sync service.

    Console output always; rotating file handlers only when a log directory
    is configured.
    """
    app_settings = app_settings or AppSettings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, app_settings.log_level.upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if app_settings.debug else logging.INFO)

    console_format = (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(source_id)s] %(message)s"
    )

    if app_settings.debug:
        console_format = (
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(filename)s:%(lineno)d] - [%(source_id)s] %(message)s"
        )

    console_handler.setFormatter(StructuredFormatter(console_format))
    root_logger.addHandler(console_handler)

    if app_settings.log_dir:
        os.makedirs(app_settings.log_dir, exist_ok=True)

        sync_file_handler = logging.handlers.RotatingFileHandler(
            filename=os.path.join(app_settings.log_dir, "sync.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        sync_file_handler.setLevel(logging.INFO)
        sync_file_handler.setFormatter(StructuredFormatter(
            "%(timestamp)s - %(name)s - %(levelname)s - %(service_name)s - "
            "%(source_id)s - %(source_type)s - %(message)s"
        ))
        root_logger.addHandler(sync_file_handler)

        # Errors and above
        error_file_handler = logging.handlers.RotatingFileHandler(
            filename=os.path.join(app_settings.log_dir, "errors.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10
        )
        error_file_handler.setLevel(logging.ERROR)
        error_file_handler.setFormatter(StructuredFormatter(
            "%(timestamp)s - %(name)s - %(levelname)s - %(service_name)s - "
            "%(source_id)s - %(source_name)s - %(source_type)s - %(message)s"
        ))
        root_logger.addHandler(error_file_handler)

    # Quiet noisy libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.info("Logging configuration initialized")


class LoggerAdapter(logging.LoggerAdapter):
    """Custom logger adapter for adding context to log messages."""

    def __init__(self, logger, extra=None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        # Add extra context to log record
        if 'extra' not in kwargs:
            kwargs['extra'] = {}

        kwargs['extra'].update(self.extra)
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """Get a logger with optional context."""
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
