"""
Shared utilities.
"""

from fastrag.utils.retry import RetryConfig, RetryExecutor

__all__ = ["RetryConfig", "RetryExecutor"]
