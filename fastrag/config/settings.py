"""
FastRAG Sync Configuration Settings
"""
import os
from typing import Optional
from dataclasses import dataclass, field


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default value"""
    return os.getenv(key, default)


def get_env_int(key: str, default: int = 0) -> int:
    """Get environment variable as integer"""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get environment variable as float"""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get environment variable as boolean"""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on')


@dataclass
class ConnectorSettings:
    """Defaults shared by every data source connector"""

    user_agent: str = field(default_factory=lambda: get_env("SYNC_USER_AGENT", "FastRAG-Sync/1.0"))

    # Request settings
    default_timeout: float = field(default_factory=lambda: get_env_float("SYNC_DEFAULT_TIMEOUT", 30.0))
    default_batch_size: int = field(default_factory=lambda: get_env_int("SYNC_DEFAULT_BATCH_SIZE", 100))

    # Retry policy
    retry_attempts: int = field(default_factory=lambda: get_env_int("SYNC_RETRY_ATTEMPTS", 3))
    retry_base_delay: float = field(default_factory=lambda: get_env_float("SYNC_RETRY_BASE_DELAY", 1.0))
    retry_max_delay: float = field(default_factory=lambda: get_env_float("SYNC_RETRY_MAX_DELAY", 30.0))
    retry_backoff_multiplier: float = field(default_factory=lambda: get_env_float("SYNC_RETRY_BACKOFF_MULTIPLIER", 2.0))
    retry_jitter_range: float = field(default_factory=lambda: get_env_float("SYNC_RETRY_JITTER_RANGE", 0.1))

    # Rate limiting and pagination
    requests_per_second: int = field(default_factory=lambda: get_env_int("SYNC_REQUESTS_PER_SECOND", 10))
    max_pagination_requests: int = field(default_factory=lambda: get_env_int("SYNC_MAX_PAGINATION_REQUESTS", 100))


@dataclass
class AppSettings:
    """Application configuration settings"""

    app_name: str = field(default_factory=lambda: get_env("APP_NAME", "FastRAG Sync"))
    app_version: str = field(default_factory=lambda: get_env("APP_VERSION", "1.0.0"))
    debug: bool = field(default_factory=lambda: get_env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_dir: Optional[str] = field(default_factory=lambda: get_env("LOG_DIR") or None)


@dataclass
class Settings:
    """Main settings class that combines all configuration sections"""

    app: AppSettings = field(default_factory=AppSettings)
    connector: ConnectorSettings = field(default_factory=ConnectorSettings)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build a fresh Settings object from the environment.

    Args:
        env_file: Optional path to a .env file; the default lookup is used otherwise

    Returns:
        Settings populated from environment variables
    """
    from dotenv import load_dotenv

    if env_file:
        load_dotenv(env_file, override=True)
    else:
        load_dotenv()

    return Settings()
