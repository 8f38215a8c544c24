"""
Configuration Management for shipwatch
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from updates.filters import build_filter
from updates.types import CPUCopyMode, HeadFailureWarning, UpdateParams
from utils.duration_parser import parse_duration_seconds

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


class HealthCheckFilter(logging.Filter):
    """Filter out successful health check requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200 OK' in message or '200' in str(getattr(record, 'args', '')):
            if '/health' in message:
                return False
        return True


def setup_logging(level: Optional[str] = None):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    os.makedirs(LOG_DIR, mode=0o700, exist_ok=True)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to prevent file descriptor leaks
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = getattr(logging, (level or AppConfig.LOG_LEVEL).upper(), logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, 'shipwatch.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_list(name: str) -> List[str]:
    """Comma (or whitespace) separated list"""
    value = os.getenv(name, '')
    return [item for item in value.replace(',', ' ').split() if item]


def _env_duration(name: str, default: str) -> float:
    return parse_duration_seconds(os.getenv(name, default))


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('SHIPWATCH_HOST', '0.0.0.0')
    PORT = int(os.getenv('SHIPWATCH_PORT', 8080))

    # Logging
    LOG_LEVEL = os.getenv('SHIPWATCH_LOG_LEVEL', 'INFO')

    # Scheduling
    POLL_INTERVAL = _env_duration('SHIPWATCH_POLL_INTERVAL', '24h')
    RUN_ONCE = _env_bool('SHIPWATCH_RUN_ONCE')

    # Update behaviour
    CLEANUP = _env_bool('SHIPWATCH_CLEANUP')
    NO_RESTART = _env_bool('SHIPWATCH_NO_RESTART')
    NO_PULL = _env_bool('SHIPWATCH_NO_PULL')
    MONITOR_ONLY = _env_bool('SHIPWATCH_MONITOR_ONLY')
    NO_SELF_UPDATE = _env_bool('SHIPWATCH_NO_SELF_UPDATE')
    LIFECYCLE_HOOKS = _env_bool('SHIPWATCH_LIFECYCLE_HOOKS')
    LIFECYCLE_UID = int(os.getenv('SHIPWATCH_LIFECYCLE_UID', 0))
    LIFECYCLE_GID = int(os.getenv('SHIPWATCH_LIFECYCLE_GID', 0))
    ROLLING_RESTART = _env_bool('SHIPWATCH_ROLLING_RESTART')
    CPU_COPY_MODE = os.getenv('SHIPWATCH_CPU_COPY_MODE', 'auto').lower()
    TIMEOUT = _env_duration('SHIPWATCH_TIMEOUT', '10s')
    HEALTH_TIMEOUT = _env_duration('SHIPWATCH_HEALTH_TIMEOUT', '5m')
    STOP_RETRIES = int(os.getenv('SHIPWATCH_STOP_RETRIES', 0))
    LABEL_PRECEDENCE = _env_bool('SHIPWATCH_LABEL_PRECEDENCE')

    # Container selection
    LABEL_ENABLE = _env_bool('SHIPWATCH_LABEL_ENABLE')
    SCOPE = os.getenv('SHIPWATCH_SCOPE', '')
    CONTAINER_NAMES = _env_list('SHIPWATCH_CONTAINER_NAMES')
    DISABLE_CONTAINERS = _env_list('SHIPWATCH_DISABLE_CONTAINERS')
    INCLUDE_STOPPED = _env_bool('SHIPWATCH_INCLUDE_STOPPED')
    INCLUDE_RESTARTING = _env_bool('SHIPWATCH_INCLUDE_RESTARTING')

    # Registry
    WARN_ON_HEAD_FAILURE = os.getenv('SHIPWATCH_WARN_ON_HEAD_FAILURE', 'auto').lower()

    # HTTP API
    HTTP_API_UPDATE = _env_bool('SHIPWATCH_HTTP_API_UPDATE')
    HTTP_API_TOKEN = os.getenv('SHIPWATCH_HTTP_API_TOKEN', '')
    HTTP_API_METRICS = _env_bool('SHIPWATCH_HTTP_API_METRICS')

    # Notifications
    NOTIFICATION_URLS = _env_list('SHIPWATCH_NOTIFICATION_URL')
    NOTIFICATION_TITLE_TAG = os.getenv('SHIPWATCH_NOTIFICATION_TITLE_TAG', '')

    # Docker connection (None = docker.from_env())
    DOCKER_HOST = os.getenv('SHIPWATCH_DOCKER_HOST') or None

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        valid_modes = [mode.value for mode in CPUCopyMode]
        if cls.CPU_COPY_MODE not in valid_modes:
            raise ValueError(f"Invalid CPU copy mode: {cls.CPU_COPY_MODE} (expected one of {valid_modes})")

        valid_warnings = [warning.value for warning in HeadFailureWarning]
        if cls.WARN_ON_HEAD_FAILURE not in valid_warnings:
            raise ValueError(
                f"Invalid head failure warning: {cls.WARN_ON_HEAD_FAILURE} (expected one of {valid_warnings})"
            )

        if cls.STOP_RETRIES < 0:
            raise ValueError(f"Stop retries must not be negative: {cls.STOP_RETRIES}")

        if cls.POLL_INTERVAL <= 0:
            raise ValueError(f"Poll interval must be positive: {cls.POLL_INTERVAL}")

        if (cls.HTTP_API_UPDATE or cls.HTTP_API_METRICS) and not cls.HTTP_API_TOKEN:
            raise ValueError("SHIPWATCH_HTTP_API_TOKEN is required when the HTTP API is enabled")

        return True

    @classmethod
    def build_update_params(cls, logger: Optional[logging.Logger] = None) -> UpdateParams:
        """Build cycle parameters and the container filter from the configuration."""
        container_filter, description = build_filter(
            cls.CONTAINER_NAMES,
            cls.DISABLE_CONTAINERS,
            cls.LABEL_ENABLE,
            cls.SCOPE,
        )
        return UpdateParams(
            filter=container_filter,
            filter_description=description,
            cleanup=cls.CLEANUP,
            no_restart=cls.NO_RESTART,
            no_pull=cls.NO_PULL,
            monitor_only=cls.MONITOR_ONLY,
            no_self_update=cls.NO_SELF_UPDATE,
            lifecycle_hooks=cls.LIFECYCLE_HOOKS,
            lifecycle_uid=cls.LIFECYCLE_UID,
            lifecycle_gid=cls.LIFECYCLE_GID,
            rolling_restart=cls.ROLLING_RESTART,
            cpu_copy_mode=CPUCopyMode(cls.CPU_COPY_MODE),
            timeout=cls.TIMEOUT,
            health_timeout=cls.HEALTH_TIMEOUT,
            stop_retries=cls.STOP_RETRIES,
            label_precedence=cls.LABEL_PRECEDENCE,
            logger=logger,
        )
