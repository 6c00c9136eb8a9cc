#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Configuration
Centralized configuration with validation

Version: 1.0.0
Date: 2025-07-10
"""

import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass
from enum import Enum

import pytz

class Environment(Enum):
    """Runtime environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

class LogLevel(Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

@dataclass
class BackendConfig:
    """Hosted backend (Supabase) connection"""
    url: Optional[str] = None
    anon_key: Optional[str] = None
    access_token: Optional[str] = None
    request_timeout: int = 15

@dataclass
class SyncSettings:
    """Timing knobs of the synchronization engine (seconds)"""
    debounce_delay: float = 0.3
    max_retry_attempts: int = 3
    retry_base_delay: float = 1.0
    cache_ttl_seconds: float = 300.0
    error_display_seconds: float = 5.0

@dataclass
class RealtimeConfig:
    """Live change channel"""
    heartbeat_interval: float = 25.0
    reconnect_attempts: int = 5
    reconnect_delay: float = 2.0

@dataclass
class ConnectivityConfig:
    """Connectivity probing"""
    probe_interval: float = 15.0
    probe_timeout: float = 5.0

@dataclass
class ReminderConfig:
    """Daily reminder job"""
    enabled: bool = False
    hour: int = 22
    minute: int = 30
    timezone: str = "UTC"

def _env_bool(key: str, default: str) -> bool:
    return os.getenv(key, default).lower() == 'true'

class AppConfig:
    """Main configuration class"""

    def __init__(self):
        self.environment = Environment(os.getenv('ENVIRONMENT', 'development'))
        self._load_config()
        self._validate_config()

    def _load_config(self):
        """Load configuration from environment variables"""

        self.backend = BackendConfig(
            url=os.getenv('SUPABASE_URL'),
            anon_key=os.getenv('SUPABASE_ANON_KEY'),
            access_token=os.getenv('SUPABASE_ACCESS_TOKEN'),
            request_timeout=int(os.getenv('REQUEST_TIMEOUT', 15))
        )

        # Milliseconds in the environment, seconds in code
        self.sync = SyncSettings(
            debounce_delay=int(os.getenv('DEBOUNCE_DELAY_MS', 300)) / 1000,
            max_retry_attempts=int(os.getenv('MAX_RETRY_ATTEMPTS', 3)),
            retry_base_delay=int(os.getenv('RETRY_DELAY_MS', 1000)) / 1000,
            cache_ttl_seconds=float(os.getenv('CACHE_TTL_SECONDS', 300)),
            error_display_seconds=float(os.getenv('ERROR_DISPLAY_SECONDS', 5))
        )

        self.realtime = RealtimeConfig(
            heartbeat_interval=float(os.getenv('REALTIME_HEARTBEAT_SECONDS', 25)),
            reconnect_attempts=int(os.getenv('REALTIME_RECONNECT_ATTEMPTS', 5)),
            reconnect_delay=float(os.getenv('REALTIME_RECONNECT_DELAY', 2))
        )

        self.connectivity = ConnectivityConfig(
            probe_interval=float(os.getenv('CONNECTIVITY_PROBE_SECONDS', 15)),
            probe_timeout=float(os.getenv('CONNECTIVITY_PROBE_TIMEOUT', 5))
        )

        # pytz zone used to decide what "today" is
        self.timezone = os.getenv('TIMEZONE', 'UTC')

        self.reminders = ReminderConfig(
            enabled=_env_bool('REMINDERS_ENABLED', 'false'),
            hour=int(os.getenv('REMINDER_HOUR', 22)),
            minute=int(os.getenv('REMINDER_MINUTE', 30)),
            timezone=self.timezone
        )

        # Logging
        self.log_dir = Path(os.getenv('LOG_DIR', 'logs'))
        self.log_level = LogLevel(os.getenv('LOG_LEVEL', 'INFO'))
        self.log_to_file = _env_bool('LOG_TO_FILE', 'false')
        self.log_format = os.getenv(
            'LOG_FORMAT',
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )

    def _validate_config(self):
        """Validate configuration"""
        errors = []

        if self.backend.url and not self.backend.url.startswith(('http://', 'https://')):
            errors.append("SUPABASE_URL must start with http:// or https://")

        if self.sync.debounce_delay < 0:
            errors.append("DEBOUNCE_DELAY_MS must not be negative")

        if self.sync.max_retry_attempts < 1:
            errors.append("MAX_RETRY_ATTEMPTS must be at least 1")

        if self.sync.cache_ttl_seconds <= 0:
            errors.append("CACHE_TTL_SECONDS must be positive")

        if self.timezone not in pytz.all_timezones_set:
            errors.append(f"Unknown TIMEZONE {self.timezone}")

        if not 0 <= self.reminders.hour <= 23 or not 0 <= self.reminders.minute <= 59:
            errors.append(f"Invalid reminder time {self.reminders.hour}:{self.reminders.minute}")

        if errors:
            raise ValueError("Configuration errors:\n" + "\n".join(f"• {error}" for error in errors))

    def require_backend(self) -> BackendConfig:
        """Backend settings, failing loudly when they are missing"""
        missing = [
            name for name, value in (
                ('SUPABASE_URL', self.backend.url),
                ('SUPABASE_ANON_KEY', self.backend.anon_key)
            ) if not value
        ]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
        return self.backend

    def get_logging_config(self) -> Dict[str, Any]:
        """dictConfig for the logging module"""
        handlers = ['console']
        if self.log_to_file:
            handlers.append('file')

        logging_config = {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': self.log_format,
                    'datefmt': '%Y-%m-%d %H:%M:%S'
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': self.log_level.value,
                    'formatter': 'default',
                    'stream': sys.stdout
                }
            },
            'loggers': {
                '': {
                    'level': self.log_level.value,
                    'handlers': handlers,
                    'propagate': False
                },
                'aiohttp': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                },
                'apscheduler': {
                    'level': 'WARNING',
                    'handlers': handlers,
                    'propagate': False
                }
            }
        }

        if self.log_to_file:
            logging_config['handlers']['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'level': self.log_level.value,
                'formatter': 'default',
                'filename': str(self.log_dir / f"sync_{self.environment.value}.log"),
                'maxBytes': 10485760,  # 10MB
                'backupCount': 5,
                'encoding': 'utf-8'
            }

        return logging_config

    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def to_dict(self) -> Dict[str, Any]:
        """Serialize configuration for diagnostics"""
        anon_key = self.backend.anon_key
        return {
            'environment': self.environment.value,
            'backend': {
                'url': self.backend.url,
                'anon_key': anon_key[:10] + "..." if anon_key else None,  # masked
                'request_timeout': self.backend.request_timeout
            },
            'sync': {
                'debounce_delay': self.sync.debounce_delay,
                'max_retry_attempts': self.sync.max_retry_attempts,
                'retry_base_delay': self.sync.retry_base_delay,
                'cache_ttl_seconds': self.sync.cache_ttl_seconds
            },
            'reminders_enabled': self.reminders.enabled,
            'log_level': self.log_level.value
        }

# Global configuration instance
config = AppConfig()

__all__ = [
    'config',
    'AppConfig',
    'Environment',
    'LogLevel',
    'BackendConfig',
    'SyncSettings',
    'RealtimeConfig',
    'ConnectivityConfig',
    'ReminderConfig'
]
