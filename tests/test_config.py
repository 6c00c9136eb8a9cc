import logging

import pytest

from config import AppConfig, Environment
from utils.logger import setup_logging

@pytest.fixture
def clean_env(monkeypatch):
    for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_ACCESS_TOKEN", "DEBOUNCE_DELAY_MS",
                 "MAX_RETRY_ATTEMPTS", "RETRY_DELAY_MS", "CACHE_TTL_SECONDS", "TIMEZONE",
                 "REMINDER_HOUR", "REMINDER_MINUTE", "ENVIRONMENT", "LOG_TO_FILE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch

def test_defaults(clean_env):
    app_config = AppConfig()

    assert app_config.environment == Environment.DEVELOPMENT
    assert app_config.sync.debounce_delay == 0.3
    assert app_config.sync.max_retry_attempts == 3
    assert app_config.sync.retry_base_delay == 1.0
    assert app_config.sync.cache_ttl_seconds == 300.0
    assert app_config.sync.error_display_seconds == 5.0
    assert app_config.timezone == "UTC"
    assert (app_config.reminders.hour, app_config.reminders.minute) == (22, 30)

def test_milliseconds_are_converted(clean_env):
    clean_env.setenv("DEBOUNCE_DELAY_MS", "150")
    clean_env.setenv("RETRY_DELAY_MS", "2500")

    app_config = AppConfig()

    assert app_config.sync.debounce_delay == 0.15
    assert app_config.sync.retry_base_delay == 2.5

def test_validation_collects_errors(clean_env):
    clean_env.setenv("SUPABASE_URL", "ftp://example.com")
    clean_env.setenv("MAX_RETRY_ATTEMPTS", "0")
    clean_env.setenv("TIMEZONE", "Mars/Olympus")

    with pytest.raises(ValueError) as excinfo:
        AppConfig()

    message = str(excinfo.value)
    assert "SUPABASE_URL" in message
    assert "MAX_RETRY_ATTEMPTS" in message
    assert "TIMEZONE" in message

def test_require_backend(clean_env):
    app_config = AppConfig()
    with pytest.raises(ValueError, match="SUPABASE_URL"):
        app_config.require_backend()

    clean_env.setenv("SUPABASE_URL", "https://abc.supabase.co")
    clean_env.setenv("SUPABASE_ANON_KEY", "anon-key-1234567890")
    app_config = AppConfig()

    assert app_config.require_backend().url == "https://abc.supabase.co"
    assert app_config.to_dict()["backend"]["anon_key"] == "anon-key-1..."

def test_logging_config_and_setup(clean_env, tmp_path):
    clean_env.setenv("LOG_TO_FILE", "true")
    clean_env.setenv("LOG_DIR", str(tmp_path / "logs"))
    clean_env.setenv("LOG_LEVEL", "DEBUG")
    app_config = AppConfig()

    logging_config = app_config.get_logging_config()
    assert set(logging_config["handlers"]) == {"console", "file"}
    assert logging_config["loggers"]["aiohttp"]["level"] == "WARNING"

    logger = setup_logging(app_config)

    assert (tmp_path / "logs").is_dir()
    assert logger.name == "restrain"
    assert logging.getLogger().level == logging.DEBUG
