"""Tests for environment-driven settings."""

import logging

import pytest
from pydantic import ValidationError

from app.config import Settings
from app.logging_config import JSONFormatter, setup_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PORT",
        "RATE_LIMIT_WINDOW_MS",
        "RATE_LIMIT_MAX",
        "UPLOAD_DIR",
        "CORS_ORIGINS",
        "REQUEST_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.PORT is None
    assert settings.RATE_LIMIT_WINDOW_MS == 60000
    assert settings.RATE_LIMIT_MAX == 100
    assert settings.UPLOAD_DIR == "uploads"
    assert settings.RATE_LIMIT_ENABLED is True
    assert settings.MAX_REQUEST_BODY_SIZE == 102400


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PORT", "3000")
    monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "1000")
    monkeypatch.setenv("RATE_LIMIT_MAX", "2")
    monkeypatch.setenv("UPLOAD_DIR", "/srv/files")
    monkeypatch.setenv("CORS_ORIGINS", '["http://a.test", "http://b.test"]')

    settings = Settings(_env_file=None)

    assert settings.PORT == 3000
    assert settings.RATE_LIMIT_WINDOW_MS == 1000
    assert settings.RATE_LIMIT_MAX == 2
    assert settings.UPLOAD_DIR == "/srv/files"
    assert settings.CORS_ORIGINS == ["http://a.test", "http://b.test"]


def test_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("RATE_LIMIT_MAX=7\nUPLOAD_DIR=files\n")

    settings = Settings(_env_file=env_file)

    assert settings.RATE_LIMIT_MAX == 7
    assert settings.UPLOAD_DIR == "files"


def test_rejects_non_positive_limits(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_settings_are_loaded_on_demand(monkeypatch):
    import app.config

    assert not hasattr(app.config, "settings")

    monkeypatch.setenv("RATE_LIMIT_MAX", "0")
    with pytest.raises(ValidationError):
        app.config.get_settings()

    monkeypatch.setenv("RATE_LIMIT_MAX", "7")
    assert app.config.get_settings().RATE_LIMIT_MAX == 7


def test_json_log_formatter():
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)

    output = JSONFormatter().format(record)

    assert '"message": "hello world"' in output
    assert '"level": "INFO"' in output


def test_setup_logging_sets_level():
    setup_logging("WARNING", "text")
    try:
        assert logging.getLogger().level == logging.WARNING
    finally:
        setup_logging("INFO", "text")
