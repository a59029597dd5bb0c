"""Tests for environment-driven settings."""

import pytest

from subscription_scanner.config import Settings
from subscription_scanner.constants import CLASSIFIER_MODEL, MAX_MESSAGES, MIN_CONFIDENCE

ENV_VARS = (
    "OPENAI_API_KEY",
    "SCANNER_MODEL",
    "SCANNER_MIN_CONFIDENCE",
    "SCANNER_MAX_MESSAGES",
    "SCANNER_MAX_CONTENT_LENGTH",
    "SCANNER_BATCH_SIZE",
    "SCANNER_CLASSIFIER_TIMEOUT",
    "SCANNER_REDIRECT_URI",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # Set then delete so that values loaded from .env files are undone too
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults(tmp_path):
    settings = Settings.from_env(env_path=tmp_path / "missing.env")

    assert settings.openai_api_key is None
    assert settings.model == CLASSIFIER_MODEL
    assert settings.min_confidence == MIN_CONFIDENCE
    assert settings.max_messages == MAX_MESSAGES


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("SCANNER_MODEL", "gpt-test")
    monkeypatch.setenv("SCANNER_MIN_CONFIDENCE", "60")
    monkeypatch.setenv("SCANNER_CLASSIFIER_TIMEOUT", "12.5")

    settings = Settings.from_env(env_path=tmp_path / "missing.env")

    assert settings.openai_api_key == "sk-test"
    assert settings.model == "gpt-test"
    assert settings.min_confidence == 60
    assert settings.classifier_timeout == 12.5


def test_invalid_number_falls_back(tmp_path, monkeypatch):
    monkeypatch.setenv("SCANNER_MAX_MESSAGES", "lots")
    monkeypatch.setenv("SCANNER_CLASSIFIER_TIMEOUT", "soon")

    settings = Settings.from_env(env_path=tmp_path / "missing.env")

    assert settings.max_messages == MAX_MESSAGES
    assert settings.classifier_timeout == 60.0


def test_env_file_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=sk-from-file\nSCANNER_BATCH_SIZE=5\nSCANNER_MODEL=from-file\n")
    monkeypatch.setenv("SCANNER_MODEL", "from-process")

    settings = Settings.from_env(env_path=env_file)

    assert settings.openai_api_key == "sk-from-file"
    assert settings.batch_size == 5
    assert settings.model == "from-process"
