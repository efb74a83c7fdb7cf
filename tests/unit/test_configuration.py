# ============================================================================
# FILE: tests/unit/test_configuration.py
# ============================================================================
"""
Unit tests for settings classes and the flattened config dict
"""

import pytest
from pydantic import ValidationError

from medical_processing.config import BaseSettingsConfig, PipelineSettings, ServiceSettings
from medical_processing.core.config import get_config, reload_config


@pytest.fixture
def fresh_config():
    """Reload around the test so env changes never leak into the cache."""
    reload_config()
    yield
    reload_config()


def test_config_keys_are_lowercase(fresh_config):
    config = get_config()

    for key in ("max_retries", "processing_timeout_seconds", "lock_ttl_seconds",
                "openai_model", "record_db_path", "log_level"):
        assert key in config
    assert all(key == key.lower() for key in config)


def test_get_config_is_cached(fresh_config):
    assert get_config() is get_config()


def test_pipeline_defaults(monkeypatch):
    for name in ("MAX_RETRIES", "RETRY_BASE_DELAY_SECONDS", "RETRY_MAX_DELAY_SECONDS",
                 "LOCK_TTL_SECONDS", "LLM_INCLUDE_IMAGE"):
        monkeypatch.delenv(name, raising=False)

    settings = PipelineSettings()

    assert settings.MAX_RETRIES == 3
    assert settings.RETRY_BASE_DELAY_SECONDS == 3.0
    assert settings.RETRY_MAX_DELAY_SECONDS == 10.0
    assert settings.LOCK_TTL_SECONDS == 600
    assert settings.LLM_INCLUDE_IMAGE is False


def test_environment_overrides(monkeypatch, fresh_config):
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("IMAGE_OCR_ENGINE", "tesseract")

    config = reload_config()

    assert config["max_retries"] == 5
    assert config["image_ocr_engine"] == "tesseract"


def test_invalid_values_rejected(monkeypatch):
    monkeypatch.setenv("MAX_RETRIES", "-1")

    with pytest.raises(ValidationError):
        PipelineSettings()


def test_missing_api_keys_default_to_none(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_VISION_API_KEY", raising=False)

    settings = ServiceSettings()

    assert settings.OPENAI_API_KEY is None
    assert settings.GOOGLE_VISION_API_KEY is None


def test_create_directories(monkeypatch, tmp_path):
    monkeypatch.setenv("RECORD_DB_PATH", str(tmp_path / "db" / "records.db"))
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "documents"))

    BaseSettingsConfig().create_directories()

    assert (tmp_path / "db").is_dir()
    assert (tmp_path / "documents").is_dir()
