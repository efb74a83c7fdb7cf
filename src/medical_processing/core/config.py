# ============================================================================
# src/medical_processing/core/config.py
# ============================================================================
"""
Centralized Configuration Access

Loads `.env` (if present) and flattens the settings classes into one dict that
stages, services and the controller receive. Passed config overrides env
defaults wherever a component merges it.

Usage:
    from medical_processing.core.config import get_config

    config = get_config()
    timeout = config['processing_timeout_seconds']
"""

from pathlib import Path
from typing import Dict, Any
from functools import lru_cache

from dotenv import load_dotenv

from ..config.base_config import BaseSettingsConfig
from ..config.pipeline_config import PipelineSettings
from ..config.service_config import ServiceSettings
from ..config.logging_config import LoggingSettings


def _load_dotenv() -> bool:
    """Load .env file if it exists."""
    env_path = Path(__file__).parent.parent.parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
        return True

    cwd_env = Path.cwd() / '.env'
    if cwd_env.exists():
        load_dotenv(cwd_env)
        return True

    return False


def _flatten(*settings) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for instance in settings:
        for key, value in instance.model_dump().items():
            values[key.lower()] = value
    return values


@lru_cache(maxsize=1)
def get_config() -> Dict[str, Any]:
    """
    Get configuration dictionary.

    Cached - call once and pass to components.
    """
    _load_dotenv()
    return _flatten(
        BaseSettingsConfig(),
        PipelineSettings(),
        ServiceSettings(),
        LoggingSettings(),
    )


def reload_config() -> Dict[str, Any]:
    """Reload configuration from environment."""
    get_config.cache_clear()
    return get_config()
