"""
Convenient imports for all settings
"""

from .base_config import base_settings, BaseSettingsConfig
from .pipeline_config import pipeline_settings, PipelineSettings
from .service_config import service_settings, ServiceSettings
from .logging_config import logging_settings, LoggingSettings
