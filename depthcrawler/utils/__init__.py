"""
Utility modules for the crawl engine.
"""

from .config import (
    AppConfig, ConfigError, ConfigManager, EngineConfig,
    LoggingConfig, MonitoringConfig, load_config,
)

__all__ = [
    'AppConfig', 'ConfigError', 'ConfigManager', 'EngineConfig',
    'LoggingConfig', 'MonitoringConfig', 'load_config',
]
