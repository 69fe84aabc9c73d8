"""
Configuration management for the crawl engine.
"""

import yaml
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_USER_AGENT = "DepthCrawler/1.0"


class ConfigError(ValueError):
    """Raised when engine configuration is invalid."""
    pass


_INT_FIELDS = ('worker_count', 'max_depth', 'queue_capacity',
               'result_buffer', 'max_content_bytes')
_NUMBER_FIELDS = ('request_delay', 'timeout', 'default_crawl_delay',
                  'robots_timeout', 'stats_interval', 'max_duration')


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one crawl run. Immutable once the run starts."""
    worker_count: int = 5
    max_depth: int = 2
    request_delay: float = 0.1
    timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    queue_capacity: int = 1000
    result_buffer: int = 1000
    default_crawl_delay: float = 1.0
    robots_timeout: float = 10.0
    max_content_bytes: int = 10 * 1024 * 1024
    max_duration: Optional[float] = None
    stats_interval: float = 30.0

    def validate(self) -> "EngineConfig":
        """Check value types and ranges; raises ConfigError on the first violation."""
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")

        for name in _NUMBER_FIELDS:
            value = getattr(self, name)
            if value is None and name == 'max_duration':
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")

        if not isinstance(self.user_agent, str):
            raise ConfigError(f"user_agent must be a string, got {self.user_agent!r}")

        if self.worker_count < 1:
            raise ConfigError("worker_count must be at least 1")

        if self.max_depth < 0:
            raise ConfigError("max_depth must be non-negative")

        for name in ('request_delay', 'timeout', 'default_crawl_delay',
                     'robots_timeout', 'stats_interval'):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be non-negative")

        if self.queue_capacity < 1:
            raise ConfigError("queue_capacity must be at least 1")

        if self.result_buffer < 1:
            raise ConfigError("result_buffer must be at least 1")

        if self.max_content_bytes < 1:
            raise ConfigError("max_content_bytes must be at least 1")

        if not self.user_agent or not self.user_agent.strip():
            raise ConfigError("user_agent must not be empty")

        if self.max_duration is not None and self.max_duration <= 0:
            raise ConfigError("max_duration must be positive when set")

        return self


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class AppConfig:
    """Main configuration class."""
    crawler: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(cls, data: Optional[Dict[str, Any]], section: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown keys in section '{section}': {', '.join(unknown)}")

    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid section '{section}': {e}") from e


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        if not isinstance(config_data, dict):
            raise ConfigError("Configuration root must be a mapping")

        unknown = sorted(set(config_data) - {'crawler', 'logging', 'monitoring'})
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(unknown)}")

        self._config = AppConfig(
            crawler=_build_section(EngineConfig, config_data.get('crawler'), 'crawler'),
            logging=_build_section(LoggingConfig, config_data.get('logging'), 'logging'),
            monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring'),
        )

        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ConfigError("Configuration not loaded")

        self._config.crawler.validate()

        if self._config.logging.level.upper() not in logging.getLevelNamesMapping():
            raise ConfigError(f"Unknown log level: {self._config.logging.level}")

        if not 0 < self._config.monitoring.prometheus_port < 65536:
            raise ConfigError("prometheus_port must be a valid TCP port")

        logging.getLogger(__name__).info("Configuration validation passed")

    @property
    def config(self) -> AppConfig:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: str = "config.yaml") -> AppConfig:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
