"""
Configuration management for the web search engine.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    root_url: str
    allowed_domains: List[str]
    cycle_delay: float = 1.0
    worker_count: int = 8
    request_timeout: int = 30
    user_agent: str = "WebSearchBot/1.0"
    max_content_size: int = 10 * 1024 * 1024
    max_failures: Optional[int] = None


@dataclass
class FrontierConfig:
    """Configuration for the URL frontier store."""
    type: str = "sqlite"
    sqlite: Dict[str, Any] = field(default_factory=lambda: {"path": "data/frontier.db"})
    redis: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexConfig:
    """Configuration for the full-text index."""
    directory: Optional[str] = "data/index"
    language: str = "en"
    candidate_limit: int = 1000


@dataclass
class ApiConfig:
    """Configuration for the search HTTP endpoint."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/websearch.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    frontier: FrontierConfig
    index: IndexConfig
    api: ApiConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file) or {}

        if not isinstance(config_data, dict):
            raise ValueError(f"Top level of {self.config_path} must be a mapping")

        self._config = self.from_dict(config_data)
        self._validate_config()
        return self._config

    @staticmethod
    def from_dict(config_data: Dict[str, Any]) -> Config:
        """Build a Config from an already parsed mapping."""
        if 'crawler' not in config_data:
            raise ValueError("Missing 'crawler' section in configuration")

        try:
            return Config(
                crawler=CrawlerConfig(**config_data['crawler']),
                frontier=FrontierConfig(**(config_data.get('frontier') or {})),
                index=IndexConfig(**(config_data.get('index') or {})),
                api=ApiConfig(**(config_data.get('api') or {})),
                logging=LoggingConfig(**(config_data.get('logging') or {})),
                monitoring=MonitoringConfig(**(config_data.get('monitoring') or {})),
            )
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}") from e

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")
        validate_config(self._config)
        logging.info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def validate_config(config: Config):
    """Raise ValueError for values the crawler cannot run with."""
    crawler = config.crawler

    if not crawler.root_url or not crawler.root_url.strip():
        raise ValueError("A root URL must be provided")

    if not crawler.allowed_domains:
        raise ValueError("At least one allowed domain must be provided")

    if crawler.worker_count < 1:
        raise ValueError("worker_count must be at least 1")

    if crawler.cycle_delay < 0:
        raise ValueError("cycle_delay must be non-negative")

    if crawler.request_timeout <= 0:
        raise ValueError("request_timeout must be positive")

    if crawler.max_failures is not None and crawler.max_failures < 1:
        raise ValueError("max_failures must be null or at least 1")

    if config.frontier.type not in ['sqlite', 'redis']:
        raise ValueError("Frontier type must be 'sqlite' or 'redis'")

    if config.index.candidate_limit < 1:
        raise ValueError("candidate_limit must be at least 1")


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()
