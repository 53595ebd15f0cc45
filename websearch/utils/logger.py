"""
Logging utilities for the web search engine.

Workers log through a ``WorkerLogAdapter`` so that every line of one crawl
carries the worker and URL it belongs to, both in text and JSON output.
"""

import json
import logging
import logging.handlers
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import psutil

from .config import LoggingConfig

# Record attributes copied into JSON output when present
CONTEXT_FIELDS = ('worker_id', 'url', 'event_type', 'stat_name', 'stat_value')

# Loggers whose records never reach our handlers
NOISY_LOGGERS = ('aiohttp.access', 'whoosh', 'urllib3.connectionpool')

# Third-party loggers kept at WARNING
QUIET_LOGGERS = ('aiohttp', 'aiosqlite', 'redis', 'asyncio')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with any worker context attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({
            name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)
        })
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class WorkerLogAdapter(logging.LoggerAdapter):
    """Adds the worker id and the URL being crawled to every record."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def url_event(self, level: int, message: str, url: Optional[str] = None):
        """Log something that happened to a URL, defaulting to the adapter's one."""
        url = url or self.extra.get('url', '')
        self.log(level, f"{message}: {url}", extra={'event_type': 'url_event', 'url': url})

    def stat(self, stat_name: str, value: Any):
        """Log one crawl statistic."""
        self.info(f"Stat: {stat_name} = {value}", extra={
            'event_type': 'crawler_stat',
            'stat_name': stat_name,
            'stat_value': value,
        })


class NoiseFilter(logging.Filter):
    """Drops records from chatty third-party loggers."""

    def __init__(self, noisy_loggers: Iterable[str] = NOISY_LOGGERS):
        super().__init__()
        self.noisy_loggers = tuple(noisy_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.noisy_loggers)


def _rotating_handler(path: Path, level: int, max_bytes: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, filter_noise: bool = True) -> logging.Logger:
    """
    Configure the root logger.

    Records go to stdout (INFO and up), to ``config.file`` (everything) and
    to ``errors.log`` next to it (ERROR and up).

    Args:
        config: Logging section of the configuration
        filter_noise: Drop records from the loggers in NOISY_LOGGERS

    Returns:
        The root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    error_file = log_file.parent / 'errors.log'

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(formatter)

    handlers = [
        console,
        _rotating_handler(log_file, logging.DEBUG, 50 * 1024 * 1024, 5, formatter),
        _rotating_handler(error_file, logging.ERROR, 10 * 1024 * 1024, 3, formatter),
    ]

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper()))
    root.handlers.clear()
    for handler in handlers:
        if filter_noise:
            handler.addFilter(NoiseFilter())
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging to {log_file} (errors: {error_file}), level {config.level}, "
              f"json={config.json}")
    return root


def get_worker_logger(name: str, worker_id: Optional[str] = None,
                      url: Optional[str] = None) -> WorkerLogAdapter:
    """Get a logger whose records carry worker_id and url."""
    context = {key: value for key, value in (('worker_id', worker_id), ('url', url)) if value}
    return WorkerLogAdapter(logging.getLogger(name), context)


def log_system_info(data_dir: Optional[str] = None):
    """Log the host the engine runs on."""
    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")

    if data_dir and Path(data_dir).exists():
        usage = psutil.disk_usage(data_dir)
        logger.info(f"Free disk at {data_dir}: {usage.free / 1024**3:.1f} GB")
