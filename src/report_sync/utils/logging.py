"""Structured logging setup for the report sync service."""

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from ..config.settings import LoggingConfig

CONTEXT_PREFIX = "ctx_"

# Fields bound for the current sync run, e.g. run_id and account
_sync_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "report_sync_context", default={}
)


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in record.__dict__.items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line; bound sync context is nested under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'service': getattr(record, 'service', None),
            'location': f"{record.module}.{record.funcName}:{record.lineno}"
        }

        context = _context_of(record)
        if context:
            log_data['context'] = context

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Console formatter; context fields are appended as key=value pairs."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        level = record.levelname

        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        line = f"{timestamp} [{level}] {record.name}: {record.getMessage()}"

        context = _context_of(record)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in sorted(context.items()))

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class SyncContextFilter(logging.Filter):
    """Stamps records with the service name and the bound sync context."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name

        for key, value in _sync_context.get().items():
            attr = f"{CONTEXT_PREFIX}{key}"
            if not hasattr(record, attr):
                setattr(record, attr, value)

        return True


@contextmanager
def bind_sync_context(**fields) -> Iterator[Dict[str, Any]]:
    """Attach fields to every record logged inside the block, including from awaited tasks."""
    bound = {**_sync_context.get(), **fields}
    token = _sync_context.set(bound)
    try:
        yield bound
    finally:
        _sync_context.reset(token)


def setup_logging(config: LoggingConfig, service_name: str = "report-sync") -> None:
    """
    Setup logging configuration for the service.

    Args:
        config: Logging configuration
        service_name: Name of the service for log context
    """
    formatter = JSONFormatter() if config.format.lower() == 'json' else TextFormatter()

    output = config.output.lower()
    if output == 'stdout':
        handler = logging.StreamHandler(sys.stdout)
    elif output == 'stderr':
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(config.output)

    handler.setFormatter(formatter)
    handler.addFilter(SyncContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Quiet the HTTP and database drivers
    for name in ('aiohttp', 'asyncpg'):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={config.level}, format={config.format}, "
        f"output={config.output}, service={service_name}"
    )


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context."""
    extra = {f"{CONTEXT_PREFIX}{key}": value for key, value in context.items()}
    logger.log(level, message, extra=extra)
