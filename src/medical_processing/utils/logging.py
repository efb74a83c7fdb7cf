# ============================================================================
# src/medical_processing/utils/logging.py
# ============================================================================
"""
Logging configuration and utilities for the processing pipeline.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone
import json


# Attributes every LogRecord has; anything else came in through `extra`
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {
    "message", "asctime"
}


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    format_json: bool = False
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging
        format_json: Whether to use JSON format
    """
    log_level = getattr(logging, level.upper())

    if format_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True
    )


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Context passed through LogAdapter / extra=
        extra = {
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        }
        if extra:
            log_data['extra'] = extra

        return json.dumps(log_data, default=str)


class LogAdapter(logging.LoggerAdapter):
    """Logger adapter for adding document context to all log messages."""

    def process(self, msg, kwargs):
        if 'extra' not in kwargs:
            kwargs['extra'] = {}

        kwargs['extra'].update(self.extra)

        context = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return (f"[{context}] {msg}" if context else msg), kwargs


def document_logger(logger: logging.Logger, document_id: str, **context) -> LogAdapter:
    """Wrap a logger so every message carries the document id."""
    return LogAdapter(logger, {"document_id": document_id, **context})
