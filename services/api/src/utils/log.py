"""Process-wide logging setup.

``init`` installs a single stdout handler on the root logger:
- development: coloured, human-readable lines
- staging/production: one JSON object per line for log aggregation

Library packages (clients, models) log through ``logging.getLogger`` and
inherit this configuration.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

_STRUCTURED_ENVIRONMENTS = ("production", "prod", "staging")


class ColoredFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    ENDC = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        module_name = record.name if record.name != '__main__' else 'main'
        line = f"[{timestamp}] {level_color}{record.levelname:8s}{self.ENDC} [{module_name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'module': record.name,
            'message': record.getMessage(),
            'environment': os.getenv('ENVIRONMENT', 'unknown'),
        }
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def init(level: Optional[str] = None, environment: Optional[str] = None) -> None:
    environment = (environment or os.getenv('ENVIRONMENT', 'development')).lower()
    resolved = getattr(logging, (level or 'INFO').upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if environment in _STRUCTURED_ENVIRONMENTS:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)

    # Route uvicorn's own loggers through the same handler
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
