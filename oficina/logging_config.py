"""JSON-lines logging for the oficina package."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

LOGGER_PREFIX = 'oficina'

_STDLIB_KEYS: frozenset[str] = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None)).keys()) | {
    'message',
    'taskName',
}

_configured = False
_lock = threading.Lock()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are merged into it."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            'ts': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload['exc_type'] = type(exc).__name__
            payload['exc_message'] = str(exc)
            payload['traceback'] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default, ensure_ascii=False)


def configure_logging(*, level: str | int = logging.INFO, json_output: bool = True, stream: Any = None) -> None:
    """Attach a single handler to the ``oficina`` logger tree (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger(LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop the configured handler. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
