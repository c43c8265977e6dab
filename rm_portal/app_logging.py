"""JSON logging for the portal.

Named ``app_logging`` so it never shadows the stdlib ``logging`` module.
Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
attaches one stdout handler to the ``rm_portal`` logger.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = 'rm_portal'
_RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            'time': datetime.now(timezone.utc).isoformat(timespec='seconds'),
            'level': record.levelname,
            'logger': record.name,
            'func': record.funcName,
            'message': record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith('_'):
                payload[key] = value
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = 'INFO') -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(handler, '_rm_portal', False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        handler._rm_portal = True
        logger.addHandler(handler)
    logger.propagate = False
    return logger
