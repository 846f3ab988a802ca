import json
import logging
from datetime import UTC, datetime

from app.core.config import settings
from app.infrastructure.logging.context import current_log_context


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "service": settings.app_name,
            "env": settings.app_env,
            "logger": record.name,
            "event": record.getMessage(),
            **current_log_context(),
        }
        if record.exc_info:
            payload["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
