"""
Logging configuration.

- Development: readable single-line format on stderr
- Production (or LOG_JSON=true): one JSON object per line
- Level: LOG_LEVEL, else DEBUG in development and INFO elsewhere
"""

import json
import logging
import sys
from datetime import datetime, timezone

from timegate.settings import Settings

EXTRA_FIELDS = ("event_type", "principal_id", "project_id", "resource_id")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = str(val)
        return json.dumps(entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        base = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(settings: Settings) -> None:
    default_level = "DEBUG" if settings.APP_ENV == "development" else "INFO"
    level = getattr(logging, (settings.LOG_LEVEL or default_level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    if settings.LOG_JSON or settings.APP_ENV == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter())

    root = logging.getLogger("timegate")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    # SQL echo is controlled by APP_DEBUG on the engine
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
