"""
Logging setup for the workflow service.

Two output shapes share one root handler on stderr:

    readable   coloured one-liners for a developer terminal; a workflow
               record ends with its document reference, e.g. "(MTF#7 L0→L1)"
    json       one JSON object per record for log shipping; workflow
               context passed through ``extra=`` becomes top-level keys

``LOG_FORMAT`` picks the shape (default: json outside debug/testing) and
``LOG_LEVEL`` the threshold (default: INFO in production, DEBUG otherwise).
Both are read from app config first, then the environment.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` keys copied into JSON records
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "tenant_id",
    "actor_id",
    "project_id",
    "doc_type",
    "document_id",
    "source_line_id",
    "from_level",
    "to_level",
)

FORMATS = ("json", "readable")
QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output; the level name carries the colour."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _document_ref(record) -> str:
        doc_type = getattr(record, "doc_type", None)
        if not doc_type:
            return ""
        ref = f"{doc_type}#{getattr(record, 'document_id', '?')}"
        from_level = getattr(record, "from_level", None)
        to_level = getattr(record, "to_level", None)
        if from_level is not None and to_level is not None:
            ref += f" L{from_level}→L{to_level}"
        return f" ({ref})"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        color = self.COLORS.get(record.levelname, "")
        line = (
            f"{color}{stamp} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}{self._document_ref(record)}"
        )
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _setting(app, name: str) -> str:
    return str(app.config.get(name) or os.getenv(name, "")).strip()


def resolve_format(app) -> str:
    chosen = _setting(app, "LOG_FORMAT").lower()
    if chosen in FORMATS:
        return chosen
    local = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    return "readable" if local else "json"


def resolve_level(app) -> int:
    production = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    name = _setting(app, "LOG_LEVEL") or ("INFO" if production else "DEBUG")
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(app):
    """Install the root handler for ``app``.

    Any handler already on the root logger is replaced, so calling this for
    every app the test suite creates leaves exactly one.
    """
    fmt = resolve_format(app)
    level = resolve_level(app)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", logging.getLevelName(level), fmt)
