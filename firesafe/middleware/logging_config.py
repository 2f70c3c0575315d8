"""
Structured logging configuration.

Formats:
    production   one JSON object per line (stderr)
    development  coloured single line with entity context, e.g.
                 ``08:00:01 INFO  firesafe.services.reconciler: ... {project=4 wo=17}``

Every record is stamped with the current request id and actor (when a
request is active) by ``RequestContextFilter``; call sites add entity ids
through ``extra={...}``.  LOG_LEVEL overrides the default level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Entity ids shown in the readable format, in display order, with short labels
_CONTEXT_KEYS = (
    ("branch_id", "branch"),
    ("project_id", "project"),
    ("work_order_id", "wo"),
    ("invoice_id", "invoice"),
    ("contract_id", "contract"),
    ("job_name", "job"),
    ("transition", "move"),
)

# Request attributes written by the timing middleware
_REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr")


class RequestContextFilter(logging.Filter):
    """Attach ``request_id``, ``user_id`` and ``role`` from ``flask.g``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            actor = getattr(g, "actor", None)
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if actor is not None and getattr(record, "user_id", None) is None:
                record.user_id = actor.user_id
                record.role = actor.role
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "firesafe",
        }
        for key in ("request_id", "user_id", "role", *_REQUEST_KEYS):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        for key, _label in _CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<5}{self.RESET} {record.name}: {record.getMessage()}"

        context = [
            f"{label}={getattr(record, key)}"
            for key, label in _CONTEXT_KEYS
            if getattr(record, key, None) is not None
        ]
        if context:
            line += " {" + " ".join(context) + "}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    JSON outside DEBUG/TESTING, readable otherwise.  Safe to call once per
    ``create_app``; existing root handlers are replaced.
    """
    is_testing = app.config.get("TESTING", False)
    use_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if use_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo and the dev server's access log duplicate the timing middleware
    for name in ("sqlalchemy.engine", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if use_json else "readable")
