"""
Logging setup for the service.

One stderr handler on the root logger. Production writes one JSON object
per line; development and tests write plain text. Every record emitted
inside a request carries that request's id (see middleware.timing).
LOG_LEVEL overrides the level.
"""

import json
import logging
import os
import sys

from flask import g, has_request_context

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(request_id)s] %(message)s"

# Request attributes the timing middleware passes through ``extra=``
_REQUEST_FIELDS = ("method", "path", "status", "duration_ms")


class RequestIdFilter(logging.Filter):
    """Stamp ``record.request_id``; "-" outside a request."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            in_request = has_request_context() and "request_id" in g
            record.request_id = g.request_id if in_request else "-"
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "request_id": record.request_id,
            "message": record.getMessage(),
        }
        entry.update({f: getattr(record, f) for f in _REQUEST_FIELDS if hasattr(record, f)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(app):
    """Install the root handler; safe to call once per create_app()."""
    production = not (app.config.get("DEBUG") or app.config.get("TESTING"))
    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JSONFormatter() if production else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for chatty in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(chatty).setLevel(logging.WARNING)

    app.logger.debug("Logging configured level=%s json=%s", level_name, production)
