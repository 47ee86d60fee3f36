"""
Connection Planner
Blueprint registry and shared request helpers.
"""

import logging

from flask import current_app, request
from werkzeug.exceptions import HTTPException

from connection_planner.utils.errors import (
    SERVICE_EXCEPTIONS,
    http_error,
    internal_error,
    service_error,
)

logger = logging.getLogger(__name__)


def json_body():
    """Return the request's JSON object, or {} when absent or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def page_args(size_key="DEFAULT_PAGE_SIZE"):
    """Read ``page`` / ``size`` query params.

    page is 0-based; size defaults to ``app.config[size_key]`` and is
    clamped to [1, MAX_PAGE_SIZE]. Unparseable values fall back to the
    defaults.
    """
    default_size = current_app.config.get(size_key, 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    try:
        page = max(int(request.args.get("page", 0)), 0)
    except (ValueError, TypeError):
        page = 0
    try:
        size = int(request.args.get("size", default_size))
    except (ValueError, TypeError):
        size = default_size
    return page, min(max(size, 1), max_size)


def register_error_handlers(bp):
    """Map service exceptions to the standard JSON error envelope on ``bp``."""

    for exc_type in SERVICE_EXCEPTIONS:
        bp.register_error_handler(exc_type, service_error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return http_error(error)
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return internal_error()
