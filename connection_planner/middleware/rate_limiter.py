"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in connection_planner/__init__.py with no default limits; this
module applies limits per route category.

Usage:
    from connection_planner.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

_API_BLUEPRINTS = ("connection", "master_data", "planner")
_WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the API blueprints.

    Limits (per remote IP):
        - Write endpoints:  WRITE_RATE_LIMIT (POST/PUT/DELETE)
        - Read endpoints:   READ_RATE_LIMIT
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("WRITE_RATE_LIMIT", "60/minute")
    read_limit = app.config.get("READ_RATE_LIMIT", "300/minute")

    for bp_name in _API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit, methods=_WRITE_METHODS)(bp)
            limiter.limit(read_limit, methods=["GET"])(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", write_limit, read_limit)
