"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in firesafe/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from firesafe.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Cron trigger:     6/minute   (reconciler runs are full table scans)
        - Write endpoints:  60/minute
        - Inbox endpoints:  200/minute (polled by the UI)

    Rate limiting is disabled in testing mode or when RATELIMIT_ENABLED is off.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("jobs")
    if bp:
        limiter.limit("6/minute")(bp)

    for bp_name in ("projects", "work_orders", "billing"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("notifications")
    if bp:
        limiter.limit("200/minute")(bp)

    app.logger.info("Rate limiter configured: cron 6/min, write 60/min, inbox 200/min")
