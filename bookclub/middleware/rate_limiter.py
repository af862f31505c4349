"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in bookclub/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from bookclub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
# Claims are contended by every participant at the start of a day
CLAIM_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Reading-event endpoints: 60/minute
        - Leadership claim:        10/minute
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("events")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    claim_view = app.view_functions.get("events.claim_schedule")
    if claim_view:
        app.view_functions["events.claim_schedule"] = limiter.limit(CLAIM_LIMIT)(claim_view)

    health_view = app.view_functions.get("health")
    if health_view:
        limiter.exempt(health_view)

    app.logger.info("Rate limiter configured: events=%s claim=%s", WRITE_LIMIT, CLAIM_LIMIT)
