"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

TYPE_ADMIN_LIMIT = "60/minute"
DOCUMENT_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Document-type administration:  60/minute
        - Dynamic document instances:    300/minute
        - Health check:                  exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("document_types")
    if bp:
        limiter.limit(TYPE_ADMIN_LIMIT)(bp)

    bp = app.blueprints.get("dynamic_documents")
    if bp:
        limiter.limit(DOCUMENT_LIMIT)(bp)

    health_view = app.view_functions.get("health")
    if health_view:
        limiter.exempt(health_view)

    app.logger.info(
        "Rate limiter configured — types: %s, documents: %s",
        TYPE_ADMIN_LIMIT, DOCUMENT_LIMIT,
    )
