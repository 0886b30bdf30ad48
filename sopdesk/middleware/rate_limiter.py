"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in sopdesk/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from sopdesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

SOP_LIMIT = "300/minute"
UPLOAD_LIMIT = "30/minute"


def rate_limit_key():
    """Rate limit key: tenant_id when the request names one, else remote IP."""
    tenant_id = flask_request.args.get("tenant_id") or flask_request.form.get("tenant_id")
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant, falling back to remote IP):
        - SOP endpoints:    300/minute  (autosave drafts arrive in bursts)
        - Uploads:          30/minute   (see sop_bp.upload_external_document)
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("sop")
    if bp:
        limiter.limit(SOP_LIMIT, key_func=rate_limit_key)(bp)

    # Limits are registered by view name, so decorating the registered view is enough
    upload_view = app.view_functions.get("sop.upload_external_document")
    if upload_view:
        limiter.limit(UPLOAD_LIMIT, key_func=rate_limit_key)(upload_view)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — SOP: %s, uploads: %s", SOP_LIMIT, UPLOAD_LIMIT)
