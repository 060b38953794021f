"""
Rate limiting configuration.

The Limiter instance is created in taskboard/__init__.py with no default
limits; this module applies per-blueprint limits.

    - auth:            20/minute  (login / register brute force)
    - directory:       30/minute  (every search fans out to LDAP servers)
    - write-heavy API: 120/minute
    - health:          exempt

Rate limiting is disabled in testing mode.
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

AUTH_LIMIT = "20/minute"
DIRECTORY_LIMIT = "30/minute"
API_LIMIT = "120/minute"


def rate_limit_key():
    """Authenticated callers are limited per user, anonymous ones per IP."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(AUTH_LIMIT, key_func=lambda: flask_request.remote_addr or "unknown")(bp)

    bp = app.blueprints.get("directory")
    if bp:
        limiter.limit(DIRECTORY_LIMIT)(bp)

    for bp_name in ("boards", "cards", "automation", "notifications", "planning", "time"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(API_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: auth=%s directory=%s api=%s",
                AUTH_LIMIT, DIRECTORY_LIMIT, API_LIMIT)
