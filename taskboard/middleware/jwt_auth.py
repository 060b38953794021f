"""
JWT Auth Middleware — parses the Bearer token and sets g.jwt_*.

The hook never rejects a request itself: routes that need an identity
call ``current_actor()`` (taskboard.blueprints), which answers 401 when
g.jwt_user_id is unset.
"""

import logging

import jwt as pyjwt
from flask import g, request

from taskboard.services.jwt_service import decode_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Invalid token on %s: %s", path, exc)
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.jwt_tenant_id = payload.get("tenant_id")
        g.jwt_role = payload.get("role")
