"""
JWT Service — bearer tokens for the REST API.

Only access tokens exist; there is no refresh flow. A token names the user,
the tenant it was issued for and the role at issue time. The middleware
trusts ``sub`` and ``tenant_id`` only: the role is re-read from the user row
on every request, so demotions apply before the token expires.

    {"sub": "<user_id>", "tenant_id": 3, "role": "user", "type": "access",
     "iat": ..., "exp": ..., "jti": "<uuid4>"}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
_REQUIRED_CLAIMS = ["sub", "tenant_id", "exp", "iat"]


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _lifetime() -> int:
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", 86400))


def generate_access_token(user_id: int, tenant_id: int, role: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),  # PyJWT insists on a string subject
        "tenant_id": tenant_id,
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=_lifetime()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def token_response(user) -> dict:
    """Body returned by register and login."""
    return {
        "access_token": generate_access_token(user.id, user.tenant_id, user.role),
        "token_type": "Bearer",
        "expires_in": _lifetime(),
        "user": user.to_dict(),
    }


def decode_token(token: str) -> dict:
    """Verified claims of an access token.

    Raises ``jwt.ExpiredSignatureError`` or another ``jwt.InvalidTokenError``.
    """
    claims = jwt.decode(token, _secret(), algorithms=[ALGORITHM], options={"require": _REQUIRED_CLAIMS})
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"unexpected token type {claims.get('type')!r}")
    return claims
