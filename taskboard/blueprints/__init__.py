"""
Taskboard Platform
Blueprint helpers shared by every API module.
"""

import logging

from flask import g, request
from werkzeug.exceptions import HTTPException

from taskboard.core.exceptions import (
    ConflictError,
    ExternalUnavailableError,
    NotFoundError,
    PartialFailure,
    PermissionDenied,
    ValidationError,
)
from taskboard.models import db
from taskboard.services.policy import Actor
from taskboard.services.user_service import UserServiceError
from taskboard.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    limit, offset = page_args(default_limit, max_limit)
    return query.limit(limit).offset(offset).all(), total


def page_args(default_limit=50, max_limit=1000):
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 0), offset


def arg_bool(name, default=False):
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def current_user():
    """The authenticated, active User for this request, or raise 401."""
    user_id = getattr(g, "jwt_user_id", None)
    if not user_id:
        raise UserServiceError("Authentication required", 401)
    from taskboard.models.auth import User

    user = db.session.get(User, user_id)
    if user is None or user.tenant_id != getattr(g, "jwt_tenant_id", None):
        raise UserServiceError("Authentication required", 401)
    if not user.is_active:
        raise UserServiceError("Account is disabled", 403)
    return user


def current_actor() -> Actor:
    """Actor built from the stored user, so role changes apply immediately."""
    return Actor.from_user(current_user())


def register_error_handlers(bp):
    """Translate the platform exception hierarchy into api_error responses."""

    @bp.errorhandler(NotFoundError)
    def _not_found(error):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _invalid(error):
        return api_error(E.INVARIANT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(PermissionDenied)
    def _forbidden(error):
        logger.info("Permission denied: %s", error)
        return api_error(E.FORBIDDEN, "You are not allowed to perform this action")

    @bp.errorhandler(ExternalUnavailableError)
    def _unavailable(error):
        logger.warning("External service unavailable: %s", error)
        return api_error(E.EXTERNAL_UNAVAILABLE, str(error))

    @bp.errorhandler(PartialFailure)
    def _partial(error):
        return api_error(
            E.PARTIAL_FAILURE, str(error),
            details={"results": error.results, "failures": error.failures},
        )

    @bp.errorhandler(UserServiceError)
    def _auth(error):
        code = E.UNAUTHENTICATED if error.status_code == 401 else E.FORBIDDEN
        return api_error(code, error.message, status=error.status_code)

    @bp.errorhandler(Exception)
    def _unexpected(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error endpoint=%s", request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
