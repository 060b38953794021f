"""
Platform-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and translate each to a stable error code and HTTP
status (see taskboard.blueprints.register_error_handlers).

    NotFoundError            referenced entity absent            404
    ValidationError          invariant violation / bad input     422
    ConflictError            duplicate unique value / bad state  409
    PermissionDenied         caller lacks role or membership     403
    ExternalUnavailableError directory or storage call failed    503
    PartialFailure           some targets of a fan-out failed    207

Usage:
    from taskboard.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Board", resource_id=42)
    raise ValidationError("interval must be >= 1", details={"interval": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access
    attempts, so a caller cannot discover other tenants' ids.

    Args:
        resource: Human-readable entity name (e.g. "Board", "Card").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but would break a board invariant.

    Examples: negative position index, malformed recurrence pattern,
    deleting a default column that still holds cards, a generated
    recurrence instance being given its own recurrence.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# Name used across the board lifecycle code for invariant failures.
InvariantViolation = ValidationError


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PermissionDenied(Exception):
    """Raised when the caller's role or board membership does not allow an action.

    Maps to HTTP 403.
    """

    def __init__(self, user_id: int | None, action: str, target: str | None = None) -> None:
        self.user_id = user_id
        self.action = action
        self.target = target
        msg = f"User {user_id} is not allowed to {action}"
        if target:
            msg += f" on {target}"
        super().__init__(msg)


class ExternalUnavailableError(Exception):
    """Raised when an external collaborator (directory, storage) cannot be reached.

    Propagated to the caller as-is; the core never retries.
    Maps to HTTP 503.
    """

    def __init__(self, service: str, reason: str = "") -> None:
        self.service = service
        self.reason = reason
        msg = f"{service} unavailable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PartialFailure(Exception):
    """Raised by multi-target operations where some targets failed.

    The successful subset is carried along so callers can still use it.

    Args:
        message: Summary of the failure.
        results: Successful results (already serialized).
        failures: One dict per failed target, e.g. {"source": ..., "error": ...}.
    """

    def __init__(self, message: str, results: list | None = None, failures: list | None = None) -> None:
        self.results = results or []
        self.failures = failures or []
        super().__init__(message)
