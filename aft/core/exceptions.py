"""
Platform-wide exception hierarchy.

Services raise these; the blueprint registers one handler per type and gets
consistent HTTP status codes everywhere.  None of them is raised after a
state change has been committed, so every error response means "nothing
was written".

Usage:
    from aft.core.exceptions import ForbiddenError, ValidationError

    raise ForbiddenError("approve", current_status="pending_cpso", role="dao")
    raise ValidationError("Validation failed", details={"signature": "required"})
"""


class UnauthorizedError(Exception):
    """Raised when an operation is attempted without an identified actor.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the actor's role is not eligible for the operation at the
    request's current status.

    Maps to HTTP 403.  The message always names the current status and the
    actor role so the client can tell a stage mismatch from a role mismatch.

    Args:
        operation: Lifecycle operation that was attempted (e.g. "approve").
        current_status: Status the request was in when the check ran.
        role: Effective role of the actor.
        reason: Optional override for the human-readable message.
    """

    def __init__(
        self,
        operation: str,
        current_status: str | None = None,
        role: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.operation = operation
        self.current_status = current_status
        self.role = role
        if reason is None:
            reason = (
                f"Cannot {operation.replace('_', ' ')} at this stage. "
                f"Current status: {current_status}, your role: {role}"
            )
        super().__init__(reason)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "AFT request").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a payload is missing required fields or carries malformed
    values.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write lost a race or would overwrite an immutable ledger
    entry.

    Maps to HTTP 409.  Callers retry with fresh state; the service never
    merges a conflicting write.

    Args:
        resource: Model name.
        resource_id: PK of the contended row.
        reason: What conflicted.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        reason: str = "was modified concurrently",
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.reason = reason
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += f" {reason}"
        super().__init__(msg)


class StaleStateError(ConflictError):
    """Raised when a compare-and-swap write finds the row already moved on.

    The only conflict worth retrying: re-running the operation against fresh
    state re-checks eligibility, so nothing is merged blindly.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        super().__init__(resource, resource_id, reason="was modified concurrently; retry with fresh state")


class DuplicateRequestNumberError(ConflictError):
    """Raised when an insert loses the unique request-number race."""

    def __init__(self, request_number: str) -> None:
        super().__init__("AFT request", request_number, reason="request number already taken")
        self.request_number = request_number
