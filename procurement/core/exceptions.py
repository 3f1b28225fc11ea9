"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one handler
per type so every blueprint gets the same HTTP status codes and the same
error body shape.

Usage:
    from procurement.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="MTF", resource_id=42)
    raise QuantityExceededError(source_line_id=7, requested=250, available=200)
"""

from __future__ import annotations


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts.
    A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Project", "MTF").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional; the scope that was enforced. For debug logging only.
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
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint): this
    exception signals that the data was well-formed but violated a business
    rule. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """A workflow action is not valid from the document's current state.

    Examples: approving past the project's max level, revising a document
    that is not rejected, rejecting lines that are no longer pending.
    """

    def __init__(
        self,
        doc_number: str,
        action: str,
        current_status: str,
        reason: str | None = None,
    ) -> None:
        msg = f"Cannot '{action}' {doc_number} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={
            "doc_number": doc_number,
            "action": action,
            "current_status": current_status,
        })
        self.doc_number = doc_number
        self.action = action
        self.current_status = current_status
        self.reason = reason


class QuantityExceededError(ValidationError):
    """Requested downstream quantity is larger than the upstream line's backlog."""

    def __init__(self, source_line_id: int, requested, available) -> None:
        self.source_line_id = source_line_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested quantity {requested} exceeds backlog {available} "
            f"of source line id={source_line_id}",
            details={
                "source_line_id": source_line_id,
                "requested": float(requested),
                "available": float(available),
            },
        )


class ForbiddenError(Exception):
    """The actor is not allowed to perform the action.

    Raised when an approval gate or role check fails at the service boundary.
    ``check`` names the failing check so the refusal is auditable.

    Maps to HTTP 403.
    """

    def __init__(self, action: str, check: str, reason: str) -> None:
        self.action = action
        self.check = check
        self.reason = reason
        super().__init__(f"Not allowed to {action}: {reason}")


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    retryable = False

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StaleStateError(ConflictError):
    """The document changed between read and write.

    Raised when ``expected_version`` does not match, or when the conditional
    version bump loses a race against a concurrent transition. The caller
    should reload the document and resubmit.
    """

    retryable = True

    def __init__(
        self,
        resource: str,
        resource_id: int,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        Exception.__init__(
            self,
            f"{resource} id={resource_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
        )
        self.resource = resource
        self.field = "version"
        self.value = str(expected_version)
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
