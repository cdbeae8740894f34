"""
Platform-wide exception hierarchy.

Services raise these; ``accredit.utils.errors.register_error_handlers``
maps each type to one HTTP status so every blueprint answers with the
same envelope.

Usage:
    from accredit.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Document", resource_id=42)
    raise ValidationError("Title is required", details={"title": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Document", "Reviewer").
        resource_id: The key that was looked up. Included in logs.
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
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when a role or ownership guard fails. Maps to HTTP 403."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value, or when a
    concurrent writer already changed the record. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StaleRecordError(Exception):
    """Raised when a versioned row was modified by another request. Maps to HTTP 409."""

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} id={resource_id} was modified by another request; reload and retry"
        )


class TransitionError(Exception):
    """Raised when a workflow state guard rejects an action. Maps to HTTP 409.

    Args:
        entity: Label of the record (e.g. "Document 12").
        action: The attempted action (e.g. "assign_auditor").
        current: Status the record is in.
        reason: Optional explanation appended to the message.
    """

    def __init__(self, entity: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' {entity} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity = entity
        self.action = action
        self.current_status = current
        self.reason = reason


class CapacityExceededError(Exception):
    """Raised when a reviewer/auditor cannot accept another assignment.

    Maps to HTTP 400 — an admin-facing rejection, not a server fault.
    """

    def __init__(self, kind: str, person_id: int, current: int, maximum: int) -> None:
        self.kind = kind
        self.person_id = person_id
        self.current = current
        self.maximum = maximum
        super().__init__(
            f"{kind.capitalize()} id={person_id} is not available for new assignments "
            f"(workload {current}/{maximum})"
        )


class AuthenticationError(Exception):
    """Raised when credentials or a session cannot be accepted. Maps to HTTP 401.

    ``reason`` is recorded in the activity log but never returned to the caller.
    """

    def __init__(self, message: str = "Invalid credentials", reason: str | None = None) -> None:
        self.reason = reason or message
        super().__init__(message)


class UpstreamFailure(Exception):
    """Raised by outbound collaborators (e-mail, blob storage).

    Workflow callers catch it at the call site and log it; it never reaches
    an HTTP response.
    """

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")
