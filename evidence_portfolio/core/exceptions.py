"""
Domain exception hierarchy.

Services raise these types; blueprints and the app factory register one
handler per type and get consistent HTTP status codes everywhere.

Usage:
    from evidence_portfolio.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="AcademicCycle", resource_id=42)
    raise InvalidTransitionError("AcademicCycle", "active", "archived")

Outcome reporting:
    A partial success (primary write committed, a derived value not refreshed)
    is NOT an exception. It is reported in the result dict via
    ``outcome="partial_success"`` so the caller never retries a committed write.
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's scope.

    Used for BOTH genuinely missing records AND out-of-scope reads. A 403
    on a read would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "PortfolioNode").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        scope: Optional description of the enforced scope. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        scope: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.scope = scope
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if scope is not None:
            msg += f" (scope={scope})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidReviewStateError(ValidationError):
    """A review targeted a state outside approved | rejected | under_review."""

    code = "ERR_INVALID_REVIEW_STATE"

    def __init__(self, state) -> None:
        self.state = state
        super().__init__(
            f"Invalid review state: {state!r}",
            details={"state": "must be one of approved, rejected, under_review"},
        )


class AssignmentInvalidError(ValidationError):
    """A teaching assignment is inactive or references an unresolvable entity."""

    code = "ERR_ASSIGNMENT_INVALID"

    def __init__(self, assignment_id, reason: str) -> None:
        self.assignment_id = assignment_id
        self.reason = reason
        super().__init__(
            f"Assignment {assignment_id} is not usable: {reason}",
            details={"assignment_id": assignment_id, "reason": reason},
        )


class NoActiveTemplateError(ValidationError):
    """The structure template has no active top-level sections."""

    code = "ERR_NO_ACTIVE_TEMPLATE"

    def __init__(self) -> None:
        super().__init__("No active structure template sections are defined")


class InvalidTransitionError(Exception):
    """Raised when a lifecycle state change is not in the transition table.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, from_state: str, to_state: str) -> None:
        self.resource = resource
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid {resource} transition: {from_state} → {to_state}"
        )


class ConcurrentModificationError(Exception):
    """Raised when an optimistic version check fails on write.

    Maps to HTTP 409. The caller should re-read and retry.
    """

    def __init__(self, resource: str, resource_id: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently; reload and retry"
        )


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AlreadyExistsError(ConflictError):
    """A strict create found the canonical identity already taken."""


class ForbiddenError(Exception):
    """Raised when an authenticated actor attempts a write outside their scope.

    Maps to HTTP 403. Reads outside scope raise NotFoundError instead.
    """

    def __init__(self, message: str = "Not permitted") -> None:
        super().__init__(message)


class ModuleDisabledError(Exception):
    """Raised when an operation needs a module gate that is off for the cycle.

    Maps to HTTP 423.
    """

    def __init__(self, module: str, cycle_id: int | None = None) -> None:
        self.module = module
        self.cycle_id = cycle_id
        super().__init__(f"Module {module!r} is disabled for cycle {cycle_id}")


class GenerationFailedError(Exception):
    """Raised when a portfolio tree could not be written; nothing was persisted.

    Maps to HTTP 500.
    """

    def __init__(self, assignment_id, reason: str | None = None) -> None:
        self.assignment_id = assignment_id
        self.reason = reason
        msg = f"Portfolio generation failed for assignment {assignment_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PersistenceError(Exception):
    """Raised when a commit fails at the storage layer; the session was rolled back.

    Maps to HTTP 500. The driver error is chained as ``__cause__`` and logged,
    never rendered.
    """

    def __init__(self, operation: str, resource: str | None = None) -> None:
        self.operation = operation
        self.resource = resource
        msg = f"Storage failure during {operation}"
        if resource:
            msg += f" ({resource})"
        super().__init__(msg)
