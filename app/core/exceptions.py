"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="DynamicDocument", resource_id=42)
    raise NotFoundError(resource="DocumentType", resource_id="visitor_pass", lookup="code")
    raise ValidationError("Validation failed", errors=[{"field": "qty", "message": "Qty is required"}])
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist (or is not visible).

    Args:
        resource: Human-readable model/entity name (e.g. "DocumentType").
        resource_id: The key that was looked up.
        lookup: Name of the lookup attribute, "id" unless looked up by code.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        lookup: str = "id",
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.lookup = lookup
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {lookup}={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates the schema or a rule.

    Maps to HTTP 422. Carries the COMPLETE list of field-level failures so the
    caller can report every problem in one response.

    Args:
        message: Human-readable summary.
        errors: List of ``{"field": str, "message": str}`` dicts.
        details: Optional extra structured payload.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict] | None = None,
        details: dict | None = None,
    ) -> None:
        self.errors = list(errors or [])
        self.details = details or {}
        super().__init__(message)

    @classmethod
    def from_errors(cls, errors: list[dict]) -> "ValidationError":
        """Build the summary message from every field error message."""
        summary = ", ".join(e["message"] for e in errors)
        return cls(f"Validation failed: {summary}", errors=errors)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DuplicateCodeError(ConflictError):
    """Raised when a document type code is already taken."""

    def __init__(self, code: str) -> None:
        super().__init__("DocumentType", "code", code)


class BusinessRuleError(Exception):
    """Raised when the current state of a record forbids the operation.

    Examples: editing a document in a finalized status, deleting a type
    that still has documents. Maps to HTTP 409.
    """


class InvalidTransitionError(BusinessRuleError):
    """Raised when a target status is not reachable from the current status."""

    def __init__(self, current: str, target: str, allowed: list[str]) -> None:
        self.current_status = current
        self.target_status = target
        self.allowed = list(allowed)
        allowed_str = ", ".join(self.allowed) if self.allowed else "none"
        super().__init__(
            f"Invalid status transition: '{current}' → '{target}'. Allowed: {allowed_str}"
        )


class StaleVersionError(Exception):
    """Raised when an expected version no longer matches the stored one.

    Maps to HTTP 409. Only raised when the caller opts into optimistic
    locking by passing an expected version.
    """

    def __init__(self, resource: str, resource_id: int, expected: int, actual: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        msg = f"{resource} id={resource_id} was modified concurrently (expected version {expected}"
        if actual is not None:
            msg += f", found {actual}"
        msg += ")"
        super().__init__(msg)
