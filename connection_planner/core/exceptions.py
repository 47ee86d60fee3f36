"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once
(see ``connection_planner.blueprints.register_error_handlers``) and get
consistent HTTP status codes everywhere.

    NotFoundError              → 404  referenced entity absent
    ValidationError            → 400  malformed or out-of-range input
    ImmutableFieldError        → 400  write to a write-once field
    ConflictError              → 409  duplicate unique value (e.g. name)
    DuplicateAssociationError  → 409  link already exists
    StaleVersionError          → 409  write based on an outdated version

Usage:
    from connection_planner.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Planner", resource_id=42)
    raise ValidationError("name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested or referenced resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Planner", "Fund").
        resource_id: The id that was looked up.
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
    """Raised when input is missing, malformed or outside the allowed values.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ImmutableFieldError(Exception):
    """Raised on an attempt to change a field that can only be written once."""

    def __init__(self, resource: str, field: str, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        super().__init__(message or f"{resource}.{field} cannot be modified once set")


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

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


class DuplicateAssociationError(ConflictError):
    """Raised when a link between two entities already exists."""

    def __init__(self, resource: str, field: str, value=None, owner: str | None = None) -> None:
        super().__init__(resource, field, value)
        if owner:
            self.args = (f"{resource} with {field}={value!r} is already attached to {owner}",)


class StaleVersionError(Exception):
    """Raised when a write is based on a version that is no longer current."""

    def __init__(self, resource: str, resource_id=None, expected=None, actual=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " was modified concurrently"
        if expected is not None and actual is not None:
            msg += f" (expected version {expected}, found {actual})"
        super().__init__(msg + "; re-read and retry")
