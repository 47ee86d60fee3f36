"""Shared service helpers.

get_or_raise:   primary-key lookup that raises NotFoundError
transaction:    one atomic unit of work; storage signals → service exceptions
require_text / optional_text / optional_id / optional_int:
                payload field coercion raising ValidationError
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from connection_planner.core.exceptions import (
    ConflictError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
)
from connection_planner.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


# ── Unit of work ─────────────────────────────────────────────────────────────

@contextmanager
def transaction(resource, resource_id=None, integrity_error=None, constraint_errors=None):
    """Run the body as one atomic write and commit it.

    Any exception rolls the session back, so nothing from the body is
    persisted. Storage-level signals are translated:

        IntegrityError  → the ``constraint_errors`` entry whose key (index
                          name or ``table.column``) appears in the driver
                          message, else ``integrity_error`` (the error the
                          pre-check would have raised), else a generic
                          ConflictError
        StaleDataError  → StaleVersionError

    Usage::

        with transaction("Planner", planner_id):
            planner.name = data["name"]
    """
    try:
        yield
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s write: %s", resource, exc.orig)
        raise _integrity_error_for(exc, constraint_errors, integrity_error, resource) from exc
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale write rejected resource=%s id=%s", resource, resource_id)
        raise StaleVersionError(resource, resource_id) from exc
    except Exception:
        db.session.rollback()
        raise


def _integrity_error_for(exc, constraint_errors, fallback, resource):
    message = str(exc.orig)
    for marker, error in (constraint_errors or {}).items():
        if marker in message:
            return error
    return fallback or ConflictError(resource, "unique constraint")


def check_version(entity, data, resource):
    """Reject the write when the caller's ``version`` is not the stored one."""
    expected = data.get("version")
    if expected is None:
        return
    expected = optional_int(data, "version")
    if expected != entity.version:
        raise StaleVersionError(resource, entity.id, expected=expected, actual=entity.version)


# ── Payload coercion ─────────────────────────────────────────────────────────

def require_text(data, field, max_length=None):
    """Return the stripped string value of a required field."""
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "required"})
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(
            f"{field} must be ≤ {max_length} characters",
            details={field: f"max {max_length} characters"},
        )
    return value


def optional_text(data, field, max_length=None):
    """Return the stripped string value of an optional field, or None."""
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "string expected"})
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(
            f"{field} must be ≤ {max_length} characters",
            details={field: f"max {max_length} characters"},
        )
    return value or None


def optional_int(data, field):
    """Return an integer field value, or None when absent/null."""
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "integer expected"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field} must be an integer", details={field: "integer expected"},
        ) from None


def optional_id(data, field):
    """Return a positive integer id, or None when absent/null."""
    value = optional_int(data, field)
    if value is not None and value <= 0:
        raise ValidationError(f"{field} must be a positive id", details={field: "positive id"})
    return value
