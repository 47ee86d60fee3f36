"""Connection Registry service layer.

Owns two invariants across all ExternalConnection rows:
  - at most one connection is the default (read → clear → write inside one
    transaction; the partial unique index is the backstop under races)
  - the secret (value_field) is write-once through the update path

Rules:
  - db.session.commit() happens only in this file (via ``transaction``).
  - Secrets are Fernet-encrypted before storage; neither the plaintext nor
    the ciphertext appears in log output or return values. Every returned
    dict renders the secret as MASK_TOKEN once it has been set.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from connection_planner.core.exceptions import (
    ConflictError,
    ImmutableFieldError,
    ValidationError,
)
from connection_planner.models import db
from connection_planner.models.connection import (
    AUTHENTICATION_PLACES,
    MASK_TOKEN,
    ExternalConnection,
)
from connection_planner.models.planner import Planner
from connection_planner.services.helpers.pagination import paginate
from connection_planner.utils.crypto import decrypt_secret, encrypt_secret
from connection_planner.utils.helpers import (
    check_version,
    get_or_raise,
    optional_text,
    require_text,
    transaction,
)

logger = logging.getLogger(__name__)

RESOURCE = "ExternalConnection"
COPY_SUFFIX = " (Copy)"

# Storage messages that identify the single-default index: Postgres names the
# index, SQLite names the column.
_DEFAULT_INDEX_MARKERS = ("uq_external_connections_single_default", "external_connections.is_default")


# ── Validation ────────────────────────────────────────────────────────────────


def _validated_fields(data: dict) -> dict:
    """Coerce and validate the non-secret connection fields."""
    fields = {
        "name": require_text(data, "name", 255),
        "base_url": require_text(data, "base_url", 500),
        "authentication_method": require_text(data, "authentication_method", 50),
        "key_field": require_text(data, "key_field", 255),
        "authentication_place": optional_text(data, "authentication_place", 20),
        "is_default": _flag(data, "is_default"),
    }
    place = fields["authentication_place"]
    if place is not None and place not in AUTHENTICATION_PLACES:
        raise ValidationError(
            f"authentication_place must be one of: {', '.join(AUTHENTICATION_PLACES)}",
            details={"authentication_place": "invalid"},
        )
    return fields


def _flag(data: dict, field: str) -> bool:
    value = data.get(field)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false", details={field: "boolean expected"})
    return value


def _incoming_secret(data: dict) -> str | None:
    value = data.get("value_field")
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("value_field must be a string", details={"value_field": "string expected"})
    if len(value) > 500:
        raise ValidationError("value_field must be ≤ 500 characters", details={"value_field": "max 500 characters"})
    return value or None


def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    stmt = select(func.count(ExternalConnection.id)).where(
        func.lower(ExternalConnection.name) == name.lower()
    )
    if exclude_id is not None:
        stmt = stmt.where(ExternalConnection.id != exclude_id)
    if db.session.execute(stmt).scalar_one():
        raise ConflictError(RESOURCE, "name", name)


def _clear_current_default(exclude_id: int | None = None) -> None:
    """Unset the existing default and flush before the new default is written."""
    stmt = select(ExternalConnection).where(ExternalConnection.is_default.is_(True))
    if exclude_id is not None:
        stmt = stmt.where(ExternalConnection.id != exclude_id)
    for current in db.session.execute(stmt).scalars():
        logger.debug("Removing default flag from connection id=%s", current.id)
        current.is_default = False
    db.session.flush()


def _default_conflicts() -> dict:
    """A second default that slipped past _clear_current_default in a race."""
    error = ConflictError(RESOURCE, "is_default", True)
    return {marker: error for marker in _DEFAULT_INDEX_MARKERS}


def _store_secret(conn: ExternalConnection, secret: str) -> None:
    conn.value_field = encrypt_secret(secret)
    conn.value_field_set = True


# ── Reads ─────────────────────────────────────────────────────────────────────


def list_connections(search: str | None, page: int, size: int) -> dict:
    """Paged connections sorted by name, optionally filtered by name substring."""
    logger.debug("Listing connections search=%r page=%s size=%s", search, page, size)
    stmt = select(ExternalConnection)
    if search and search.strip():
        stmt = stmt.where(
            func.lower(ExternalConnection.name).contains(search.strip().lower(), autoescape=True)
        )
    stmt = stmt.order_by(ExternalConnection.name.asc(), ExternalConnection.id.asc())
    return paginate(stmt, page, size, ExternalConnection.to_dict)


def get_connection(connection_id: int) -> dict:
    return get_or_raise(ExternalConnection, connection_id, RESOURCE).to_dict()


def get_default_connection() -> dict | None:
    conn = db.session.execute(
        select(ExternalConnection).where(ExternalConnection.is_default.is_(True))
    ).scalar_one_or_none()
    return conn.to_dict() if conn else None


def resolve_credentials(connection_id: int) -> dict:
    """Return the decrypted credential for outbound calls to the external system.

    Internal use only — never route this through the HTTP layer.

    Returns:
        {"place": "Header" | "QueryParameters" | None, "key": str, "value": str | None}
    """
    conn = get_or_raise(ExternalConnection, connection_id, RESOURCE)
    value = decrypt_secret(conn.value_field) if conn.value_field_set and conn.value_field else None
    return {"place": conn.authentication_place, "key": conn.key_field, "value": value}


# ── Writes ────────────────────────────────────────────────────────────────────


def create_connection(data: dict) -> dict:
    """Create a connection; becoming default clears the previous default first.

    Raises:
        ValidationError: missing/invalid fields.
        ConflictError:   name already used (case-insensitive).
    """
    fields = _validated_fields(data)
    secret = _incoming_secret(data)
    logger.info("Creating external connection name=%r default=%s", fields["name"], fields["is_default"])

    duplicate = ConflictError(RESOURCE, "name", fields["name"])
    with transaction(RESOURCE, integrity_error=duplicate, constraint_errors=_default_conflicts()):
        _ensure_unique_name(fields["name"])
        if fields["is_default"]:
            _clear_current_default()
        conn = ExternalConnection(**fields)
        if secret is not None:
            _store_secret(conn, secret)
        db.session.add(conn)

    logger.info("Created external connection id=%s", conn.id)
    return conn.to_dict()


def update_connection(connection_id: int, data: dict) -> dict:
    """Overwrite a connection's fields.

    The secret is write-once: once value_field_set is true the only accepted
    incoming values are null/absent or MASK_TOKEN (both mean "no change").

    Raises:
        NotFoundError, ValidationError, ConflictError,
        ImmutableFieldError: new secret supplied after one was set.
        StaleVersionError:   payload ``version`` differs from the stored one.
    """
    logger.info("Updating external connection id=%s", connection_id)
    conn = get_or_raise(ExternalConnection, connection_id, RESOURCE)
    fields = _validated_fields(data)
    secret = _incoming_secret(data)

    duplicate = ConflictError(RESOURCE, "name", fields["name"])
    with transaction(
        RESOURCE, connection_id, integrity_error=duplicate, constraint_errors=_default_conflicts(),
    ):
        check_version(conn, data, RESOURCE)
        _ensure_unique_name(fields["name"], exclude_id=connection_id)

        changes_secret = secret is not None and secret != MASK_TOKEN
        if conn.value_field_set and changes_secret:
            raise ImmutableFieldError(
                RESOURCE, "value_field",
                "value_field cannot be modified once set; delete and recreate the connection",
            )

        if fields["is_default"] and not conn.is_default:
            _clear_current_default(exclude_id=connection_id)

        if changes_secret:
            _store_secret(conn, secret)

        for key, value in fields.items():
            setattr(conn, key, value)

    logger.info("Updated external connection id=%s", connection_id)
    return conn.to_dict()


def delete_connection(connection_id: int) -> None:
    """Delete a connection; planners that referenced it are detached."""
    logger.info("Deleting external connection id=%s", connection_id)
    conn = get_or_raise(ExternalConnection, connection_id, RESOURCE)
    with transaction(RESOURCE, connection_id):
        detached = db.session.execute(
            select(Planner).where(Planner.external_connection_id == connection_id)
        ).scalars().all()
        for planner in detached:
            planner.external_connection = None
        db.session.delete(conn)
    if detached:
        logger.warning(
            "Deleted external connection id=%s detached from %d planner(s): %s",
            connection_id, len(detached), [p.id for p in detached],
        )
    else:
        logger.info("Deleted external connection id=%s", connection_id)


def copy_connection(connection_id: int) -> dict:
    """Duplicate a connection under ``"<name> (Copy)"``.

    The copy is never default and never carries the secret.
    """
    logger.info("Copying external connection id=%s", connection_id)
    source = get_or_raise(ExternalConnection, connection_id, RESOURCE)
    name = source.name + COPY_SUFFIX
    if len(name) > 255:
        raise ValidationError("Copied name would exceed 255 characters", details={"name": "too long"})

    duplicate = ConflictError(RESOURCE, "name", name)
    with transaction(RESOURCE, integrity_error=duplicate):
        _ensure_unique_name(name)
        copy = ExternalConnection(
            name=name,
            base_url=source.base_url,
            authentication_method=source.authentication_method,
            key_field=source.key_field,
            authentication_place=source.authentication_place,
            is_default=False,
            value_field=None,
            value_field_set=False,
        )
        db.session.add(copy)

    logger.info("Created copy id=%s of external connection id=%s", copy.id, connection_id)
    return copy.to_dict()

