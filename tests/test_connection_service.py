"""Tests for the external connection registry service.

Coverage:
  1. create / update / get / delete basics + validation
  2. case-insensitive name uniqueness
  3. single default connection across create + update
  4. write-once secret: encrypted at rest, masked in every response
  5. copy: suffixed name, never default, never carries the secret
  6. paged listing + search
  7. stale writes rejected
  8. deleting a connection detaches referencing planners
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, update

from connection_planner.core.exceptions import (
    ConflictError,
    ImmutableFieldError,
    NotFoundError,
    StaleVersionError,
    ValidationError,
)
from connection_planner.models import db
from connection_planner.models.connection import MASK_TOKEN, ExternalConnection
import connection_planner.services.connection_service as cs
import connection_planner.services.planner_service as ps


# ── Helpers ─────────────────────────────────────────────────────────────────


def _payload(name="Custodian API", **kwargs) -> dict:
    payload = {
        "name": name,
        "base_url": "https://api.custodian.example",
        "authentication_method": "ApiKey",
        "key_field": "X-Api-Key",
        "authentication_place": "Header",
    }
    payload.update(kwargs)
    return payload


def _defaults() -> list[int]:
    return db.session.execute(
        select(ExternalConnection.id).where(ExternalConnection.is_default.is_(True))
    ).scalars().all()


# ═════════════════════════════════════════════════════════════════════════════
# Create / read
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateConnection:
    def test_create_returns_fields_and_version(self):
        conn = cs.create_connection(_payload())
        assert conn["id"] > 0
        assert conn["name"] == "Custodian API"
        assert conn["authentication_place"] == "Header"
        assert conn["is_default"] is False
        assert conn["value_field"] is None
        assert conn["value_field_set"] is False
        assert conn["version"] == 1

    def test_missing_required_field(self):
        with pytest.raises(ValidationError) as exc:
            cs.create_connection(_payload(base_url=""))
        assert "base_url" in exc.value.details

    def test_invalid_authentication_place(self):
        with pytest.raises(ValidationError):
            cs.create_connection(_payload(authentication_place="Cookie"))

    def test_name_too_long(self):
        with pytest.raises(ValidationError):
            cs.create_connection(_payload(name="x" * 256))

    def test_duplicate_name_is_case_insensitive(self):
        cs.create_connection(_payload(name="Prime Broker"))
        with pytest.raises(ConflictError):
            cs.create_connection(_payload(name="prime broker"))
        assert len(db.session.execute(select(ExternalConnection)).scalars().all()) == 1

    def test_get_unknown_raises(self):
        with pytest.raises(NotFoundError):
            cs.get_connection(999)


# ═════════════════════════════════════════════════════════════════════════════
# Default connection
# ═════════════════════════════════════════════════════════════════════════════


class TestDefaultConnection:
    def test_no_default(self):
        cs.create_connection(_payload())
        assert cs.get_default_connection() is None

    def test_new_default_clears_previous(self):
        a = cs.create_connection(_payload(name="A", is_default=True))
        b = cs.create_connection(_payload(name="B", is_default=True))
        assert _defaults() == [b["id"]]
        assert cs.get_connection(a["id"])["is_default"] is False
        assert cs.get_default_connection()["id"] == b["id"]

    def test_update_to_default_clears_previous(self):
        a = cs.create_connection(_payload(name="A", is_default=True))
        b = cs.create_connection(_payload(name="B"))
        cs.update_connection(b["id"], _payload(name="B", is_default=True))
        assert _defaults() == [b["id"]]
        assert cs.get_connection(a["id"])["is_default"] is False

    def test_resaving_default_keeps_it(self):
        a = cs.create_connection(_payload(name="A", is_default=True))
        cs.update_connection(a["id"], _payload(name="A", is_default=True))
        assert _defaults() == [a["id"]]


# ═════════════════════════════════════════════════════════════════════════════
# Secret handling
# ═════════════════════════════════════════════════════════════════════════════


class TestSecret:
    def test_secret_is_masked_and_encrypted(self):
        conn = cs.create_connection(_payload(value_field="s3cr3t"))
        assert conn["value_field"] == MASK_TOKEN
        assert conn["value_field_set"] is True

        row = db.session.get(ExternalConnection, conn["id"])
        assert row.value_field != "s3cr3t"
        assert "s3cr3t" not in row.value_field
        assert cs.resolve_credentials(conn["id"]) == {
            "place": "Header", "key": "X-Api-Key", "value": "s3cr3t",
        }

    def test_secret_never_in_listing(self):
        cs.create_connection(_payload(value_field="s3cr3t"))
        page = cs.list_connections(None, 0, 10)
        assert page["items"][0]["value_field"] == MASK_TOKEN
        assert "s3cr3t" not in str(page)

    def test_new_secret_after_set_is_rejected(self):
        conn = cs.create_connection(_payload(value_field="first"))
        with pytest.raises(ImmutableFieldError):
            cs.update_connection(conn["id"], _payload(value_field="second"))
        assert cs.resolve_credentials(conn["id"])["value"] == "first"

    def test_rejected_secret_change_leaves_other_fields(self):
        conn = cs.create_connection(_payload(value_field="first"))
        with pytest.raises(ImmutableFieldError):
            cs.update_connection(conn["id"], _payload(base_url="https://other", value_field="second"))
        assert cs.get_connection(conn["id"])["base_url"] == "https://api.custodian.example"

    def test_mask_token_or_absent_means_unchanged(self):
        conn = cs.create_connection(_payload(value_field="first"))
        cs.update_connection(conn["id"], _payload(value_field=MASK_TOKEN, base_url="https://b"))
        updated = cs.update_connection(conn["id"], _payload(base_url="https://c"))
        assert updated["base_url"] == "https://c"
        assert updated["value_field"] == MASK_TOKEN
        assert cs.resolve_credentials(conn["id"])["value"] == "first"

    def test_secret_can_be_set_once_later(self):
        conn = cs.create_connection(_payload())
        updated = cs.update_connection(conn["id"], _payload(value_field="late"))
        assert updated["value_field_set"] is True
        assert cs.resolve_credentials(conn["id"])["value"] == "late"
        with pytest.raises(ImmutableFieldError):
            cs.update_connection(conn["id"], _payload(value_field="later"))


# ═════════════════════════════════════════════════════════════════════════════
# Copy
# ═════════════════════════════════════════════════════════════════════════════


class TestCopyConnection:
    def test_copy_drops_default_and_secret(self):
        src = cs.create_connection(_payload(name="Main", is_default=True, value_field="pw"))
        copy = cs.copy_connection(src["id"])
        assert copy["id"] != src["id"]
        assert copy["name"] == "Main (Copy)"
        assert copy["is_default"] is False
        assert copy["value_field"] is None
        assert copy["value_field_set"] is False
        assert copy["base_url"] == src["base_url"]
        assert copy["key_field"] == src["key_field"]
        assert _defaults() == [src["id"]]

    def test_second_copy_conflicts(self):
        src = cs.create_connection(_payload(name="Main"))
        cs.copy_connection(src["id"])
        with pytest.raises(ConflictError):
            cs.copy_connection(src["id"])

    def test_copy_name_too_long(self):
        src = cs.create_connection(_payload(name="n" * 250))
        with pytest.raises(ValidationError):
            cs.copy_connection(src["id"])

    def test_copy_unknown(self):
        with pytest.raises(NotFoundError):
            cs.copy_connection(42)


# ═════════════════════════════════════════════════════════════════════════════
# Listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListConnections:
    def test_paging_shape(self):
        for i in range(25):
            cs.create_connection(_payload(name=f"Conn {i:02d}"))
        page = cs.list_connections(None, 2, 10)
        assert page["total_items"] == 25
        assert page["total_pages"] == 3
        assert len(page["items"]) == 5
        assert page["first"] is False
        assert page["last"] is True
        assert [c["name"] for c in page["items"]] == [f"Conn {i}" for i in range(20, 25)]

    def test_empty_page(self):
        page = cs.list_connections(None, 0, 10)
        assert page["items"] == []
        assert page["total_items"] == 0
        assert page["first"] is True
        assert page["last"] is True

    def test_search_is_case_insensitive_substring(self):
        cs.create_connection(_payload(name="Prime Broker"))
        cs.create_connection(_payload(name="Custodian"))
        page = cs.list_connections("BROK", 0, 10)
        assert [c["name"] for c in page["items"]] == ["Prime Broker"]

    def test_search_escapes_wildcards(self):
        cs.create_connection(_payload(name="100% Feed"))
        cs.create_connection(_payload(name="Other"))
        assert cs.list_connections("%", 0, 10)["total_items"] == 1


# ═════════════════════════════════════════════════════════════════════════════
# Versioning / delete
# ═════════════════════════════════════════════════════════════════════════════


class TestVersioning:
    def test_update_bumps_version(self):
        conn = cs.create_connection(_payload())
        updated = cs.update_connection(conn["id"], _payload(base_url="https://new", version=1))
        assert updated["version"] == 2

    def test_outdated_version_is_rejected(self):
        conn = cs.create_connection(_payload())
        cs.update_connection(conn["id"], _payload(base_url="https://new"))
        with pytest.raises(StaleVersionError):
            cs.update_connection(conn["id"], _payload(base_url="https://newer", version=1))
        assert cs.get_connection(conn["id"])["base_url"] == "https://new"

    def test_concurrent_row_change_is_rejected(self):
        conn = cs.create_connection(_payload())
        row = db.session.get(ExternalConnection, conn["id"])
        assert row.version == 1
        db.session.execute(
            update(ExternalConnection)
            .where(ExternalConnection.id == conn["id"])
            .values(version=ExternalConnection.version + 1),
            execution_options={"synchronize_session": False},
        )
        with pytest.raises(StaleVersionError):
            cs.update_connection(conn["id"], _payload(base_url="https://lost-update"))


class TestDeleteConnection:
    def test_delete(self):
        conn = cs.create_connection(_payload())
        cs.delete_connection(conn["id"])
        with pytest.raises(NotFoundError):
            cs.get_connection(conn["id"])

    def test_delete_detaches_planners(self):
        conn = cs.create_connection(_payload())
        planner = ps.create_planner({"name": "Q1", "external_connection_id": conn["id"]})
        assert planner["external_connection"]["name"] == "Custodian API"

        cs.delete_connection(conn["id"])
        reloaded = ps.get_planner(planner["id"])
        assert reloaded["external_connection_id"] is None
        assert reloaded["external_connection"] is None

    def test_delete_unknown(self):
        with pytest.raises(NotFoundError):
            cs.delete_connection(7)


class TestStorageBackstops:
    """The unique indexes still reject writes that slip past the service checks."""

    def test_second_default_reported_as_default_conflict(self, monkeypatch):
        first = cs.create_connection(_payload(name="Bloomberg Prod", is_default=True))
        monkeypatch.setattr(cs, "_clear_current_default", lambda exclude_id=None: None)

        with pytest.raises(ConflictError) as exc:
            cs.create_connection(_payload(name="Reuters UAT", is_default=True))
        assert exc.value.field == "is_default"
        assert _defaults() == [first["id"]]

    def test_second_default_on_update_reported_as_default_conflict(self, monkeypatch):
        first = cs.create_connection(_payload(name="Bloomberg Prod", is_default=True))
        other = cs.create_connection(_payload(name="Reuters UAT"))
        monkeypatch.setattr(cs, "_clear_current_default", lambda exclude_id=None: None)

        with pytest.raises(ConflictError) as exc:
            cs.update_connection(other["id"], _payload(name="Reuters UAT", is_default=True))
        assert exc.value.field == "is_default"
        assert _defaults() == [first["id"]]

    def test_case_insensitive_name_index(self, monkeypatch):
        cs.create_connection(_payload(name="Prime Broker"))
        monkeypatch.setattr(cs, "_ensure_unique_name", lambda name, exclude_id=None: None)

        with pytest.raises(ConflictError) as exc:
            cs.create_connection(_payload(name="PRIME BROKER"))
        assert exc.value.field == "name"


class TestDefaultFlag:
    @pytest.mark.parametrize("value", ["false", "true", 1, 0])
    def test_non_boolean_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            cs.create_connection(_payload(is_default=value))
        assert "is_default" in exc.value.details
        assert db.session.execute(select(ExternalConnection)).scalars().all() == []

    def test_null_means_not_default(self):
        conn = cs.create_connection(_payload(is_default=None))
        assert conn["is_default"] is False
