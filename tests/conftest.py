"""
Shared pytest fixtures for the Connection Planner test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - lookups: one row of every lookup kind plus a fund alias
"""

import os

import pytest
from cryptography.fernet import Fernet

# utils.crypto._fernet() reads the key at call time; set it before anything encrypts.
if not os.environ.get("ENCRYPTION_KEY"):
    os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()

from connection_planner import create_app
from connection_planner.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def lookups():
    """Create one entry per lookup kind and return their ids."""
    from connection_planner.services import master_data_service as mds

    fund = mds.create_entry("funds", {"name": "Growth Fund"})
    alias = mds.add_fund_alias(fund["id"], {"alias_name": "GF"})
    report_type = mds.create_entry("report-types", {"name": "Daily"})
    return {
        "fund_id": fund["id"],
        "fund_alias_id": alias["id"],
        "source_name_id": mds.create_entry("source-names", {"name": "Bloomberg"})["id"],
        "run_name_id": mds.create_entry("run-names", {"name": "Morning"})["id"],
        "report_type_id": report_type["id"],
        "report_name_id": mds.create_entry(
            "report-names", {"name": "NAV", "report_type_id": report_type["id"]},
        )["id"],
    }
