"""
AuditedModel — Abstract base class for every persisted entity.

Adds to each table:
  - integer primary key
  - created_at / updated_at (UTC)
  - version counter used as SQLAlchemy's version_id_col, so every UPDATE
    is issued as ``... WHERE id = :id AND version = :expected`` and a
    stale write raises StaleDataError instead of overwriting.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from connection_planner.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """Serialize an optional datetime."""
    return value.isoformat() if value else None


class AuditedModel(db.Model):
    """Abstract base: identity, audit timestamps and optimistic version."""
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = db.Column(db.Integer, nullable=False)

    @declared_attr
    def __mapper_args__(cls):
        return {"version_id_col": cls.version}

    def touch(self):
        """Force an UPDATE (and a version bump) on the next flush."""
        self.updated_at = utcnow()

    def audit_dict(self):
        return {
            "id": self.id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "version": self.version,
        }
