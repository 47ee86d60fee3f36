"""
External connection model.

ExternalConnection — credentials + endpoint configuration for one external
system. Planners point at a connection through a weak (SET NULL) reference.

Design decisions:
- Name is unique case-insensitively. The service checks first; the
  functional unique index on lower(name) is the storage-level backstop.
- At most one row may have is_default = true. Enforced by a partial unique
  index so two racing creates cannot both win.
- value_field holds Fernet ciphertext. It is write-once through the update
  path (value_field_set flips to true on the first non-empty write and
  never flips back). to_dict() renders MASK_TOKEN instead of the stored
  value.
"""

from __future__ import annotations

from sqlalchemy import func, true

from connection_planner.models import db
from connection_planner.models.base import AuditedModel

MASK_TOKEN = "********"

AUTHENTICATION_PLACES = ("Header", "QueryParameters")


class ExternalConnection(AuditedModel):
    __tablename__ = "external_connections"

    name = db.Column(db.String(255), nullable=False)
    base_url = db.Column(db.String(500), nullable=False)
    authentication_method = db.Column(db.String(50), nullable=False)
    key_field = db.Column(db.String(255), nullable=False)
    value_field = db.Column(
        db.Text,
        nullable=True,
        comment="Fernet-encrypted secret. NEVER log or expose.",
    )
    value_field_set = db.Column(db.Boolean, nullable=False, default=False)
    authentication_place = db.Column(
        db.String(20),
        nullable=True,
        comment="Header | QueryParameters",
    )
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)

    planners = db.relationship("Planner", back_populates="external_connection", lazy="select")

    def masked_value(self):
        return MASK_TOKEN if self.value_field_set else None

    def to_dict(self) -> dict:
        return {
            **self.audit_dict(),
            "name": self.name,
            "base_url": self.base_url,
            "authentication_method": self.authentication_method,
            "key_field": self.key_field,
            "value_field": self.masked_value(),
            "value_field_set": bool(self.value_field_set),
            "authentication_place": self.authentication_place,
            "is_default": bool(self.is_default),
        }

    def to_summary(self) -> dict:
        """Short form embedded in planner responses."""
        return {
            "id": self.id,
            "name": self.name,
            "base_url": self.base_url,
            "authentication_method": self.authentication_method,
        }

    def __repr__(self):
        return f"<ExternalConnection {self.id} {self.name!r} default={self.is_default}>"


db.Index(
    "uq_external_connections_name_ci",
    func.lower(ExternalConnection.name),
    unique=True,
)
db.Index(
    "uq_external_connections_single_default",
    ExternalConnection.is_default,
    unique=True,
    sqlite_where=ExternalConnection.is_default == true(),
    postgresql_where=ExternalConnection.is_default == true(),
)
