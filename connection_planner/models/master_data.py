"""
Master data (lookup) models.

Independently owned reference tables that planners point at through weak
references:
  Fund / FundAlias — a fund owns zero or more aliases (cascade delete).
  SourceName, RunName, ReportType — plain named entries.
  ReportName — named entry with an optional (SET NULL) ReportType.

Every kind is unique by name; listings are alphabetical.
"""

from connection_planner.models import db
from connection_planner.models.base import AuditedModel


class _NamedEntry(AuditedModel):
    __abstract__ = True

    name = db.Column(db.String(255), nullable=False, unique=True)

    def to_dict(self):
        return {**self.audit_dict(), "name": self.name}

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} {self.name!r}>"


class Fund(_NamedEntry):
    __tablename__ = "funds"

    aliases = db.relationship(
        "FundAlias",
        back_populates="fund",
        lazy="select",
        cascade="all, delete-orphan",
        order_by="FundAlias.alias_name",
    )

    def to_dict(self, include_aliases=False):
        result = super().to_dict()
        if include_aliases:
            result["aliases"] = [a.to_dict() for a in self.aliases]
        return result


class FundAlias(AuditedModel):
    __tablename__ = "fund_aliases"
    __table_args__ = (
        db.UniqueConstraint("fund_id", "alias_name", name="uq_fund_alias"),
    )

    fund_id = db.Column(
        db.Integer, db.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    alias_name = db.Column(db.String(255), nullable=False)

    fund = db.relationship("Fund", back_populates="aliases")

    def to_dict(self):
        return {**self.audit_dict(), "fund_id": self.fund_id, "alias_name": self.alias_name}


class SourceName(_NamedEntry):
    __tablename__ = "source_names"


class RunName(_NamedEntry):
    __tablename__ = "run_names"


class ReportType(_NamedEntry):
    __tablename__ = "report_types"


class ReportName(_NamedEntry):
    __tablename__ = "report_names"

    report_type_id = db.Column(
        db.Integer,
        db.ForeignKey("report_types.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    report_type = db.relationship("ReportType")

    def to_dict(self):
        result = super().to_dict()
        result["report_type_id"] = self.report_type_id
        result["report_type"] = self.report_type.name if self.report_type else None
        return result
