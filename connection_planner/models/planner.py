"""
Connection Planner
Planner aggregate models.

Models:
    - Planner:         root of the aggregate; lifecycle status + optional connection
    - PlannerFund:     planner ↔ fund link with an optional alias of that fund
    - PlannerSource:   ordered data source of a planner
    - PlannerRun:      ordered scheduled run of a source
    - PlannerReport:   ordered report of a source

Architecture:
    Planner ──1:N──▶ PlannerFund ──N:1──▶ Fund (+ FundAlias)
    Planner ──1:N──▶ PlannerSource ──1:N──▶ PlannerRun
                                   ──1:N──▶ PlannerReport
    Planner ──N:1──▶ ExternalConnection          (weak, SET NULL)
    PlannerSource/Run/Report ──N:1──▶ lookups    (weak, SET NULL)

Lifecycle:
    Planner: Draft | In Progress | Finished | Failed — any transition is
    allowed; entering Finished stamps finished_at once and it is never
    cleared.

Ordering:
    display_order is unique per parent (DB constraint); collections are
    ordered by (display_order, id).
"""

from connection_planner.models import db
from connection_planner.models.base import AuditedModel, iso, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

PLANNER_STATUS_DRAFT = "Draft"
PLANNER_STATUS_IN_PROGRESS = "In Progress"
PLANNER_STATUS_FINISHED = "Finished"
PLANNER_STATUS_FAILED = "Failed"

PLANNER_STATUSES = (
    PLANNER_STATUS_DRAFT,
    PLANNER_STATUS_IN_PROGRESS,
    PLANNER_STATUS_FINISHED,
    PLANNER_STATUS_FAILED,
)


# ═════════════════════════════════════════════════════════════════════════════
# 1. Planner
# ═════════════════════════════════════════════════════════════════════════════


class Planner(AuditedModel):
    __tablename__ = "planners"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('Draft','In Progress','Finished','Failed')",
            name="ck_planner_status",
        ),
    )

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text)
    planner_type = db.Column(db.String(100))
    status = db.Column(db.String(50), nullable=False, default=PLANNER_STATUS_DRAFT, index=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    external_connection_id = db.Column(
        db.Integer,
        db.ForeignKey("external_connections.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # ── Relationships ────────────────────────────────────────────────────
    external_connection = db.relationship("ExternalConnection", back_populates="planners")
    funds = db.relationship(
        "PlannerFund", back_populates="planner", lazy="select",
        cascade="all, delete-orphan", order_by="PlannerFund.id",
    )
    sources = db.relationship(
        "PlannerSource", back_populates="planner", lazy="select",
        cascade="all, delete-orphan",
        order_by="[PlannerSource.display_order, PlannerSource.id]",
    )

    def apply_status(self, status):
        """Set the status; entering Finished stamps finished_at once."""
        self.status = status
        if status == PLANNER_STATUS_FINISHED and self.finished_at is None:
            self.finished_at = utcnow()

    def to_dict(self, include_children=False):
        result = {
            **self.audit_dict(),
            "name": self.name,
            "description": self.description,
            "planner_type": self.planner_type,
            "status": self.status,
            "finished_at": iso(self.finished_at),
            "external_connection_id": self.external_connection_id,
            "external_connection": (
                self.external_connection.to_summary() if self.external_connection else None
            ),
            "fund_count": len(self.funds),
            "source_count": len(self.sources),
        }
        if include_children:
            result["funds"] = [f.to_dict() for f in self.funds]
            result["sources"] = [s.to_dict() for s in self.sources]
        return result

    def __repr__(self):
        return f"<Planner {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. PlannerFund
# ═════════════════════════════════════════════════════════════════════════════


class PlannerFund(AuditedModel):
    __tablename__ = "planner_funds"
    __table_args__ = (
        db.UniqueConstraint("planner_id", "fund_id", name="uq_planner_fund"),
    )

    planner_id = db.Column(
        db.Integer, db.ForeignKey("planners.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    fund_id = db.Column(
        db.Integer, db.ForeignKey("funds.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    fund_alias_id = db.Column(
        db.Integer, db.ForeignKey("fund_aliases.id", ondelete="SET NULL"), nullable=True,
    )

    planner = db.relationship("Planner", back_populates="funds")
    fund = db.relationship("Fund")
    fund_alias = db.relationship("FundAlias")

    def to_dict(self):
        return {
            "id": self.id,
            "planner_id": self.planner_id,
            "fund_id": self.fund_id,
            "fund_name": self.fund.name if self.fund else None,
            "fund_alias_id": self.fund_alias_id,
            "fund_alias_name": self.fund_alias.alias_name if self.fund_alias else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. PlannerSource
# ═════════════════════════════════════════════════════════════════════════════


class PlannerSource(AuditedModel):
    __tablename__ = "planner_sources"
    __table_args__ = (
        db.UniqueConstraint("planner_id", "display_order", name="uq_planner_source_order"),
    )

    planner_id = db.Column(
        db.Integer, db.ForeignKey("planners.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    source_name_id = db.Column(
        db.Integer, db.ForeignKey("source_names.id", ondelete="SET NULL"), nullable=True,
    )
    display_order = db.Column(db.Integer, nullable=False, default=0)

    planner = db.relationship("Planner", back_populates="sources")
    source_name = db.relationship("SourceName")
    runs = db.relationship(
        "PlannerRun", back_populates="planner_source", lazy="select",
        cascade="all, delete-orphan",
        order_by="[PlannerRun.display_order, PlannerRun.id]",
    )
    reports = db.relationship(
        "PlannerReport", back_populates="planner_source", lazy="select",
        cascade="all, delete-orphan",
        order_by="[PlannerReport.display_order, PlannerReport.id]",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "planner_id": self.planner_id,
            "source_name_id": self.source_name_id,
            "source_name": self.source_name.name if self.source_name else None,
            "display_order": self.display_order,
            "runs": [r.to_dict() for r in self.runs],
            "reports": [r.to_dict() for r in self.reports],
        }


# ═════════════════════════════════════════════════════════════════════════════
# 4. PlannerRun / PlannerReport
# ═════════════════════════════════════════════════════════════════════════════


class PlannerRun(AuditedModel):
    __tablename__ = "planner_runs"
    __table_args__ = (
        db.UniqueConstraint("planner_source_id", "display_order", name="uq_planner_run_order"),
    )

    planner_source_id = db.Column(
        db.Integer, db.ForeignKey("planner_sources.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    run_name_id = db.Column(
        db.Integer, db.ForeignKey("run_names.id", ondelete="SET NULL"), nullable=True,
    )
    display_order = db.Column(db.Integer, nullable=False, default=0)

    planner_source = db.relationship("PlannerSource", back_populates="runs")
    run_name = db.relationship("RunName")

    def to_dict(self):
        return {
            "id": self.id,
            "planner_source_id": self.planner_source_id,
            "run_name_id": self.run_name_id,
            "run_name": self.run_name.name if self.run_name else None,
            "display_order": self.display_order,
        }


class PlannerReport(AuditedModel):
    __tablename__ = "planner_reports"
    __table_args__ = (
        db.UniqueConstraint("planner_source_id", "display_order", name="uq_planner_report_order"),
    )

    planner_source_id = db.Column(
        db.Integer, db.ForeignKey("planner_sources.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    report_type_id = db.Column(
        db.Integer, db.ForeignKey("report_types.id", ondelete="SET NULL"), nullable=True,
    )
    report_name_id = db.Column(
        db.Integer, db.ForeignKey("report_names.id", ondelete="SET NULL"), nullable=True,
    )
    display_order = db.Column(db.Integer, nullable=False, default=0)

    planner_source = db.relationship("PlannerSource", back_populates="reports")
    report_type = db.relationship("ReportType")
    report_name = db.relationship("ReportName")

    def to_dict(self):
        return {
            "id": self.id,
            "planner_source_id": self.planner_source_id,
            "report_type_id": self.report_type_id,
            "report_type": self.report_type.name if self.report_type else None,
            "report_name_id": self.report_name_id,
            "report_name": self.report_name.name if self.report_name else None,
            "display_order": self.display_order,
        }
