"""Planner aggregate service layer.

A planner exclusively owns its fund links, sources and (through sources)
runs and reports. Every operation here is one unit of work on that
aggregate: references into the lookup tables and the connection registry
are resolved at write time, and any failure discards the whole write.

Rules:
  - Child collections are accepted in full on create. After that they only
    change through the add_* / remove_* operations; update_planner touches
    scalar fields only.
  - Adding or removing a child bumps the planner's version, so two writers
    racing on the same aggregate conflict instead of interleaving.
  - Entering ``Finished`` stamps finished_at once. Leaving ``Finished``
    keeps the stamp.
  - display_order is unique per parent; when omitted the next integer after
    the current maximum is assigned.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from connection_planner.core.exceptions import (
    DuplicateAssociationError,
    NotFoundError,
    ValidationError,
)
from connection_planner.models import db
from connection_planner.models.connection import ExternalConnection
from connection_planner.models.master_data import (
    Fund,
    ReportName,
    ReportType,
    RunName,
    SourceName,
)
from connection_planner.models.planner import (
    PLANNER_STATUS_DRAFT,
    PLANNER_STATUSES,
    Planner,
    PlannerFund,
    PlannerReport,
    PlannerRun,
    PlannerSource,
)
from connection_planner.services.helpers.pagination import paginate
from connection_planner.services.master_data_service import resolve_fund_alias
from connection_planner.utils.helpers import (
    check_version,
    get_or_raise,
    optional_id,
    optional_int,
    optional_text,
    require_text,
    transaction,
)

logger = logging.getLogger(__name__)

RESOURCE = "Planner"


# ── Validation helpers ────────────────────────────────────────────────────────


def _validate_status(status, field="status"):
    if status not in PLANNER_STATUSES:
        raise ValidationError(
            f"{field} must be one of: {', '.join(PLANNER_STATUSES)}",
            details={field: "invalid"},
        )
    return status


def _status_filter(status):
    """Normalise an optional status filter; blank means no filter."""
    if status is None or not str(status).strip():
        return None
    return _validate_status(str(status).strip())


def _child_list(data, field):
    items = data.get(field)
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValidationError(f"{field} must be a list of objects", details={field: "list expected"})
    return items


def _assign_orders(items, taken, label):
    """Return one display_order per item.

    Explicit orders must be non-negative and unique among ``taken`` and each
    other; omitted ones get the next integer after the highest order in use.
    """
    used = set(taken)
    explicit = []
    for item in items:
        order = optional_int(item, "display_order")
        if order is not None:
            if order < 0:
                raise ValidationError(
                    f"{label} display_order must be ≥ 0", details={"display_order": order},
                )
            if order in used:
                raise ValidationError(
                    f"{label} display_order {order} is already used",
                    details={"display_order": order},
                )
            used.add(order)
        explicit.append(order)

    orders = []
    for order in explicit:
        if order is None:
            order = max(used, default=-1) + 1
            used.add(order)
        orders.append(order)
    return orders


# ── Child builders ────────────────────────────────────────────────────────────


def _link_fund(planner, item):
    fund_id = optional_id(item, "fund_id")
    if fund_id is None:
        raise ValidationError("fund_id is required", details={"fund_id": "required"})
    fund = get_or_raise(Fund, fund_id)

    if any(link.fund is fund for link in planner.funds):
        raise DuplicateAssociationError(
            "Fund", "fund_id", fund_id, owner=f"Planner id={planner.id}" if planner.id else "this planner",
        )

    link = PlannerFund(fund=fund)
    alias_id = optional_id(item, "fund_alias_id")
    if alias_id is not None:
        link.fund_alias = resolve_fund_alias(fund, alias_id)
    planner.funds.append(link)
    return link


def _build_run(item, order):
    run = PlannerRun(display_order=order)
    run_name_id = optional_id(item, "run_name_id")
    if run_name_id is not None:
        run.run_name = get_or_raise(RunName, run_name_id)
    return run


def _build_report(item, order):
    report = PlannerReport(display_order=order)
    type_id = optional_id(item, "report_type_id")
    if type_id is not None:
        report.report_type = get_or_raise(ReportType, type_id)
    name_id = optional_id(item, "report_name_id")
    if name_id is not None:
        report.report_name = get_or_raise(ReportName, name_id)
    return report


def _build_source(item, order):
    source = PlannerSource(display_order=order)
    source_name_id = optional_id(item, "source_name_id")
    if source_name_id is not None:
        source.source_name = get_or_raise(SourceName, source_name_id)

    runs = _child_list(item, "runs")
    for run_item, run_order in zip(runs, _assign_orders(runs, (), "Run")):
        source.runs.append(_build_run(run_item, run_order))

    reports = _child_list(item, "reports")
    for report_item, report_order in zip(reports, _assign_orders(reports, (), "Report")):
        source.reports.append(_build_report(report_item, report_order))
    return source


def _resolve_connection(data):
    connection_id = optional_id(data, "external_connection_id")
    if connection_id is None:
        return None
    return get_or_raise(ExternalConnection, connection_id, "ExternalConnection")


def _get_source(source_id):
    return get_or_raise(PlannerSource, source_id, "PlannerSource")


# ── Reads ─────────────────────────────────────────────────────────────────────


def _list_stmt():
    return select(Planner).options(
        selectinload(Planner.funds),
        selectinload(Planner.sources),
        selectinload(Planner.external_connection),
    )


def _newest_first(stmt):
    return stmt.order_by(Planner.created_at.desc(), Planner.id.desc())


def list_planners(status=None, page=0, size=20):
    """Paged planners, newest first, optionally filtered by status."""
    logger.debug("Listing planners status=%r page=%s size=%s", status, page, size)
    stmt = _list_stmt()
    status = _status_filter(status)
    if status:
        stmt = stmt.where(Planner.status == status)
    return paginate(_newest_first(stmt), page, size, Planner.to_dict)


def search_planners(query, status=None, page=0, size=20):
    """Case-insensitive substring search on name, AND-ed with the status filter."""
    logger.debug("Searching planners query=%r status=%r page=%s size=%s", query, status, page, size)
    stmt = _list_stmt()
    if query and query.strip():
        stmt = stmt.where(
            func.lower(Planner.name).contains(query.strip().lower(), autoescape=True)
        )
    status = _status_filter(status)
    if status:
        stmt = stmt.where(Planner.status == status)
    return paginate(_newest_first(stmt), page, size, Planner.to_dict)


def get_planner(planner_id):
    return get_or_raise(Planner, planner_id, RESOURCE).to_dict(include_children=True)


# ── Planner writes ────────────────────────────────────────────────────────────


def create_planner(data):
    """Create a planner together with its nested funds and sources.

    Body shape::

        {
            "name": str, "description"?: str, "planner_type"?: str,
            "status"?: "Draft" | "In Progress" | "Finished" | "Failed",
            "external_connection_id"?: int,
            "funds"?:   [{"fund_id": int, "fund_alias_id"?: int}],
            "sources"?: [{"source_name_id"?: int, "display_order"?: int,
                          "runs"?:    [{"run_name_id"?: int, "display_order"?: int}],
                          "reports"?: [{"report_type_id"?: int, "report_name_id"?: int,
                                        "display_order"?: int}]}]
        }

    Raises:
        ValidationError, NotFoundError, DuplicateAssociationError.
        Nothing is persisted when any of them is raised.
    """
    name = require_text(data, "name", 255)
    logger.info("Creating planner name=%r", name)

    with transaction(RESOURCE):
        planner = Planner(
            name=name,
            description=optional_text(data, "description"),
            planner_type=optional_text(data, "planner_type", 100),
        )
        planner.apply_status(_validate_status(data.get("status") or PLANNER_STATUS_DRAFT))
        planner.external_connection = _resolve_connection(data)

        for item in _child_list(data, "funds"):
            _link_fund(planner, item)

        sources = _child_list(data, "sources")
        for item, order in zip(sources, _assign_orders(sources, (), "Source")):
            planner.sources.append(_build_source(item, order))

        db.session.add(planner)

    logger.info(
        "Created planner id=%s funds=%d sources=%d",
        planner.id, len(planner.funds), len(planner.sources),
    )
    return planner.to_dict(include_children=True)


def update_planner(planner_id, data):
    """Overwrite a planner's scalar fields.

    Nested ``funds``/``sources`` in the body are ignored; use the add/remove
    operations. A null or absent ``external_connection_id`` clears the link.
    An absent ``status`` keeps the current one.

    Raises:
        NotFoundError, ValidationError,
        StaleVersionError: payload ``version`` differs from the stored one.
    """
    logger.info("Updating planner id=%s", planner_id)
    planner = get_or_raise(Planner, planner_id, RESOURCE)
    name = require_text(data, "name", 255)
    status = data.get("status")
    if status is not None:
        _validate_status(status)

    with transaction(RESOURCE, planner_id):
        check_version(planner, data, RESOURCE)
        planner.name = name
        planner.description = optional_text(data, "description")
        planner.planner_type = optional_text(data, "planner_type", 100)
        planner.external_connection = _resolve_connection(data)
        if status is not None:
            planner.apply_status(status)

    logger.info("Updated planner id=%s status=%s", planner_id, planner.status)
    return planner.to_dict(include_children=True)


def delete_planner(planner_id):
    """Delete a planner and, recursively, everything it owns."""
    logger.info("Deleting planner id=%s", planner_id)
    planner = get_or_raise(Planner, planner_id, RESOURCE)

    with transaction(RESOURCE, planner_id):
        counts = _delete_aggregate(planner)

    logger.info(
        "Deleted planner id=%s (sources=%d runs=%d reports=%d funds=%d)",
        planner_id, counts["sources"], counts["runs"], counts["reports"], counts["funds"],
    )


def _delete_aggregate(planner):
    # Every row must be marked before the single flush at commit; an
    # autoflush between the marks would delete some rows twice.
    counts = {"sources": 0, "runs": 0, "reports": 0, "funds": 0}
    with db.session.no_autoflush:
        for source in list(planner.sources):
            runs, reports = _delete_source(source)
            counts["runs"] += runs
            counts["reports"] += reports
            counts["sources"] += 1
        for link in list(planner.funds):
            db.session.delete(link)
            counts["funds"] += 1
        db.session.delete(planner)
    return counts


def _delete_source(source):
    """Mark a source and its runs and reports for deletion. Caller holds no_autoflush."""
    runs, reports = list(source.runs), list(source.reports)
    for child in runs + reports:
        db.session.delete(child)
    db.session.delete(source)
    return len(runs), len(reports)


# ── Fund links ────────────────────────────────────────────────────────────────


def add_fund(planner_id, data):
    """Attach a fund (and optionally one of its aliases) to a planner.

    Raises:
        NotFoundError:             planner, fund or alias absent, or the
                                   alias belongs to another fund.
        DuplicateAssociationError: the fund is already attached.
    """
    planner = get_or_raise(Planner, planner_id, RESOURCE)
    fund_id = optional_id(data, "fund_id")
    duplicate = DuplicateAssociationError("Fund", "fund_id", fund_id, owner=f"Planner id={planner_id}")

    with transaction(RESOURCE, planner_id, integrity_error=duplicate):
        link = _link_fund(planner, data)
        planner.touch()

    logger.info("Attached fund id=%s to planner id=%s (link id=%s)", fund_id, planner_id, link.id)
    return link.to_dict()


def remove_fund(planner_id, link_id):
    planner = get_or_raise(Planner, planner_id, RESOURCE)
    link = db.session.get(PlannerFund, link_id)
    if link is None or link.planner_id != planner_id:
        raise NotFoundError("PlannerFund", link_id)

    with transaction(RESOURCE, planner_id):
        planner.funds.remove(link)
        planner.touch()

    logger.info("Removed fund link id=%s from planner id=%s", link_id, planner_id)


# ── Sources ───────────────────────────────────────────────────────────────────


def add_source(planner_id, data):
    """Append a source (optionally with nested runs/reports) to a planner."""
    planner = get_or_raise(Planner, planner_id, RESOURCE)
    (order,) = _assign_orders([data], [s.display_order for s in planner.sources], "Source")

    with transaction(RESOURCE, planner_id):
        source = _build_source(data, order)
        planner.sources.append(source)
        planner.touch()

    logger.info("Added source id=%s to planner id=%s at order=%s", source.id, planner_id, order)
    return source.to_dict()


def remove_source(planner_id, source_id):
    """Remove a source together with its runs and reports."""
    planner = get_or_raise(Planner, planner_id, RESOURCE)
    source = db.session.get(PlannerSource, source_id)
    if source is None or source.planner_id != planner_id:
        raise NotFoundError("PlannerSource", source_id)

    with transaction(RESOURCE, planner_id), db.session.no_autoflush:
        planner.sources.remove(source)
        runs, reports = _delete_source(source)
        planner.touch()

    logger.info(
        "Removed source id=%s from planner id=%s (runs=%d reports=%d)",
        source_id, planner_id, runs, reports,
    )


# ── Runs / reports ────────────────────────────────────────────────────────────


def add_run(source_id, data):
    source = _get_source(source_id)
    (order,) = _assign_orders([data], [r.display_order for r in source.runs], "Run")

    with transaction(RESOURCE, source.planner_id):
        run = _build_run(data, order)
        source.runs.append(run)
        source.planner.touch()

    logger.info("Added run id=%s to source id=%s at order=%s", run.id, source_id, order)
    return run.to_dict()


def remove_run(source_id, run_id):
    source = _get_source(source_id)
    run = db.session.get(PlannerRun, run_id)
    if run is None or run.planner_source_id != source_id:
        raise NotFoundError("PlannerRun", run_id)

    with transaction(RESOURCE, source.planner_id):
        source.runs.remove(run)
        source.planner.touch()

    logger.info("Removed run id=%s from source id=%s", run_id, source_id)


def add_report(source_id, data):
    source = _get_source(source_id)
    (order,) = _assign_orders([data], [r.display_order for r in source.reports], "Report")

    with transaction(RESOURCE, source.planner_id):
        report = _build_report(data, order)
        source.reports.append(report)
        source.planner.touch()

    logger.info("Added report id=%s to source id=%s at order=%s", report.id, source_id, order)
    return report.to_dict()


def remove_report(source_id, report_id):
    source = _get_source(source_id)
    report = db.session.get(PlannerReport, report_id)
    if report is None or report.planner_source_id != source_id:
        raise NotFoundError("PlannerReport", report_id)

    with transaction(RESOURCE, source.planner_id):
        source.reports.remove(report)
        source.planner.touch()

    logger.info("Removed report id=%s from source id=%s", report_id, source_id)
