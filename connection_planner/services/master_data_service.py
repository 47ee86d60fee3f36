"""
Lookup Catalog service — CRUD for master data tables.

Kinds (URL slug → model):
    source-names  → SourceName
    run-names     → RunName
    report-types  → ReportType
    report-names  → ReportName (optional report_type_id)
    funds         → Fund (owns FundAlias rows)

Names are unique per kind, compared case-insensitively. Listings are
alphabetical. Deleting an entry that planners still reference is allowed:
the weak references are set to null explicitly (planner-fund links are
removed with their fund) and the number of detached rows is logged.
"""

import logging

from sqlalchemy import func, select

from connection_planner.core.exceptions import ConflictError, NotFoundError
from connection_planner.models import db
from connection_planner.models.master_data import (
    Fund,
    FundAlias,
    ReportName,
    ReportType,
    RunName,
    SourceName,
)
from connection_planner.models.planner import (
    PlannerFund,
    PlannerReport,
    PlannerRun,
    PlannerSource,
)
from connection_planner.utils.helpers import get_or_raise, optional_id, require_text, transaction

logger = logging.getLogger(__name__)

KINDS = {
    "source-names": SourceName,
    "run-names": RunName,
    "report-types": ReportType,
    "report-names": ReportName,
    "funds": Fund,
}

# Weak references pointing at each lookup model: (child model, relationship attr, fk column)
_REFERENCES = {
    SourceName: [(PlannerSource, "source_name", PlannerSource.source_name_id)],
    RunName: [(PlannerRun, "run_name", PlannerRun.run_name_id)],
    ReportType: [
        (PlannerReport, "report_type", PlannerReport.report_type_id),
        (ReportName, "report_type", ReportName.report_type_id),
    ],
    ReportName: [(PlannerReport, "report_name", PlannerReport.report_name_id)],
}


def _model_for(kind):
    model = KINDS.get(kind)
    if model is None:
        raise NotFoundError(resource="Master data kind", resource_id=kind)
    return model


def _ensure_unique(model, column, name, **scope):
    stmt = select(func.count()).select_from(model).where(func.lower(column) == name.lower())
    for key, value in scope.items():
        stmt = stmt.where(getattr(model, key) == value)
    if db.session.execute(stmt).scalar_one():
        raise ConflictError(model.__name__, column.key, name)


# ── Generic entries ──────────────────────────────────────────────────────────


def list_entries(kind):
    """Return all entries of a kind sorted A-Z."""
    model = _model_for(kind)
    rows = db.session.execute(select(model).order_by(model.name.asc())).scalars().all()
    return [r.to_dict() for r in rows]


def get_entry(kind, entry_id):
    model = _model_for(kind)
    entry = get_or_raise(model, entry_id)
    if model is Fund:
        return entry.to_dict(include_aliases=True)
    return entry.to_dict()


def create_entry(kind, data):
    """Create a lookup entry.

    Raises:
        ValidationError: name missing or too long.
        ConflictError:   name already used for this kind.
        NotFoundError:   report_type_id given but unknown (report names only).
    """
    model = _model_for(kind)
    name = require_text(data, "name", 255)
    duplicate = ConflictError(model.__name__, "name", name)

    with transaction(model.__name__, integrity_error=duplicate):
        _ensure_unique(model, model.name, name)
        entry = model(name=name)
        if model is ReportName:
            type_id = optional_id(data, "report_type_id")
            if type_id is not None:
                entry.report_type = get_or_raise(ReportType, type_id)
        db.session.add(entry)

    logger.info("Created %s id=%s name=%r", model.__name__, entry.id, name)
    return entry.to_dict()


def delete_entry(kind, entry_id):
    """Delete a lookup entry, detaching any planner references to it."""
    model = _model_for(kind)
    entry = get_or_raise(model, entry_id)

    with transaction(model.__name__, entry_id):
        if model is Fund:
            detached = _remove_fund_links(entry_id)
        else:
            detached = _detach_references(model, entry_id)
        db.session.delete(entry)

    if detached:
        logger.warning("Deleted %s id=%s; %d referencing row(s) detached", model.__name__, entry_id, detached)
    else:
        logger.info("Deleted %s id=%s", model.__name__, entry_id)


def _detach_references(model, entry_id):
    count = 0
    for child_model, attr, fk_column in _REFERENCES.get(model, []):
        rows = db.session.execute(select(child_model).where(fk_column == entry_id)).scalars().all()
        for row in rows:
            setattr(row, attr, None)
        count += len(rows)
    return count


def _remove_fund_links(fund_id):
    links = db.session.execute(
        select(PlannerFund).where(PlannerFund.fund_id == fund_id)
    ).scalars().all()
    for link in links:
        # removing the link from the collection also clears link.planner
        planner = link.planner
        planner.funds.remove(link)
        planner.touch()
    return len(links)


def list_report_names_by_type(type_id):
    """Report names of one report type, sorted A-Z."""
    get_or_raise(ReportType, type_id)
    rows = db.session.execute(
        select(ReportName)
        .where(ReportName.report_type_id == type_id)
        .order_by(ReportName.name.asc())
    ).scalars().all()
    return [r.to_dict() for r in rows]


# ── Fund aliases ─────────────────────────────────────────────────────────────


def list_fund_aliases(fund_id):
    fund = get_or_raise(Fund, fund_id)
    return [a.to_dict() for a in fund.aliases]


def add_fund_alias(fund_id, data):
    """Attach an alias to a fund; alias names are unique per fund."""
    fund = get_or_raise(Fund, fund_id)
    alias_name = require_text(data, "alias_name", 255)
    duplicate = ConflictError("FundAlias", "alias_name", alias_name)

    with transaction("FundAlias", integrity_error=duplicate):
        _ensure_unique(FundAlias, FundAlias.alias_name, alias_name, fund_id=fund_id)
        alias = FundAlias(alias_name=alias_name)
        fund.aliases.append(alias)

    logger.info("Added alias id=%s to fund id=%s", alias.id, fund_id)
    return alias.to_dict()


def delete_fund_alias(fund_id, alias_id):
    """Remove an alias; planner-fund links that used it fall back to no alias."""
    fund = get_or_raise(Fund, fund_id)
    alias = resolve_fund_alias(fund, alias_id)

    with transaction("FundAlias", alias_id):
        links = db.session.execute(
            select(PlannerFund).where(PlannerFund.fund_alias_id == alias_id)
        ).scalars().all()
        for link in links:
            link.fund_alias = None
        fund.aliases.remove(alias)

    logger.info("Deleted alias id=%s of fund id=%s (%d link(s) detached)", alias_id, fund_id, len(links))


def resolve_fund_alias(fund, alias_id):
    """Return the alias ``alias_id`` of ``fund`` or raise NotFoundError."""
    alias = db.session.get(FundAlias, alias_id)
    if alias is None or alias.fund_id != fund.id:
        raise NotFoundError(resource="FundAlias", resource_id=alias_id)
    return alias

