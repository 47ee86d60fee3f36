"""
Paged query results.

Every list endpoint returns the same shape:

    {
        "items":       [...],   # current page, already serialised
        "page":        0,       # 0-based page index
        "size":        20,      # requested page size
        "total_items": 57,
        "total_pages": 3,
        "first":       true,
        "last":        false,
    }
"""

import math

from sqlalchemy import func, select

from connection_planner.models import db


def paginate(stmt, page, size, serialize):
    """Execute a ``select()`` for one page and wrap it in the paged shape.

    Args:
        stmt:      ORM select() with filters and ordering already applied.
        page:      0-based page index (negative values are treated as 0).
        size:      page size (must be ≥ 1; callers clamp it).
        serialize: callable turning one row entity into a dict.
    """
    page = max(page, 0)
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    rows = db.session.execute(stmt.limit(size).offset(page * size)).scalars().all()

    total_pages = math.ceil(total / size) if size else 0
    return {
        "items": [serialize(row) for row in rows],
        "page": page,
        "size": size,
        "total_items": total,
        "total_pages": total_pages,
        "first": page == 0,
        "last": page >= total_pages - 1,
    }
