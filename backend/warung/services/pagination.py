# Overview: Shared page/limit pagination for list endpoints.

from __future__ import annotations

from typing import Callable

from flask import current_app


def clamp_page(page: int | None, limit: int | None) -> tuple[int, int]:
    default = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    maximum = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = max(page or 1, 1)  # Ensure page >= 1
    limit = min(max(limit or default, 1), maximum)
    return page, limit


def paginate(query, *, page: int | None, limit: int | None, serialize: Callable) -> dict:
    """
    Run `query` for one page.

    Returns {"data": [...], "pagination": {page, limit, total, total_pages}}.
    total_pages is 0 when there are no rows.
    """
    page, limit = clamp_page(page, limit)

    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit
    rows = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "data": [serialize(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
        },
    }
