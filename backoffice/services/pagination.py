# Overview: Offset pagination shared by the listing endpoints.

from __future__ import annotations

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def paginate(query, page: int | None, size: int | None, *, size_key: str = "per_page") -> tuple[list, dict]:
    """
    Slice an ordered query. Page size is clamped to 1..MAX_PAGE_SIZE and
    page to >= 1; the meta dict echoes the clamped values.
    """
    size = max(1, min(size or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + size - 1) // size if total > 0 else 1
    rows = query.offset((page - 1) * size).limit(size).all()

    return rows, {
        "page": page,
        size_key: size,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
