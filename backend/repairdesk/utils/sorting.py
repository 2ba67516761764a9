from __future__ import annotations
from flask import abort


def apply_multi_sort(stmt, sort_expr: str | None, allowed: dict, tie_breaker):
    """Order a select by a comma-separated sort expression (``-created_at,status``).

    Unknown keys abort with 400; ``tie_breaker`` is always appended so paging is stable.
    """
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return stmt.order_by(*clauses)
