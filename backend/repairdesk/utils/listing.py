from __future__ import annotations
from typing import Tuple
from flask import request, abort
from sqlalchemy import select, func
from repairdesk.config.pagination import normalize_pagination


def apply_pagination(session, stmt) -> Tuple[list, int, int, int]:
    """Run ``stmt`` (a 2.0-style select) with limit/offset from the query string.

    Returns (rows, total, limit, offset).
    """
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = session.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
    return list(rows), total, limit, offset


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
