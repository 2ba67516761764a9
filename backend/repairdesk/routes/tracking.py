from __future__ import annotations
from flask import Blueprint
from repairdesk import get_db
from repairdesk.services.tracking import resolve, to_public_view

track_bp = Blueprint('tracking', __name__)


@track_bp.get('/<code>')
def track(code: str):
    """Public customer view; no token required. Unknown codes surface as 404."""
    session = get_db()
    return to_public_view(resolve(session, code))
