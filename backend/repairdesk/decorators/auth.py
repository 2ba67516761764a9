from __future__ import annotations
from functools import wraps
from flask import abort, g
from flask_jwt_extended import verify_jwt_in_request
from repairdesk.services.policy import current_permissions, current_user_id


def require_permissions(*codes: str, any_of: bool = False):
    """Reject the request with 403 unless the token carries ``codes``.

    ``any_of=True`` accepts a token holding at least one of them. The caller's
    user id is exposed as ``g.user_id`` for audit rows.
    """
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            perms = current_permissions()
            granted = any(c in perms for c in codes) if any_of else all(c in perms for c in codes)
            if not granted:
                abort(403, description='Missing permission')
            g.user_id = current_user_id()
            return fn(*args, **kwargs)
        return wrapper
    return outer
