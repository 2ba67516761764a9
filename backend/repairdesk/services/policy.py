from __future__ import annotations
from typing import Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    try:
        return int(ident) if ident is not None else None
    except (TypeError, ValueError):
        return None


def current_engineer_scope() -> Optional[int]:
    """Engineer id a token is restricted to (``engineer_id`` claim), if any."""
    claims = get_jwt()
    scope = claims.get('engineer_id')
    return int(scope) if scope is not None else None
