"""Request body helpers shared by the ticket routes.

They abort with 400 so handlers can stay linear.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Optional
from datetime import datetime, timezone
from flask import abort, request


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, description=f'{key} must be an integer')


def optional_datetime(data: Dict[str, Any], key: str) -> Optional[datetime]:
    value = data.get(key)
    if value in (None, ''):
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        abort(400, description=f'{key} must be an ISO 8601 timestamp')
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def validate_choice(value: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    if value not in allowed:
        abort(400, description=f"{field_name} invalid")
    return value

__all__ = ['json_body', 'require_fields', 'optional_int', 'optional_datetime', 'validate_choice']
