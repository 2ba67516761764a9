"""Central enum-like definitions to avoid typos in permission strings.
Never rename a code silently: add the new one, migrate tokens, then drop the old one.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['RCPT', 'SVC', 'ADMIN', 'SETTINGS']

SERVICE_ACTIONS = {
    'RCPT': ['READ', 'MANAGE', 'DELIVER'],
    'SVC': ['READ', 'MANAGE'],
    'ADMIN': ['STATUS.OVERRIDE'],
    'SETTINGS': ['MANAGE'],
}


def build_all_permission_codes() -> List[str]:
    return [f"{svc}.{act}" for svc, actions in SERVICE_ACTIONS.items() for act in actions]

ALL_PERMISSION_CODES = build_all_permission_codes()

# Role -> permission codes embedded in issued tokens
ROLE_PRESETS: Dict[str, List[str]] = {
    'technician': ['RCPT.READ', 'RCPT.MANAGE', 'RCPT.DELIVER'],
    'service_engineer': ['SVC.READ', 'SVC.MANAGE'],
    'admin': ['*'],
}


def expand_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)
