"""Domain error taxonomy for the ticket lifecycle core.

Each error carries the HTTP status and title used by the app-level error
handler so routes can simply let them propagate.
"""
from __future__ import annotations
from typing import Optional


class DomainError(Exception):
    status = 400
    title = 'Bad Request'

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.title)
        self.detail = detail or self.title

    def to_payload(self):
        return {
            'error': {
                'status': self.status,
                'title': self.title,
                'detail': self.detail,
            }
        }


class NotFound(DomainError):
    status = 404
    title = 'Not Found'


class InvalidTransition(DomainError):
    title = 'Invalid Transition'

    def __init__(self, from_status: Optional[str], to_status: str, field_name: str = 'status'):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid {field_name} transition {from_status} -> {to_status}")


class Expired(DomainError):
    title = 'OTP expired'


class InvalidOtp(DomainError):
    title = 'Invalid OTP'


class ConfigurationError(DomainError):
    title = 'Configuration Error'

    def __init__(self, detail: str, problems: Optional[list] = None):
        super().__init__(detail)
        self.problems = list(problems or [])

    def to_payload(self):
        payload = super().to_payload()
        if self.problems:
            payload['error']['problems'] = self.problems
        return payload


__all__ = ['DomainError', 'NotFound', 'InvalidTransition', 'Expired', 'InvalidOtp', 'ConfigurationError']
