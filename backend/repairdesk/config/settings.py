"""Environment-backed application settings.

Values are read once per ``create_app`` call (after ``load_dotenv``) and land in
``app.config``; callers and tests override them through the ``config`` mapping.
"""
from __future__ import annotations
from typing import Any, Dict
import os

DEFAULT_WHATSAPP_API_URL = 'https://graph.facebook.com/v22.0'


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}')


def load_settings() -> Dict[str, Any]:
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'PUBLIC_BASE_URL': os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000').rstrip('/'),
        'OTP_VALIDITY_MINUTES': _env_int('OTP_VALIDITY_MINUTES', 10),
        'NOTIFY_ASYNC': _env_bool('NOTIFY_ASYNC', True),
        'NOTIFY_WORKERS': _env_int('NOTIFY_WORKERS', 2),
        'WHATSAPP_API_URL': os.getenv('WHATSAPP_API_URL', DEFAULT_WHATSAPP_API_URL),
        'WHATSAPP_API_TOKEN': os.getenv('WHATSAPP_API_TOKEN', ''),
        'WHATSAPP_PHONE_NUMBER_ID': os.getenv('WHATSAPP_PHONE_NUMBER_ID', ''),
        'SMS_API_URL': os.getenv('SMS_API_URL', ''),
        'SMS_API_KEY': os.getenv('SMS_API_KEY', ''),
        'SMS_SENDER_ID': os.getenv('SMS_SENDER_ID', 'TAJCRM'),
        'GATEWAY_TIMEOUT_SECONDS': _env_int('GATEWAY_TIMEOUT_SECONDS', 10),
    }


def gateway_settings(config) -> Dict[str, Any]:
    """Project the outbound-channel subset of an app config mapping."""
    keys = (
        'WHATSAPP_API_URL', 'WHATSAPP_API_TOKEN', 'WHATSAPP_PHONE_NUMBER_ID',
        'SMS_API_URL', 'SMS_API_KEY', 'SMS_SENDER_ID', 'GATEWAY_TIMEOUT_SECONDS',
    )
    return {k: config.get(k) for k in keys}
