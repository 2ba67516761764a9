"""Outbound channel gateways (WhatsApp Cloud API and a generic SMS HTTP API).

Gateways report failures through ``GatewayResult`` instead of raising, except
for programming errors; retries, if ever needed, belong here rather than in the
dispatcher.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import requests
from repairdesk.config.settings import DEFAULT_WHATSAPP_API_URL

logger = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    simulated: bool = False


def normalize_msisdn(raw: Optional[str]) -> str:
    """Digits only; strip a trunk ``0`` from 11-digit numbers and prefix 91 to 10-digit ones."""
    digits = re.sub(r'\D', '', raw or '')
    if len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]
    if len(digits) == 10:
        digits = f'91{digits}'
    return digits


def sanitize_base_url(url: Optional[str]) -> str:
    if not url:
        return DEFAULT_WHATSAPP_API_URL
    u = url.strip()
    u = re.sub(r'/\d+/messages/?$', '', u, flags=re.IGNORECASE)
    u = re.sub(r'/messages/?$', '', u, flags=re.IGNORECASE)
    u = u.rstrip('/')
    return u or DEFAULT_WHATSAPP_API_URL


def _error_message(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f'HTTP {response.status_code}'
    if isinstance(body, dict):
        err = body.get('error')
        if isinstance(err, dict) and err.get('message'):
            return err['message']
        if isinstance(err, str):
            return err
    return f'HTTP {response.status_code}'


class WhatsAppGateway:
    def __init__(self, access_token: str = '', phone_number_id: str = '', base_url: Optional[str] = None, timeout: float = 10):
        self.access_token = access_token or ''
        self.phone_number_id = phone_number_id or ''
        self.base_url = sanitize_base_url(base_url)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'WhatsAppGateway':
        return cls(
            access_token=settings.get('WHATSAPP_API_TOKEN') or '',
            phone_number_id=settings.get('WHATSAPP_PHONE_NUMBER_ID') or '',
            base_url=settings.get('WHATSAPP_API_URL'),
            timeout=settings.get('GATEWAY_TIMEOUT_SECONDS') or 10,
        )

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _post(self, payload: Dict[str, Any]) -> GatewayResult:
        if not self.configured:
            return GatewayResult(False, error='credentials_missing')
        url = f'{self.base_url}/{self.phone_number_id}/messages'
        try:
            response = requests.post(
                url,
                json=payload,
                headers={'Authorization': f'Bearer {self.access_token}'},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning('WhatsApp request to %s failed: %s', payload.get('to'), exc)
            return GatewayResult(False, error=str(exc))
        if not response.ok:
            error = _error_message(response)
            logger.warning('WhatsApp API rejected message to %s: %s', payload.get('to'), error)
            return GatewayResult(False, error=error)
        try:
            body = response.json()
        except ValueError:
            body = {}
        messages = body.get('messages') or [{}]
        return GatewayResult(True, message_id=messages[0].get('id'))

    def send_text(self, to: str, body: str) -> GatewayResult:
        return self._post({
            'messaging_product': 'whatsapp',
            'to': normalize_msisdn(to),
            'type': 'text',
            'text': {'body': body},
        })

    def send_template(self, to: str, name: str, params: List[str], language: str = 'en') -> GatewayResult:
        template: Dict[str, Any] = {'name': name, 'language': {'code': language}}
        if params:
            template['components'] = [{
                'type': 'body',
                'parameters': [{'type': 'text', 'text': p} for p in params],
            }]
        return self._post({
            'messaging_product': 'whatsapp',
            'to': normalize_msisdn(to),
            'type': 'template',
            'template': template,
        })


class SmsGateway:
    def __init__(self, api_url: str = '', api_key: str = '', sender_id: str = 'TAJCRM', timeout: float = 10):
        self.api_url = api_url or ''
        self.api_key = api_key or ''
        self.sender_id = sender_id
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'SmsGateway':
        return cls(
            api_url=settings.get('SMS_API_URL') or '',
            api_key=settings.get('SMS_API_KEY') or '',
            sender_id=settings.get('SMS_SENDER_ID') or 'TAJCRM',
            timeout=settings.get('GATEWAY_TIMEOUT_SECONDS') or 10,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def send(self, to: str, text: str) -> GatewayResult:
        if not self.configured:
            # No provider wired up (dev/demo): log instead of sending.
            logger.info('SMS (simulated) to %s: %s', to, text)
            return GatewayResult(True, simulated=True)
        try:
            response = requests.post(
                self.api_url,
                json={'to': normalize_msisdn(to), 'from': self.sender_id, 'text': text},
                headers={'Authorization': f'Bearer {self.api_key}'},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning('SMS request to %s failed: %s', to, exc)
            return GatewayResult(False, error=str(exc))
        if not response.ok:
            error = _error_message(response)
            logger.warning('SMS API rejected message to %s: %s', to, error)
            return GatewayResult(False, error=error)
        return GatewayResult(True)


__all__ = ['GatewayResult', 'WhatsAppGateway', 'SmsGateway', 'normalize_msisdn', 'sanitize_base_url']
