"""Notification dispatcher.

Turns a symbolic event (``receipt_created``, ``delivery_otp``...) into a rendered
payload and pushes it through the configured channels:

* ``whatsapp_template`` - approved WhatsApp template with positional body params
* ``whatsapp_text``     - plain WhatsApp text; used as the fallback when the
                          template send fails, or alone when no template channel
                          is listed
* ``sms``               - sent independently of the WhatsApp outcome

The event -> template mapping is an operator-edited, versioned record
(``NotificationTemplateConfig``). Parameter order is positional and contractual:
``render_params`` substitutes tokens in exactly the declared order. Count
mismatches against the approved template are caught when the mapping is saved
(``validate_template_config``); at send time the dispatcher cannot detect them.

Dispatch is best-effort. ``NotificationDispatcher.dispatch`` never raises and a
failure is only logged; ``notify`` prepares the payload on the caller's thread
and hands the send to ``NotificationQueue``.
"""
from __future__ import annotations
import logging
import re
import string
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from sqlalchemy import select, func
from repairdesk.errors import ConfigurationError
from repairdesk.models.notification_config import NotificationTemplateConfig
from repairdesk.services.gateways import GatewayResult, SmsGateway, WhatsAppGateway
from repairdesk.services.status_machine import KIND_RECEIPT, kind_of

logger = logging.getLogger(__name__)

CHANNEL_WHATSAPP_TEMPLATE = 'whatsapp_template'
CHANNEL_WHATSAPP_TEXT = 'whatsapp_text'
CHANNEL_SMS = 'sms'
CHANNELS = (CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT, CHANNEL_SMS)

EVENT_RECEIPT_CREATED = 'receipt_created'
EVENT_RECEIPT_STATUS = 'receipt_status_update'
EVENT_READY_FOR_DELIVERY = 'ready_for_delivery'
EVENT_RECEIPT_DELIVERED = 'receipt_delivered'
EVENT_RECEIPT_NOT_REPAIRED = 'receipt_not_repaired'
EVENT_DELIVERY_OTP = 'delivery_otp'
EVENT_PAYMENT_REMINDER = 'payment_reminder'
EVENT_SERVICE_CREATED = 'service_complaint_created'
EVENT_SERVICE_STATUS = 'service_status_update'

KNOWN_TOKENS = frozenset({
    'customerName', 'receiptNumber', 'complaintNumber', 'trackingCode', 'product', 'model',
    'productModel', 'estimatedAmount', 'status', 'oldStatus', 'trackingUrl', 'issueDescription',
    'address', 'otp', 'validityWindow', 'recipientName', 'dueDate', 'deliveryNote', 'deliveredTo',
})

_EVENT_KEY_RE = re.compile(r'^[a-z][a-z0-9_]*$')

SHOP_NAME = 'New Taj Electronics'

DEFAULT_BINDINGS: Dict[str, Dict[str, Any]] = {
    EVENT_RECEIPT_CREATED: {
        'name': 'receipt_created', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'trackingUrl'], 'placeholder_count': 3,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT],
        'text': SHOP_NAME + '\nReceipt Created: {receiptNumber}\nName: {customerName}\n'
                'Product: {productModel}\nEst. Amount: {estimatedAmount}\nStatus: {status}\nTrack: {trackingUrl}',
    },
    EVENT_RECEIPT_STATUS: {
        'name': 'status_update', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'status', 'trackingUrl', 'estimatedAmount'], 'placeholder_count': 5,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT],
        'text': SHOP_NAME + '\nStatus Updated for {receiptNumber}\nName: {customerName}\nProduct: {product}\n'
                'Old Status: {oldStatus}\nNew Status: {status}\nTrack: {trackingUrl}',
    },
    EVENT_READY_FOR_DELIVERY: {
        'name': 'ready_for_delivery', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'estimatedAmount'], 'placeholder_count': 3,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT, CHANNEL_SMS],
        'text': SHOP_NAME + ': Your device {product} is Ready to Deliver. Receipt: {receiptNumber}. '
                'Amount: {estimatedAmount}. Track: {trackingUrl}',
    },
    EVENT_RECEIPT_DELIVERED: {
        'name': 'receipt_delivered', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'deliveredTo'], 'placeholder_count': 3,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT, CHANNEL_SMS],
        'text': SHOP_NAME + ': Your device {product} has been Delivered to {deliveredTo}. Receipt: {receiptNumber}.',
    },
    EVENT_RECEIPT_NOT_REPAIRED: {
        'name': 'receipt_not_repaired', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'product'], 'placeholder_count': 3,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT, CHANNEL_SMS],
        'text': SHOP_NAME + ': Your device {product} could not be repaired. Please collect as is. '
                'No charges. Receipt: {receiptNumber}.',
    },
    EVENT_DELIVERY_OTP: {
        'name': 'otp_verification', 'language': 'en',
        'params': ['receiptNumber', 'otp', 'validityWindow'], 'placeholder_count': 3,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT, CHANNEL_SMS],
        'text': SHOP_NAME + '\nDelivery OTP for Receipt {receiptNumber}: {otp}\n'
                'Valid for {validityWindow} only. Do not share this OTP.',
    },
    EVENT_PAYMENT_REMINDER: {
        'name': 'payment_reminder', 'language': 'en',
        'params': ['customerName', 'receiptNumber', 'estimatedAmount', 'dueDate'], 'placeholder_count': 4,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT],
        'text': SHOP_NAME + ': Payment of {estimatedAmount} is pending for receipt {receiptNumber}. Due: {dueDate}.',
    },
    EVENT_SERVICE_CREATED: {
        'name': 'service_complaint_created', 'language': 'en',
        'params': ['customerName', 'complaintNumber', 'product', 'model', 'issueDescription', 'status'],
        'placeholder_count': 6,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT],
        'text': SHOP_NAME + '\nService Complaint Registered: {complaintNumber}\nName: {customerName}\n'
                'Product: {productModel}\nIssue: {issueDescription}\nTrack: {trackingUrl}',
    },
    EVENT_SERVICE_STATUS: {
        'name': 'service_status_update', 'language': 'en',
        'params': ['customerName', 'complaintNumber', 'status', 'oldStatus', 'product'], 'placeholder_count': 5,
        'channels': [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT],
        'text': SHOP_NAME + '\nService {complaintNumber} is now {status} (was {oldStatus}).\nTrack: {trackingUrl}',
    },
}


@dataclass(frozen=True)
class TemplateBinding:
    name: str
    language: str
    params: Tuple[str, ...]
    placeholder_count: Optional[int] = None
    channels: Tuple[str, ...] = (CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT)
    text: str = ''

    def to_json(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'language': self.language,
            'params': list(self.params),
            'placeholder_count': self.placeholder_count,
            'channels': list(self.channels),
            'text': self.text,
        }


@dataclass(frozen=True)
class TemplateConfig:
    version: int
    bindings: Mapping[str, TemplateBinding]
    # set when the saved mapping no longer validates and the defaults are in use
    problems: Tuple[str, ...] = ()

    def get(self, event: str) -> Optional[TemplateBinding]:
        return self.bindings.get(event)

    def to_json(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'bindings': {k: b.to_json() for k, b in sorted(self.bindings.items())},
            'problems': list(self.problems),
        }


def _split_params(raw) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(',') if p.strip()]
    return [str(p).strip() for p in raw if str(p).strip()]


def _text_fields(text: str) -> List[str]:
    try:
        return [f for _, f, _, _ in string.Formatter().parse(text) if f is not None]
    except ValueError as exc:
        raise ConfigurationError(f'Malformed text template: {exc}')


def validate_template_config(raw: Mapping[str, Any]) -> Dict[str, TemplateBinding]:
    """Validate a raw ``{event: binding}`` mapping; raise ConfigurationError listing every problem."""
    if not isinstance(raw, Mapping):
        raise ConfigurationError('bindings must be an object keyed by event name')
    problems: List[str] = []
    out: Dict[str, TemplateBinding] = {}
    for event, binding in raw.items():
        if not isinstance(event, str) or not _EVENT_KEY_RE.match(event):
            problems.append(f'{event!r}: invalid event key')
            continue
        if not isinstance(binding, Mapping):
            problems.append(f'{event}: binding must be an object')
            continue
        name = str(binding.get('name') or '').strip()
        language = str(binding.get('language') or 'en').strip()
        params = _split_params(binding.get('params', binding.get('paramsOrder')))
        channels = _split_params(binding.get('channels')) or [CHANNEL_WHATSAPP_TEMPLATE, CHANNEL_WHATSAPP_TEXT]
        text = binding.get('text') or ''
        count = binding.get('placeholder_count')
        if not name:
            problems.append(f'{event}: template name is required')
        unknown = [p for p in params if p not in KNOWN_TOKENS]
        if unknown:
            problems.append(f'{event}: unknown parameter tokens {unknown}')
        bad_channels = [c for c in channels if c not in CHANNELS]
        if bad_channels:
            problems.append(f'{event}: unknown channels {bad_channels}')
        if count is not None:
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                problems.append(f'{event}: placeholder_count must be a non-negative integer')
            elif count != len(params):
                problems.append(f'{event}: template expects {count} placeholders but {len(params)} parameters are mapped')
        if not isinstance(text, str):
            problems.append(f'{event}: text must be a string')
            text = ''
        else:
            try:
                unknown_text = [f for f in _text_fields(text) if f not in KNOWN_TOKENS]
            except ConfigurationError as exc:
                problems.append(f'{event}: {exc.detail}')
                unknown_text = []
            if unknown_text:
                problems.append(f'{event}: unknown text placeholders {unknown_text}')
        if CHANNEL_WHATSAPP_TEXT in channels and CHANNEL_WHATSAPP_TEMPLATE not in channels and not text:
            problems.append(f'{event}: whatsapp_text channel needs a text body')
        out[event] = TemplateBinding(
            name=name,
            language=language or 'en',
            params=tuple(params),
            placeholder_count=count if isinstance(count, int) and not isinstance(count, bool) else None,
            channels=tuple(channels),
            text=text,
        )
    if problems:
        raise ConfigurationError('Notification template configuration is invalid', problems)
    return out


def default_template_config() -> TemplateConfig:
    return TemplateConfig(version=0, bindings=validate_template_config(DEFAULT_BINDINGS))


def load_template_config(session) -> TemplateConfig:
    """Latest saved mapping, or the built-in defaults when none has been saved.

    A saved mapping that no longer validates (a token renamed in code, say) falls
    back to the defaults, keeps the stored version and carries the problem list
    so the settings screen can show it.
    """
    row = session.execute(
        select(NotificationTemplateConfig).order_by(NotificationTemplateConfig.version.desc()).limit(1)
    ).scalar_one_or_none()
    if row is None:
        return default_template_config()
    try:
        bindings = validate_template_config(row.bindings or {})
    except ConfigurationError as exc:
        logger.error('Saved notification template config version %s is invalid, using defaults: %s',
                     row.version, '; '.join(exc.problems))
        return TemplateConfig(version=row.version, bindings=default_template_config().bindings,
                              problems=tuple(exc.problems))
    return TemplateConfig(version=row.version, bindings=bindings)


def save_template_config(session, raw: Mapping[str, Any], actor_id: Optional[int] = None) -> TemplateConfig:
    bindings = validate_template_config(raw)
    current = session.execute(select(func.max(NotificationTemplateConfig.version))).scalar()
    version = (current or 0) + 1
    row = NotificationTemplateConfig(
        version=version,
        bindings={k: b.to_json() for k, b in bindings.items()},
        created_by=actor_id,
    )
    session.add(row)
    session.commit()
    logger.info('Saved notification template config version %s (%s events)', version, len(bindings))
    return TemplateConfig(version=version, bindings=bindings)


def _s(value) -> str:
    return '' if value is None else str(value)


def build_context(ticket, kind: Optional[str] = None, extra: Optional[Mapping[str, Any]] = None,
                  base_url: str = '') -> Dict[str, str]:
    """Token map for rendering; every value is a string."""
    kind = kind or kind_of(ticket)
    code = ticket.tracking_code
    product = _s(getattr(ticket, 'product', None))
    model = _s(getattr(ticket, 'model', None))
    ctx: Dict[str, str] = {
        'customerName': _s(getattr(ticket, 'customer_name', None)),
        'trackingCode': _s(code),
        'product': product,
        'model': model,
        'productModel': f'{product} {model}'.strip(),
        'status': _s(ticket.status),
        'trackingUrl': f"{base_url.rstrip('/')}/track/{code}",
    }
    if kind == KIND_RECEIPT:
        amount = getattr(ticket, 'estimated_amount', None)
        ctx.update({
            'receiptNumber': _s(code),
            'estimatedAmount': _s(amount if amount is not None else 0),
            'deliveryNote': _s(getattr(ticket, 'delivery_note', None)),
            'deliveredTo': _s(getattr(ticket, 'delivered_to', None)),
        })
    else:
        ctx.update({
            'complaintNumber': _s(code),
            'issueDescription': _s(getattr(ticket, 'issue_description', None)),
            'address': _s(getattr(ticket, 'address', None)),
        })
    for key, value in (extra or {}).items():
        ctx[key] = _s(value)
    return ctx


def render_params(binding: TemplateBinding, context: Mapping[str, str]) -> List[str]:
    return [context.get(token, '') for token in binding.params]


class _Blank(dict):
    def __missing__(self, key):
        return ''


def render_text(binding: TemplateBinding, context: Mapping[str, str]) -> str:
    if not binding.text:
        return ''
    return string.Formatter().vformat(binding.text, (), _Blank(context))


@dataclass
class ChannelResult:
    channel: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    simulated: bool = False

    @classmethod
    def from_gateway(cls, channel: str, result: GatewayResult) -> 'ChannelResult':
        return cls(channel, result.success, result.message_id, result.error, result.simulated)


@dataclass
class PreparedNotification:
    event: str
    recipient: str
    binding: TemplateBinding
    params: List[str]
    text: str


@dataclass
class DispatchResult:
    event: str
    recipient: Optional[str] = None
    template: Optional[str] = None
    params: List[str] = field(default_factory=list)
    channels: List[ChannelResult] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return any(c.success for c in self.channels)


class NotificationDispatcher:
    def __init__(self, whatsapp: WhatsAppGateway, sms: SmsGateway, base_url: str = '',
                 config_source: Optional[Callable[[], TemplateConfig]] = None):
        self.whatsapp = whatsapp
        self.sms = sms
        self.base_url = base_url
        self._config_source = config_source or default_template_config

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], base_url: str = '') -> 'NotificationDispatcher':
        return cls(WhatsAppGateway.from_settings(settings), SmsGateway.from_settings(settings), base_url=base_url)

    def reload(self, settings: Mapping[str, Any]) -> None:
        """Swap gateway credentials without rebuilding the dispatcher."""
        self.whatsapp = WhatsAppGateway.from_settings(settings)
        self.sms = SmsGateway.from_settings(settings)
        logger.info('Notification gateways reloaded (whatsapp configured=%s, sms configured=%s)',
                    self.whatsapp.configured, self.sms.configured)

    def prepare(self, event: str, ticket, kind: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None,
                config: Optional[TemplateConfig] = None) -> PreparedNotification:
        """Resolve and render; raises ConfigurationError for unmapped events or a missing recipient."""
        config = config or self._config_source()
        binding = config.get(event)
        if binding is None:
            raise ConfigurationError(f'No template mapping for event {event!r}')
        overrides = dict(overrides or {})
        recipient = overrides.pop('recipient_mobile', None) or getattr(ticket, 'mobile', None)
        if not recipient:
            raise ConfigurationError(f'No recipient phone number for event {event!r}')
        context = build_context(ticket, kind, overrides, self.base_url)
        return PreparedNotification(event, recipient, binding, render_params(binding, context), render_text(binding, context))

    def send(self, prepared: PreparedNotification) -> DispatchResult:
        binding = prepared.binding
        result = DispatchResult(prepared.event, prepared.recipient, binding.name, prepared.params)
        template_ok = False
        if CHANNEL_WHATSAPP_TEMPLATE in binding.channels:
            ch = self._attempt(CHANNEL_WHATSAPP_TEMPLATE, lambda: self.whatsapp.send_template(
                prepared.recipient, binding.name, prepared.params, binding.language))
            result.channels.append(ch)
            template_ok = ch.success
        if CHANNEL_WHATSAPP_TEXT in binding.channels and not template_ok and prepared.text:
            result.channels.append(self._attempt(CHANNEL_WHATSAPP_TEXT, lambda: self.whatsapp.send_text(
                prepared.recipient, prepared.text)))
        if CHANNEL_SMS in binding.channels and prepared.text:
            result.channels.append(self._attempt(CHANNEL_SMS, lambda: self.sms.send(prepared.recipient, prepared.text)))
        if result.success:
            logger.info('Notification %s sent to %s via %s', prepared.event, prepared.recipient,
                        ','.join(c.channel for c in result.channels if c.success))
        else:
            result.error = '; '.join(f'{c.channel}: {c.error}' for c in result.channels) or 'no channel attempted'
            logger.warning('Notification %s to %s failed on every channel: %s', prepared.event, prepared.recipient, result.error)
        return result

    def _attempt(self, channel: str, call: Callable[[], GatewayResult]) -> ChannelResult:
        try:
            return ChannelResult.from_gateway(channel, call())
        except Exception as exc:  # gateway bug must not abort the other channels
            logger.exception('Channel %s raised while sending', channel)
            return ChannelResult(channel, False, error=str(exc))

    def dispatch(self, event: str, ticket, kind: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None,
                 config: Optional[TemplateConfig] = None) -> DispatchResult:
        try:
            prepared = self.prepare(event, ticket, kind, overrides, config)
        except ConfigurationError as exc:
            logger.warning('Notification %s not sent: %s', event, exc.detail)
            return DispatchResult(event, skipped=True, error=exc.detail)
        return self.send(prepared)


class NotificationQueue:
    """Fire-and-forget runner; inline when async mode is off."""

    def __init__(self, async_mode: bool = True, workers: int = 2):
        self.async_mode = async_mode
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix='notify') if async_mode else None

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> None:
        if self._executor is None:
            self._run(fn, *args, **kwargs)
        else:
            self._executor.submit(self._run, fn, *args, **kwargs)

    @staticmethod
    def _run(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception('Notification job failed')
            return None

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


EXTENSION_KEY = 'repairdesk.notifications'


def init_notifications(app) -> None:
    from repairdesk.config.settings import gateway_settings
    dispatcher = NotificationDispatcher.from_settings(gateway_settings(app.config), base_url=app.config['PUBLIC_BASE_URL'])
    queue = NotificationQueue(bool(app.config['NOTIFY_ASYNC']), int(app.config['NOTIFY_WORKERS']))
    app.extensions[EXTENSION_KEY] = {'dispatcher': dispatcher, 'queue': queue}


def _extension():
    from flask import current_app
    return current_app.extensions[EXTENSION_KEY]


def get_dispatcher() -> NotificationDispatcher:
    return _extension()['dispatcher']


def get_queue() -> NotificationQueue:
    return _extension()['queue']


def notify(session, event: str, ticket, kind: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> bool:
    """Prepare ``event`` for ``ticket`` now and enqueue the send.

    Loads the template mapping once with ``session`` and snapshots the rendered
    payload so the background send touches neither the session nor the ORM
    object. Returns whether a send was enqueued; never raises.
    """
    try:
        dispatcher = get_dispatcher()
        config = load_template_config(session)
        prepared = dispatcher.prepare(event, ticket, kind, overrides, config)
        get_queue().submit(dispatcher.send, prepared)
        return True
    except ConfigurationError as exc:
        logger.warning('Notification %s not sent: %s', event, exc.detail)
        return False
    except Exception:
        logger.exception('Failed to enqueue notification %s', event)
        return False


__all__ = [
    'TemplateBinding', 'TemplateConfig', 'DEFAULT_BINDINGS', 'KNOWN_TOKENS', 'CHANNELS',
    'validate_template_config', 'default_template_config', 'load_template_config', 'save_template_config',
    'build_context', 'render_params', 'render_text', 'ChannelResult', 'DispatchResult', 'PreparedNotification',
    'NotificationDispatcher', 'NotificationQueue', 'init_notifications', 'get_dispatcher', 'get_queue', 'notify',
]
