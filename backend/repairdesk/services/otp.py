"""Delivery-confirmation OTP challenges.

At most one live (unconsumed, unexpired) challenge exists per ticket: ``issue``
retires every unconsumed challenge for the ticket and inserts the new one inside
one transaction, serialized per ticket. ``verify`` consumes with a conditional
UPDATE so a code can succeed only once even under concurrent submissions.
"""
from __future__ import annotations
import logging
import secrets
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple
from sqlalchemy import select, update, delete, or_
from repairdesk.errors import Expired, InvalidOtp, NotFound
from repairdesk.models.otp_challenge import OtpChallenge
from repairdesk.models.receipt import Receipt
from repairdesk.services.gateways import normalize_msisdn
from repairdesk.services.status_machine import kind_of

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
DEFAULT_VALIDITY_MINUTES = 10

# Source-compatible aliases for the recipient selector.
_SELECTOR_ALIASES = {
    'person': OtpChallenge.RECIPIENT_PRIMARY,
    'customer': OtpChallenge.RECIPIENT_PRIMARY,
    'company': OtpChallenge.RECIPIENT_SECONDARY,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def generate_code() -> str:
    return f'{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}'


def normalize_otp(submitted) -> str:
    """Submitted code as text; a JSON number gets its leading zeros back."""
    if submitted is None:
        return ''
    if isinstance(submitted, int) and not isinstance(submitted, bool):
        return f'{submitted:0{CODE_LENGTH}d}'
    return str(submitted).strip()


@dataclass(frozen=True)
class RecipientSelector:
    kind: str = OtpChallenge.RECIPIENT_PRIMARY
    name: Optional[str] = None
    mobile: Optional[str] = None

    @classmethod
    def parse(cls, kind: Optional[str], name: Optional[str] = None, mobile: Optional[str] = None) -> 'RecipientSelector':
        raw = (kind or OtpChallenge.RECIPIENT_PRIMARY).strip().lower()
        normalized = _SELECTOR_ALIASES.get(raw, raw)
        if normalized not in OtpChallenge.RECIPIENT_TYPES:
            raise ValueError(f'recipient type must be one of {", ".join(OtpChallenge.RECIPIENT_TYPES)}')
        return cls(normalized, name, mobile)


def resolve_recipient(ticket, selector: RecipientSelector) -> Tuple[str, str]:
    """Return (display name, mobile) for the selector against ``ticket``."""
    if selector.kind == OtpChallenge.RECIPIENT_CUSTOM:
        name = (selector.name or '').strip()
        mobile = (selector.mobile or '').strip()
        if not name or not mobile:
            raise ValueError('custom recipient requires name and mobile')
        if len(normalize_msisdn(mobile)) < 10:
            raise ValueError('custom recipient mobile is not a valid phone number')
        return name, mobile
    if selector.kind == OtpChallenge.RECIPIENT_SECONDARY and getattr(ticket, 'is_company_item', False) and ticket.company_mobile:
        return ticket.company_name or ticket.customer_name, ticket.company_mobile
    # secondary without a purchasing company falls back to the person who brought the item
    return ticket.customer_name, ticket.mobile


class _TicketLocks:
    """Process-local lock per (kind, ticket id).

    Entries live only while some caller holds the returned lock, so the map
    does not grow with every ticket that ever had an OTP.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def get(self, kind: str, ticket_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((kind, ticket_id), threading.Lock())

    def __len__(self) -> int:
        return len(self._locks)


_LOCKS = _TicketLocks()


class OtpChallengeManager:
    def __init__(self, validity_minutes: int = DEFAULT_VALIDITY_MINUTES,
                 now: Callable[[], datetime] = utcnow,
                 notifier: Optional[Callable[..., object]] = None,
                 code_factory: Callable[[], str] = generate_code):
        self.validity = timedelta(minutes=validity_minutes)
        self.now = now
        self.notifier = notifier
        self.code_factory = code_factory

    @property
    def validity_window(self) -> str:
        minutes = int(self.validity.total_seconds() // 60)
        return f'{minutes} minutes' if minutes != 1 else '1 minute'

    def _lock_row(self, session, ticket):
        # Row lock where the backend supports it (ignored by SQLite).
        model = type(ticket)
        session.execute(select(model.id).where(model.id == ticket.id).with_for_update())

    def issue(self, session, ticket, selector: RecipientSelector, kind: Optional[str] = None) -> OtpChallenge:
        kind = kind or kind_of(ticket)
        name, mobile = resolve_recipient(ticket, selector)
        with _LOCKS.get(kind, ticket.id):
            now = self.now()
            try:
                self._lock_row(session, ticket)
                superseded = session.execute(
                    update(OtpChallenge)
                    .where(OtpChallenge.ticket_kind == kind, OtpChallenge.ticket_id == ticket.id, OtpChallenge.consumed.is_(False))
                    .values(consumed=True, consumed_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount
                challenge = OtpChallenge(
                    ticket_kind=kind,
                    ticket_id=ticket.id,
                    recipient_type=selector.kind,
                    recipient_name=name,
                    mobile=mobile,
                    code=self.code_factory(),
                    created_at=now,
                    expires_at=now + self.validity,
                    consumed=False,
                    verified=False,
                )
                session.add(challenge)
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.info('Issued delivery OTP for %s %s to %s (%s); superseded %s', kind, ticket.tracking_code,
                    name, selector.kind, superseded)
        if self.notifier is not None:
            try:
                self.notifier(session, 'delivery_otp', ticket, kind, {
                    'recipient_mobile': mobile,
                    'recipientName': name,
                    'otp': challenge.code,
                    'validityWindow': self.validity_window,
                })
            except Exception:
                # the challenge is committed; staff can resend from the delivery screen
                logger.exception('Delivery OTP notification for %s %s failed', kind, ticket.tracking_code)
        return challenge

    def live_challenge(self, session, ticket, kind: Optional[str] = None) -> Optional[OtpChallenge]:
        kind = kind or kind_of(ticket)
        return session.execute(
            select(OtpChallenge)
            .where(OtpChallenge.ticket_kind == kind, OtpChallenge.ticket_id == ticket.id, OtpChallenge.consumed.is_(False))
            .order_by(OtpChallenge.created_at.desc(), OtpChallenge.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def verify(self, session, ticket, submitted: Optional[str], kind: Optional[str] = None, commit: bool = True) -> OtpChallenge:
        """Consume the live challenge for ``ticket`` when ``submitted`` matches it.

        Order of checks: no unconsumed challenge -> NotFound; past expiry -> Expired
        (whatever the code); code differs from the stored one -> InvalidOtp.
        A code superseded by a re-issue is compared against the new live
        challenge only, so it fails exactly like a wrong guess (InvalidOtp) and
        never verifies. ``submitted`` may arrive as a JSON number; see
        ``normalize_otp``. With ``commit=False`` the consume is left in the
        caller's transaction.
        """
        kind = kind or kind_of(ticket)
        challenge = self.live_challenge(session, ticket, kind)
        if challenge is None:
            raise NotFound('No active OTP for this ticket')
        now = self.now()
        if now > _aware(challenge.expires_at):
            raise Expired('OTP expired, request a new one')
        if normalize_otp(submitted) != challenge.code:
            raise InvalidOtp('Invalid OTP')
        consumed = session.execute(
            update(OtpChallenge)
            .where(OtpChallenge.id == challenge.id, OtpChallenge.consumed.is_(False))
            .values(consumed=True, verified=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if consumed != 1:
            session.rollback()
            raise NotFound('No active OTP for this ticket')
        challenge.consumed = True
        challenge.verified = True
        challenge.consumed_at = now
        if commit:
            session.commit()
        logger.info('Verified delivery OTP for %s %s', kind, ticket.tracking_code)
        return challenge

    def purge(self, session, older_than: Optional[timedelta] = None, dry_run: bool = False) -> int:
        """Delete consumed or expired challenges (optionally only those older than ``older_than``)."""
        now = self.now()
        cond = or_(OtpChallenge.consumed.is_(True), OtpChallenge.expires_at < now)
        if older_than is not None:
            cond = cond & (OtpChallenge.created_at < now - older_than)
        if dry_run:
            return len(session.execute(select(OtpChallenge.id).where(cond)).all())
        count = session.execute(delete(OtpChallenge).where(cond).execution_options(synchronize_session=False)).rowcount
        session.commit()
        logger.info('Purged %s OTP challenges', count)
        return count


def delivery_recipient_defaults(receipt: Receipt) -> Dict[str, Dict[str, Optional[str]]]:
    """Recipient choices offered by the delivery screen for ``receipt``."""
    choices = {OtpChallenge.RECIPIENT_PRIMARY: {'name': receipt.customer_name, 'mobile': receipt.mobile}}
    if receipt.is_company_item and receipt.company_mobile:
        choices[OtpChallenge.RECIPIENT_SECONDARY] = {'name': receipt.company_name, 'mobile': receipt.company_mobile}
    return choices


__all__ = ['OtpChallengeManager', 'RecipientSelector', 'resolve_recipient', 'generate_code', 'normalize_otp', 'utcnow',
           'delivery_recipient_defaults', 'CODE_LENGTH', 'DEFAULT_VALIDITY_MINUTES']
