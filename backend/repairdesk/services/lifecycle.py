"""Ticket lifecycle coordinator.

Entry points:

* ``request_status_change`` - the normal path. ``Delivered`` is only applied after
  a verified delivery OTP; every other status goes through the status machine.
  The commit always happens before the matching notification is enqueued, and a
  notification problem never turns into a failed request.
* ``admin_override_status`` - escape hatch used by the technician update screen.
  It skips the transition table (only the status vocabulary is checked) but it
  cannot produce ``Delivered``; that stays behind the OTP gate.
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Optional
from sqlalchemy import select
from repairdesk.errors import InvalidOtp, InvalidTransition, NotFound
from repairdesk.models.receipt import Receipt
from repairdesk.models.service_complaint import ServiceComplaint
from repairdesk.models.ticket_event import TicketStatusEvent
from repairdesk.services import status_machine
from repairdesk.services.otp import OtpChallengeManager, RecipientSelector, normalize_otp, utcnow
from repairdesk.services.notifications import (
    EVENT_PAYMENT_REMINDER, EVENT_READY_FOR_DELIVERY, EVENT_RECEIPT_DELIVERED, EVENT_RECEIPT_NOT_REPAIRED,
    EVENT_RECEIPT_STATUS, EVENT_SERVICE_STATUS,
)

logger = logging.getLogger(__name__)

MODELS = {
    status_machine.KIND_RECEIPT: Receipt,
    status_machine.KIND_SERVICE: ServiceComplaint,
}

# (kind, new status) -> event; anything else falls back to the kind's generic event
STATUS_EVENTS = {
    (status_machine.KIND_RECEIPT, Receipt.STATUS_READY): EVENT_READY_FOR_DELIVERY,
    (status_machine.KIND_RECEIPT, Receipt.STATUS_NOT_REPAIRED): EVENT_RECEIPT_NOT_REPAIRED,
    (status_machine.KIND_RECEIPT, Receipt.STATUS_DELIVERED): EVENT_RECEIPT_DELIVERED,
}
GENERIC_STATUS_EVENTS = {
    status_machine.KIND_RECEIPT: EVENT_RECEIPT_STATUS,
    status_machine.KIND_SERVICE: EVENT_SERVICE_STATUS,
}

Notifier = Callable[..., Any]


def status_event_for(kind: str, new_status: str) -> Optional[str]:
    return STATUS_EVENTS.get((kind, new_status)) or GENERIC_STATUS_EVENTS.get(kind)


def _null_notifier(*args, **kwargs):
    return False


class TicketLifecycleCoordinator:
    def __init__(self, otp: OtpChallengeManager, notifier: Optional[Notifier] = None,
                 now=utcnow):
        self.otp = otp
        self.notifier = notifier or _null_notifier
        self.now = now

    # -- lookups -------------------------------------------------------------

    def get_ticket(self, session, kind: str, ticket_id: int):
        model = MODELS.get(kind)
        if model is None:
            raise ValueError(f'Unknown ticket kind {kind!r}')
        ticket = session.execute(select(model).where(model.id == ticket_id)).scalar_one_or_none()
        if ticket is None:
            raise NotFound(f'{kind.capitalize()} not found')
        return ticket

    # -- helpers -------------------------------------------------------------

    def _record(self, session, kind, ticket, from_status, source, actor_id, note=None):
        session.add(TicketStatusEvent(
            ticket_kind=kind,
            ticket_id=ticket.id,
            from_status=from_status,
            to_status=ticket.status,
            source=source,
            actor_user_id=actor_id,
            note=note,
        ))

    def _notify(self, session, event: Optional[str], ticket, kind: str, overrides: Optional[Dict[str, Any]] = None):
        if not event:
            return
        try:
            self.notifier(session, event, ticket, kind, overrides or {})
        except Exception:
            logger.exception('Notification %s for %s %s failed', event, kind, ticket.tracking_code)

    def _apply_side_fields(self, kind, ticket, new_status, fields):
        if kind == status_machine.KIND_SERVICE:
            if new_status == ServiceComplaint.STATUS_ASSIGNED and fields.get('assigned_engineer_id') is not None:
                ticket.assigned_engineer_id = int(fields['assigned_engineer_id'])
            if new_status == ServiceComplaint.STATUS_COMPLETED:
                ticket.completed_at = self.now()

    # -- entry points --------------------------------------------------------

    def register_created(self, session, kind: str, ticket, actor_id: Optional[int] = None, event: Optional[str] = None):
        """Commit a freshly built ticket with its initial history row, then notify ``event``."""
        try:
            session.add(ticket)
            session.flush()
            self._record(session, kind, ticket, None, TicketStatusEvent.SOURCE_CREATED, actor_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info('Created %s %s', kind, ticket.tracking_code)
        self._notify(session, event, ticket, kind)
        return ticket

    def request_status_change(self, session, kind: str, ticket_id: int, new_status: str,
                              otp_code: Optional[str] = None, delivery_note: Optional[str] = None,
                              actor_id: Optional[int] = None, **fields):
        ticket = self.get_ticket(session, kind, ticket_id)
        if kind == status_machine.KIND_RECEIPT and new_status == Receipt.STATUS_DELIVERED:
            return self._deliver(session, ticket, otp_code, delivery_note, actor_id)
        previous = ticket.status
        try:
            status_machine.transition(ticket, new_status, kind)
            self._apply_side_fields(kind, ticket, new_status, fields)
            self._record(session, kind, ticket, previous, TicketStatusEvent.SOURCE_MACHINE, actor_id)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info('%s %s status %s -> %s', kind, ticket.tracking_code, previous, new_status)
        self._notify(session, status_event_for(kind, new_status), ticket, kind, {'oldStatus': previous})
        return ticket

    def _deliver(self, session, receipt: Receipt, otp_code, delivery_note, actor_id):
        kind = status_machine.KIND_RECEIPT
        previous = receipt.status
        if not status_machine.can_transition(kind, previous, Receipt.STATUS_DELIVERED):
            raise InvalidTransition(previous, Receipt.STATUS_DELIVERED)
        if not normalize_otp(otp_code):
            raise InvalidOtp('OTP is required to mark a receipt as Delivered')
        try:
            challenge = self.otp.verify(session, receipt, otp_code, kind, commit=False)
            status_machine.transition(receipt, Receipt.STATUS_DELIVERED, kind)
            receipt.delivered_at = self.now()
            receipt.delivery_note = delivery_note
            receipt.delivered_to = challenge.recipient_name
            self._record(session, kind, receipt, previous, TicketStatusEvent.SOURCE_OTP, actor_id, delivery_note)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.info('receipt %s delivered to %s', receipt.tracking_code, challenge.recipient_name)
        self._notify(session, EVENT_RECEIPT_DELIVERED, receipt, kind, {'oldStatus': previous})
        return receipt

    def request_delivery_otp(self, session, receipt_id: int, selector: RecipientSelector):
        """Issue a delivery OTP, only while the receipt can still move to Delivered."""
        kind = status_machine.KIND_RECEIPT
        receipt = self.get_ticket(session, kind, receipt_id)
        if not status_machine.can_transition(kind, receipt.status, Receipt.STATUS_DELIVERED):
            raise InvalidTransition(receipt.status, Receipt.STATUS_DELIVERED)
        return receipt, self.otp.issue(session, receipt, selector, kind)

    def admin_override_status(self, session, kind: str, ticket_id: int, new_status: str,
                              actor_id: Optional[int] = None, note: Optional[str] = None):
        ticket = self.get_ticket(session, kind, ticket_id)
        status_machine.validate_known_status(kind, new_status)
        if kind == status_machine.KIND_RECEIPT and new_status == Receipt.STATUS_DELIVERED:
            raise InvalidTransition(ticket.status, new_status, 'status (Delivered requires OTP verification)')
        previous = ticket.status
        ticket.status = new_status
        try:
            self._record(session, kind, ticket, previous, TicketStatusEvent.SOURCE_OVERRIDE, actor_id, note)
            session.commit()
        except Exception:
            session.rollback()
            raise
        logger.warning('Admin override: %s %s status %s -> %s by user %s', kind, ticket.tracking_code,
                       previous, new_status, actor_id)
        return ticket

    def send_payment_reminder(self, session, receipt_id: int, due_date: Optional[str] = None):
        receipt = self.get_ticket(session, status_machine.KIND_RECEIPT, receipt_id)
        self._notify(session, EVENT_PAYMENT_REMINDER, receipt, status_machine.KIND_RECEIPT, {'dueDate': due_date or ''})
        return receipt


def build_coordinator(config, notifier: Optional[Notifier] = None) -> TicketLifecycleCoordinator:
    """Coordinator wired with the app's OTP window and the queued notifier."""
    if notifier is None:
        from repairdesk.services.notifications import notify
        notifier = notify
    otp = OtpChallengeManager(validity_minutes=int(config.get('OTP_VALIDITY_MINUTES', 10)), notifier=notifier)
    return TicketLifecycleCoordinator(otp, notifier)


__all__ = ['TicketLifecycleCoordinator', 'build_coordinator', 'status_event_for', 'STATUS_EVENTS', 'MODELS']
