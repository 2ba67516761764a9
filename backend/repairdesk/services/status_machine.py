"""Ticket status machine.

Pure validation over per-kind transition tables. Nothing here touches the
database or knows about OTP challenges: the ``Delivered`` edge is an ordinary
edge at this layer and the lifecycle coordinator is the one that gates it.
"""
from __future__ import annotations
from typing import Dict, FrozenSet, Optional, Protocol
from repairdesk.models.receipt import Receipt
from repairdesk.models.service_complaint import ServiceComplaint
from repairdesk.utils.fsm import TransitionValidator
from repairdesk.errors import InvalidTransition

KIND_RECEIPT = Receipt.KIND
KIND_SERVICE = ServiceComplaint.KIND


class Ticket(Protocol):
    """Capability shared by receipts and service complaints."""
    status: str

    @property
    def tracking_code(self) -> str: ...


_R = Receipt
RECEIPT_FSM = TransitionValidator({
    _R.STATUS_PENDING: {_R.STATUS_IN_PROCESS, _R.STATUS_NOT_REPAIRED},
    # Product Ordered only applies when parts are needed
    _R.STATUS_IN_PROCESS: {_R.STATUS_PRODUCT_ORDERED, _R.STATUS_READY, _R.STATUS_NOT_REPAIRED},
    _R.STATUS_PRODUCT_ORDERED: {_R.STATUS_READY, _R.STATUS_NOT_REPAIRED},
    _R.STATUS_READY: {_R.STATUS_DELIVERED, _R.STATUS_NOT_REPAIRED},
    _R.STATUS_DELIVERED: set(),
    _R.STATUS_NOT_REPAIRED: set(),
})

_S = ServiceComplaint
SERVICE_FSM = TransitionValidator({
    _S.STATUS_PENDING: {_S.STATUS_ASSIGNED, _S.STATUS_CANCELLED},
    _S.STATUS_ASSIGNED: {_S.STATUS_IN_PROGRESS, _S.STATUS_CANCELLED},
    _S.STATUS_IN_PROGRESS: {_S.STATUS_COMPLETED, _S.STATUS_CANCELLED},
    _S.STATUS_COMPLETED: set(),
    _S.STATUS_CANCELLED: set(),
})

TRANSITION_TABLES: Dict[str, TransitionValidator] = {
    KIND_RECEIPT: RECEIPT_FSM,
    KIND_SERVICE: SERVICE_FSM,
}

# Display only; the machine does not enforce anything based on these.
PROGRESS = {
    KIND_RECEIPT: {
        _R.STATUS_PENDING: 20,
        _R.STATUS_IN_PROCESS: 40,
        _R.STATUS_PRODUCT_ORDERED: 60,
        _R.STATUS_READY: 80,
        _R.STATUS_DELIVERED: 100,
        _R.STATUS_NOT_REPAIRED: 100,
    },
    KIND_SERVICE: {
        _S.STATUS_PENDING: 25,
        _S.STATUS_ASSIGNED: 50,
        _S.STATUS_IN_PROGRESS: 75,
        _S.STATUS_COMPLETED: 100,
        _S.STATUS_CANCELLED: 100,
    },
}


def kind_of(ticket) -> str:
    if isinstance(ticket, Receipt):
        return KIND_RECEIPT
    if isinstance(ticket, ServiceComplaint):
        return KIND_SERVICE
    raise TypeError(f'Unsupported ticket type {type(ticket).__name__}')


def table_for(kind: str) -> TransitionValidator:
    try:
        return TRANSITION_TABLES[kind]
    except KeyError:
        raise ValueError(f'Unknown ticket kind {kind!r}')


def statuses_for(kind: str) -> FrozenSet[str]:
    return table_for(kind).states


def allowed_next(kind: str, status: str) -> FrozenSet[str]:
    return table_for(kind).allowed(status)


def can_transition(kind: str, current: str, target: str) -> bool:
    return table_for(kind).can_transition(current, target)


def is_terminal(kind: str, status: str) -> bool:
    return table_for(kind).is_terminal(status)


def transition(ticket: Ticket, requested: str, kind: Optional[str] = None) -> Ticket:
    """Validate ``ticket.status -> requested`` and apply it in memory.

    Raises InvalidTransition when the edge is absent from the ticket kind's table,
    which also covers unknown status strings.
    """
    kind = kind or kind_of(ticket)
    table_for(kind).assert_can_transition(ticket.status, requested)
    ticket.status = requested
    return ticket


def validate_known_status(kind: str, status: str) -> str:
    """Vocabulary check used where the table itself is bypassed."""
    if status not in statuses_for(kind):
        raise InvalidTransition(None, status)
    return status


def progress_percent(kind: str, status: str) -> int:
    return PROGRESS.get(kind, {}).get(status, 0)


__all__ = [
    'KIND_RECEIPT', 'KIND_SERVICE', 'Ticket', 'RECEIPT_FSM', 'SERVICE_FSM',
    'kind_of', 'table_for', 'statuses_for', 'allowed_next', 'can_transition', 'is_terminal',
    'transition', 'validate_known_status', 'progress_percent',
]
