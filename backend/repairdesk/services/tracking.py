"""Tracking-code resolution.

A tracking code's two-letter prefix is the discriminant between ticket tables:
``TD`` codes live in ``receipts`` and ``TE`` codes in ``service_complaints``.
The resolver never probes a table the prefix does not name.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from repairdesk.errors import NotFound
from repairdesk.models.receipt import Receipt
from repairdesk.models.service_complaint import ServiceComplaint, ServiceVisit
from repairdesk.models.ticket_event import TicketStatusEvent
from repairdesk.services.status_machine import KIND_RECEIPT, KIND_SERVICE, progress_percent

_PREFIX_RE = re.compile(r'^([A-Z]+)')

PREFIX_KINDS = {
    Receipt.CODE_PREFIX: KIND_RECEIPT,
    ServiceComplaint.CODE_PREFIX: KIND_SERVICE,
}


@dataclass
class TrackingResult:
    kind: str
    entity: Any
    history: List[Any] = field(default_factory=list)


def normalize_code(code: Optional[str]) -> str:
    return (code or '').strip().upper()


def kind_for_code(code: str) -> Optional[str]:
    m = _PREFIX_RE.match(normalize_code(code))
    if not m:
        return None
    return PREFIX_KINDS.get(m.group(1))


def resolve(session, code: str) -> TrackingResult:
    normalized = normalize_code(code)
    kind = kind_for_code(normalized)
    if kind == KIND_RECEIPT:
        receipt = session.execute(select(Receipt).where(Receipt.receipt_number == normalized)).scalar_one_or_none()
        if receipt is not None:
            return TrackingResult(KIND_RECEIPT, receipt, status_history(session, KIND_RECEIPT, receipt.id))
    elif kind == KIND_SERVICE:
        complaint = session.execute(select(ServiceComplaint).where(ServiceComplaint.complaint_number == normalized)).scalar_one_or_none()
        if complaint is not None:
            visits = session.execute(
                select(ServiceVisit).where(ServiceVisit.complaint_id == complaint.id).order_by(ServiceVisit.created_at, ServiceVisit.id)
            ).scalars().all()
            return TrackingResult(KIND_SERVICE, complaint, list(visits))
    raise NotFound('Tracking number not found')


def status_history(session, kind: str, ticket_id: int) -> List[TicketStatusEvent]:
    return list(session.execute(
        select(TicketStatusEvent)
        .where(TicketStatusEvent.ticket_kind == kind, TicketStatusEvent.ticket_id == ticket_id)
        .order_by(TicketStatusEvent.created_at, TicketStatusEvent.id)
    ).scalars())


def _iso(dt):
    return dt.isoformat() if dt is not None else None


def receipt_public_json(r: Receipt) -> Dict[str, Any]:
    return {
        'receipt_number': r.receipt_number,
        'customer_name': r.customer_name,
        'product': r.product,
        'model': r.model,
        'estimated_amount': r.estimated_amount,
        'status': r.status,
        'is_company_item': r.is_company_item,
        'company_name': r.company_name,
        'delivery_note': r.delivery_note,
        'delivered_to': r.delivered_to,
        'delivered_at': _iso(r.delivered_at),
        'created_at': _iso(r.created_at),
    }


def complaint_public_json(c: ServiceComplaint) -> Dict[str, Any]:
    return {
        'complaint_number': c.complaint_number,
        'customer_name': c.customer_name,
        'address': c.address,
        'product': c.product,
        'model': c.model,
        'issue_description': c.issue_description,
        'status': c.status,
        'priority': c.priority,
        'assigned_engineer_id': c.assigned_engineer_id,
        'completed_at': _iso(c.completed_at),
        'created_at': _iso(c.created_at),
    }


def event_json(e: TicketStatusEvent) -> Dict[str, Any]:
    return {
        'from_status': e.from_status,
        'to_status': e.to_status,
        'source': e.source,
        'note': e.note,
        'created_at': _iso(e.created_at),
    }


def visit_json(v: ServiceVisit) -> Dict[str, Any]:
    return {
        'id': v.id,
        'engineer_id': v.engineer_id,
        'check_in_time': _iso(v.check_in_time),
        'check_out_time': _iso(v.check_out_time),
        'work_description': v.work_description,
        'parts_issued': v.parts_issued,
        'visit_notes': v.visit_notes,
        'created_at': _iso(v.created_at),
    }


def to_public_view(result: TrackingResult) -> Dict[str, Any]:
    """Shape returned by the public tracking endpoint."""
    if result.kind == KIND_RECEIPT:
        data = receipt_public_json(result.entity)
        data['history'] = [event_json(e) for e in result.history]
    else:
        data = complaint_public_json(result.entity)
        data['visits'] = [visit_json(v) for v in result.history]
    data['progress'] = progress_percent(result.kind, result.entity.status)
    return {'type': result.kind, 'data': data}


__all__ = ['TrackingResult', 'normalize_code', 'kind_for_code', 'resolve', 'status_history', 'to_public_view']
