from __future__ import annotations
from flask import Blueprint, request, abort, current_app, g
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from repairdesk.decorators.auth import require_permissions
from repairdesk.services.policy import has_permissions
from repairdesk.utils.listing import apply_pagination, build_list_payload
from repairdesk.utils.sorting import apply_multi_sort
from repairdesk.utils.validation import json_body, require_fields, optional_int, validate_choice
from repairdesk import get_db
from repairdesk.models.receipt import Receipt
from repairdesk.services import status_machine
from repairdesk.services.lifecycle import build_coordinator
from repairdesk.services.numbering import next_tracking_code
from repairdesk.services.notifications import EVENT_RECEIPT_CREATED
from repairdesk.services.otp import RecipientSelector, delivery_recipient_defaults
from repairdesk.services.tracking import status_history, event_json

rcpt_bp = Blueprint('receipts', __name__)

KIND = status_machine.KIND_RECEIPT
CREATE_ATTEMPTS = 3


def _coordinator():
    return build_coordinator(current_app.config)


@rcpt_bp.get('')
@require_permissions('RCPT.READ')
def list_receipts():
    session = get_db()
    stmt = select(Receipt)
    customer = request.args.get('customer_name')
    mobile = request.args.get('mobile')
    status = request.args.get('status')
    if customer:
        stmt = stmt.where(Receipt.customer_name.ilike(f"%{customer}%"))
    if mobile:
        stmt = stmt.where(Receipt.mobile.like(f"%{mobile}%"))
    if status:
        stmt = stmt.where(Receipt.status == validate_choice(status, Receipt.ALL_STATUSES))
    allowed = {
        'customer_name': Receipt.customer_name,
        'status': Receipt.status,
        'created_at': Receipt.created_at,
        'receipt_number': Receipt.receipt_number,
        'id': Receipt.id,
    }
    stmt = apply_multi_sort(stmt, request.args.get('sort'), allowed, Receipt.id)
    rows, total, limit, offset = apply_pagination(session, stmt)
    return build_list_payload([_receipt_json(r) for r in rows], total, limit, offset)


@rcpt_bp.post('')
@require_permissions('RCPT.MANAGE')
def create_receipt():
    session = get_db()
    data = json_body()
    require_fields(data, ['customer_name', 'mobile', 'product'])
    is_company = bool(data.get('is_company_item'))
    if is_company and not (data.get('company_name') and data.get('company_mobile')):
        abort(400, description='company_name, company_mobile required for company items')
    coordinator = _coordinator()
    for attempt in range(CREATE_ATTEMPTS):
        r = Receipt(
            receipt_number=next_tracking_code(session, KIND),
            customer_name=data['customer_name'].strip(),
            mobile=str(data['mobile']).strip(),
            is_company_item=is_company,
            company_name=data.get('company_name') if is_company else None,
            company_mobile=data.get('company_mobile') if is_company else None,
            product=data['product'].strip(),
            model=data.get('model'),
            problem_description=data.get('problem_description'),
            estimated_amount=optional_int(data, 'estimated_amount'),
            status=Receipt.STATUS_PENDING,
        )
        try:
            coordinator.register_created(session, KIND, r, g.user_id, EVENT_RECEIPT_CREATED)
            break
        except IntegrityError:
            # another request took the same number; pick the next one
            if attempt == CREATE_ATTEMPTS - 1:
                raise
    return _receipt_json(r), 201


@rcpt_bp.get('/<int:receipt_id>')
@require_permissions('RCPT.READ')
def get_receipt(receipt_id: int):
    session = get_db()
    r = _coordinator().get_ticket(session, KIND, receipt_id)
    body = _receipt_json(r)
    body['history'] = [event_json(e) for e in status_history(session, KIND, r.id)]
    body['allowed_next'] = sorted(status_machine.allowed_next(KIND, r.status))
    body['delivery_recipients'] = delivery_recipient_defaults(r)
    return body


@rcpt_bp.post('/<int:receipt_id>/status')
@require_permissions('RCPT.MANAGE', 'RCPT.DELIVER', any_of=True)
def change_status(receipt_id: int):
    session = get_db()
    data = json_body()
    require_fields(data, ['status'])
    new_status = data['status']
    needed = 'RCPT.DELIVER' if new_status == Receipt.STATUS_DELIVERED else 'RCPT.MANAGE'
    if not has_permissions(needed):
        abort(403, description='Missing permission')
    r = _coordinator().request_status_change(
        session, KIND, receipt_id, new_status,
        otp_code=data.get('otp'),
        delivery_note=data.get('delivery_note'),
        actor_id=g.user_id,
    )
    return _receipt_json(r)


@rcpt_bp.post('/<int:receipt_id>/otp')
@require_permissions('RCPT.DELIVER')
def send_delivery_otp(receipt_id: int):
    session = get_db()
    data = json_body()
    try:
        selector = RecipientSelector.parse(data.get('recipient_type'), data.get('recipient_name'), data.get('mobile'))
        _, challenge = _coordinator().request_delivery_otp(session, receipt_id, selector)
    except ValueError as e:
        abort(400, description=str(e))
    return {
        'challenge_id': challenge.id,
        'recipient_type': challenge.recipient_type,
        'recipient_name': challenge.recipient_name,
        'mobile': _mask(challenge.mobile),
        'expires_at': challenge.expires_at.isoformat(),
        'message': f'OTP sent to {challenge.recipient_name}',
    }, 201


@rcpt_bp.post('/<int:receipt_id>/otp/verify')
@require_permissions('RCPT.DELIVER')
def verify_delivery_otp(receipt_id: int):
    session = get_db()
    data = json_body()
    require_fields(data, ['otp'])
    r = _coordinator().request_status_change(
        session, KIND, receipt_id, Receipt.STATUS_DELIVERED,
        otp_code=data['otp'],
        delivery_note=data.get('delivery_note'),
        actor_id=g.user_id,
    )
    return _receipt_json(r)


@rcpt_bp.post('/<int:receipt_id>/override-status')
@require_permissions('ADMIN.STATUS.OVERRIDE')
def override_status(receipt_id: int):
    session = get_db()
    data = json_body()
    require_fields(data, ['status'])
    r = _coordinator().admin_override_status(session, KIND, receipt_id, data['status'], g.user_id, data.get('note'))
    return _receipt_json(r)


@rcpt_bp.post('/<int:receipt_id>/payment-reminder')
@require_permissions('RCPT.MANAGE')
def payment_reminder(receipt_id: int):
    session = get_db()
    data = json_body()
    _coordinator().send_payment_reminder(session, receipt_id, data.get('due_date'))
    return {'success': True}, 202


def _mask(mobile: str) -> str:
    digits = mobile or ''
    return ('*' * max(0, len(digits) - 4)) + digits[-4:]


def _receipt_json(r: Receipt):
    return {
        'id': r.id,
        'receipt_number': r.receipt_number,
        'customer_name': r.customer_name,
        'mobile': r.mobile,
        'is_company_item': r.is_company_item,
        'company_name': r.company_name,
        'company_mobile': r.company_mobile,
        'product': r.product,
        'model': r.model,
        'problem_description': r.problem_description,
        'estimated_amount': r.estimated_amount,
        'status': r.status,
        'payment_status': r.payment_status,
        'progress': status_machine.progress_percent(KIND, r.status),
        'delivery_note': r.delivery_note,
        'delivered_to': r.delivered_to,
        'delivered_at': r.delivered_at.isoformat() if r.delivered_at else None,
        'created_at': r.created_at.isoformat() if r.created_at else None,
    }
