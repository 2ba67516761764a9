from __future__ import annotations
from flask import Blueprint, request, abort, current_app, g
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from repairdesk.decorators.auth import require_permissions
from repairdesk.services.policy import current_engineer_scope
from repairdesk.utils.listing import apply_pagination, build_list_payload
from repairdesk.utils.sorting import apply_multi_sort
from repairdesk.utils.validation import json_body, require_fields, optional_int, optional_datetime, validate_choice
from repairdesk import get_db
from repairdesk.models.service_complaint import ServiceComplaint, ServiceVisit
from repairdesk.services import status_machine
from repairdesk.services.lifecycle import build_coordinator
from repairdesk.services.numbering import next_tracking_code
from repairdesk.services.notifications import EVENT_SERVICE_CREATED
from repairdesk.services.tracking import visit_json

svc_bp = Blueprint('service_complaints', __name__)

KIND = status_machine.KIND_SERVICE
CREATE_ATTEMPTS = 3


def _coordinator():
    return build_coordinator(current_app.config)


@svc_bp.get('')
@require_permissions('SVC.READ')
def list_complaints():
    session = get_db()
    stmt = select(ServiceComplaint)
    # engineer tokens only ever see their own assignments
    scope = current_engineer_scope()
    if scope is not None:
        stmt = stmt.where(ServiceComplaint.assigned_engineer_id == scope)
    engineer = request.args.get('engineer_id')
    if engineer:
        try:
            stmt = stmt.where(ServiceComplaint.assigned_engineer_id == int(engineer))
        except ValueError:
            abort(400, description='engineer_id must be an integer')
    status = request.args.get('status')
    if status:
        stmt = stmt.where(ServiceComplaint.status == validate_choice(status, ServiceComplaint.ALL_STATUSES))
    customer = request.args.get('customer_name')
    if customer:
        stmt = stmt.where(ServiceComplaint.customer_name.ilike(f"%{customer}%"))
    allowed = {
        'customer_name': ServiceComplaint.customer_name,
        'status': ServiceComplaint.status,
        'priority': ServiceComplaint.priority,
        'created_at': ServiceComplaint.created_at,
        'id': ServiceComplaint.id,
    }
    stmt = apply_multi_sort(stmt, request.args.get('sort'), allowed, ServiceComplaint.id)
    rows, total, limit, offset = apply_pagination(session, stmt)
    return build_list_payload([_complaint_json(c) for c in rows], total, limit, offset)


@svc_bp.post('')
@require_permissions('SVC.MANAGE')
def create_complaint():
    session = get_db()
    data = json_body()
    require_fields(data, ['customer_name', 'mobile', 'product', 'issue_description'])
    priority = validate_choice(data.get('priority') or 'Normal', ServiceComplaint.PRIORITIES, 'priority')
    coordinator = _coordinator()
    for attempt in range(CREATE_ATTEMPTS):
        c = ServiceComplaint(
            complaint_number=next_tracking_code(session, KIND),
            customer_name=data['customer_name'].strip(),
            mobile=str(data['mobile']).strip(),
            address=data.get('address'),
            product=data['product'].strip(),
            model=data.get('model'),
            issue_description=data['issue_description'],
            priority=priority,
            status=ServiceComplaint.STATUS_PENDING,
        )
        try:
            coordinator.register_created(session, KIND, c, g.user_id, EVENT_SERVICE_CREATED)
            break
        except IntegrityError:
            if attempt == CREATE_ATTEMPTS - 1:
                raise
    return _complaint_json(c), 201


@svc_bp.get('/<int:complaint_id>')
@require_permissions('SVC.READ')
def get_complaint(complaint_id: int):
    session = get_db()
    c = _load_scoped(session, complaint_id)
    body = _complaint_json(c)
    body['visits'] = [visit_json(v) for v in _visits(session, c.id)]
    body['allowed_next'] = sorted(status_machine.allowed_next(KIND, c.status))
    return body


@svc_bp.post('/<int:complaint_id>/status')
@require_permissions('SVC.MANAGE')
def change_status(complaint_id: int):
    session = get_db()
    _load_scoped(session, complaint_id)
    data = json_body()
    require_fields(data, ['status'])
    c = _coordinator().request_status_change(
        session, KIND, complaint_id, data['status'],
        actor_id=g.user_id,
        assigned_engineer_id=optional_int(data, 'assigned_engineer_id'),
    )
    return _complaint_json(c)


@svc_bp.post('/<int:complaint_id>/override-status')
@require_permissions('ADMIN.STATUS.OVERRIDE')
def override_status(complaint_id: int):
    session = get_db()
    data = json_body()
    require_fields(data, ['status'])
    c = _coordinator().admin_override_status(session, KIND, complaint_id, data['status'], g.user_id, data.get('note'))
    return _complaint_json(c)


@svc_bp.get('/<int:complaint_id>/visits')
@require_permissions('SVC.READ')
def list_visits(complaint_id: int):
    session = get_db()
    c = _load_scoped(session, complaint_id)
    return {'data': [visit_json(v) for v in _visits(session, c.id)]}


@svc_bp.post('/<int:complaint_id>/visits')
@require_permissions('SVC.MANAGE')
def add_visit(complaint_id: int):
    session = get_db()
    c = _load_scoped(session, complaint_id)
    if status_machine.is_terminal(KIND, c.status):
        abort(400, description=f'Cannot log a visit on a {c.status} complaint')
    data = json_body()
    engineer_id = optional_int(data, 'engineer_id') or c.assigned_engineer_id or g.user_id
    if engineer_id is None:
        abort(400, description='engineer_id required')
    check_in = optional_datetime(data, 'check_in_time')
    check_out = optional_datetime(data, 'check_out_time')
    if check_in and check_out and check_out < check_in:
        abort(400, description='check_out_time must not be before check_in_time')
    v = ServiceVisit(
        complaint_id=c.id,
        engineer_id=engineer_id,
        check_in_time=check_in,
        check_out_time=check_out,
        work_description=data.get('work_description'),
        parts_issued=data.get('parts_issued'),
        visit_notes=data.get('visit_notes'),
    )
    session.add(v)
    session.commit()
    current_app.logger.info('Visit %s logged on %s by engineer %s', v.id, c.complaint_number, engineer_id)
    return visit_json(v), 201


def _load_scoped(session, complaint_id: int) -> ServiceComplaint:
    c = _coordinator().get_ticket(session, KIND, complaint_id)
    scope = current_engineer_scope()
    if scope is not None and c.assigned_engineer_id != scope:
        abort(403, description='Complaint is assigned to another engineer')
    return c


def _visits(session, complaint_id: int):
    return session.execute(
        select(ServiceVisit).where(ServiceVisit.complaint_id == complaint_id).order_by(ServiceVisit.created_at, ServiceVisit.id)
    ).scalars().all()


def _complaint_json(c: ServiceComplaint):
    return {
        'id': c.id,
        'complaint_number': c.complaint_number,
        'customer_name': c.customer_name,
        'mobile': c.mobile,
        'address': c.address,
        'product': c.product,
        'model': c.model,
        'issue_description': c.issue_description,
        'status': c.status,
        'priority': c.priority,
        'progress': status_machine.progress_percent(KIND, c.status),
        'assigned_engineer_id': c.assigned_engineer_id,
        'completed_at': c.completed_at.isoformat() if c.completed_at else None,
        'created_at': c.created_at.isoformat() if c.created_at else None,
    }
