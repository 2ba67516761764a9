from __future__ import annotations
import re
from sqlalchemy import select
from repairdesk.models.receipt import Receipt
from repairdesk.models.service_complaint import ServiceComplaint

PAD_WIDTH = 3

_COLUMNS = {
    Receipt.KIND: (Receipt.CODE_PREFIX, Receipt.receipt_number),
    ServiceComplaint.KIND: (ServiceComplaint.CODE_PREFIX, ServiceComplaint.complaint_number),
}


def format_code(prefix: str, seq: int) -> str:
    return f'{prefix}{seq:0{PAD_WIDTH}d}'


def next_tracking_code(session, kind: str) -> str:
    """Next sequential code for ``kind`` (TD001, TD002 ... TD1000).

    Scans existing codes for the highest numeric suffix, so codes wider than the
    pad width still sort correctly. Uniqueness is ultimately enforced by the
    unique index on the code column.
    """
    prefix, column = _COLUMNS[kind]
    pattern = re.compile(rf'^{prefix}(\d+)$')
    highest = 0
    for (code,) in session.execute(select(column).where(column.like(f'{prefix}%'))):
        m = pattern.match(code or '')
        if m:
            highest = max(highest, int(m.group(1)))
    return format_code(prefix, highest + 1)
