# payroll_engine/services/paysheet_export.py
from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook

from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.models.payroll.record import PayrollRecord

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def paysheet_rows(month: str, department_id=None, division_id=None) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Headers in configured column order, then one stored row per calculated employee."""
    q = PayrollRecord.query.filter(PayrollRecord.month == month)
    if department_id is not None:
        q = q.filter(PayrollRecord.department_id == department_id)
    if division_id is not None:
        q = q.filter(PayrollRecord.division_id == division_id)
    records = q.order_by(PayrollRecord.emp_no.asc()).all()

    cols = sorted(PayrollConfiguration.get().as_dict()["outputColumns"], key=lambda c: c.get("order") or 0)
    headers = []
    for c in cols:
        if c["header"] not in headers:
            headers.append(c["header"])
    # headers that only exist on rows stored under an older configuration go last
    for r in records:
        for h in (r.paysheet_row or {}):
            if h not in headers:
                headers.append(h)
    return headers, [dict(r.paysheet_row or {}) for r in records]


def _num(x) -> Optional[float]:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    return float(x)


def build_paysheet_workbook(month: str, department_id=None, division_id=None) -> BytesIO:
    headers, rows = paysheet_rows(month, department_id, division_id)

    wb = Workbook()
    ws = wb.active
    ws.title = "PAYSHEET"
    ws.append(["SR.NO"] + headers)

    totals: Dict[str, float] = {}
    for i, row in enumerate(rows, start=1):
        ws.append([i] + [row.get(h, "") for h in headers])
        for h in headers:
            n = _num(row.get(h))
            if n is not None:
                totals[h] = totals.get(h, 0.0) + n

    if rows:
        ws.append(["TOTAL"] + [round(totals[h], 2) if h in totals else None for h in headers])
    ws.freeze_panes = "B2"

    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio
