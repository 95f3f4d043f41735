# payroll_engine/services/batch_service.py
"""
Payroll batch workflow: listing, details, status transitions and
recalculation grants.

A batch moves pending -> approved -> freeze -> complete, and can step back
one stage before it is complete. Approved, frozen and complete batches refuse
recalculation unless a time-limited grant is active.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from payroll_engine.common.errors import APIError
from payroll_engine.extensions import db
from payroll_engine.models.attendance_rollup import PayRegisterSummary
from payroll_engine.models.employee import Employee
from payroll_engine.models.payroll.record import PayrollBatch, PayrollRecord
from payroll_engine.services.payroll_run import LOCKED_BATCH_STATUSES

log = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    "pending": ("approved",),
    "calculated": ("approved",),
    "approved": ("freeze", "pending"),
    "freeze": ("complete", "approved"),
    "complete": (),
}
DEFAULT_GRANT_HOURS = 24


def _iso(dt):
    return dt.isoformat() if dt else None


def _money(v):
    return float(v or 0)


def batch_to_dict(b: PayrollBatch, with_records: bool = False) -> Dict[str, Any]:
    out = {
        "id": b.id,
        "batch_number": b.batch_number,
        "department_id": b.department_id,
        "division_id": b.division_id,
        "month": b.month,
        "status": b.status,
        "total_employees": b.total_employees,
        "total_gross_salary": _money(b.total_gross_salary),
        "total_deductions": _money(b.total_deductions),
        "total_net_salary": _money(b.total_net_salary),
        "total_arrears": _money(b.total_arrears),
        "recalculation": {
            "allowed": b.recalculation_permitted(),
            "expires_at": _iso(b.recalculation_expires_at),
            "requested_by": b.recalculation_requested_by,
            "requested_at": _iso(b.recalculation_requested_at),
            "granted_by": b.recalculation_granted_by,
            "granted_at": _iso(b.recalculation_granted_at),
            "reason": b.recalculation_reason,
        },
        "approved_by": b.approved_by,
        "approved_at": _iso(b.approved_at),
        "frozen_by": b.frozen_by,
        "frozen_at": _iso(b.frozen_at),
        "completed_by": b.completed_by,
        "completed_at": _iso(b.completed_at),
        "status_history": list(b.status_history or []),
        "created_at": _iso(b.created_at),
    }
    if with_records:
        rows = PayrollRecord.query.filter_by(batch_id=b.id).order_by(PayrollRecord.emp_no.asc()).all()
        out["records"] = [
            {
                "id": r.id,
                "employee_id": r.employee_id,
                "emp_no": r.emp_no,
                "net_salary": _money(r.net_salary),
                "gross_salary": (r.earnings or {}).get("grossSalary", 0),
                "total_deductions": (r.deductions or {}).get("totalDeductions", 0),
                "status": r.status,
            }
            for r in rows
        ]
    return out


def get_batch(batch_id: int) -> PayrollBatch:
    batch = db.session.get(PayrollBatch, batch_id)
    if batch is None:
        raise APIError("NOT_FOUND", "Batch not found", status_code=404, payload={"batch_id": batch_id})
    return batch


def list_batches(month=None, department_id=None, division_id=None, status=None) -> List[PayrollBatch]:
    q = PayrollBatch.query
    if month:
        q = q.filter(PayrollBatch.month == month)
    if department_id is not None:
        q = q.filter(PayrollBatch.department_id == department_id)
    if division_id is not None:
        q = q.filter(PayrollBatch.division_id == division_id)
    if status:
        q = q.filter(PayrollBatch.status == status)
    return q.order_by(PayrollBatch.month.desc(), PayrollBatch.batch_number.asc()).all()


def missing_employee_ids(batch: PayrollBatch) -> List[int]:
    """Active employees in the batch scope with a pay register but no record in the batch."""
    in_scope = (
        Employee.query
        .join(PayRegisterSummary, PayRegisterSummary.employee_id == Employee.id)
        .filter(
            PayRegisterSummary.month == batch.month,
            Employee.status == "active",
            Employee.department_id == batch.department_id,
            Employee.division_id == batch.division_id,
        )
    )
    done = {r.employee_id for r in PayrollRecord.query.filter_by(batch_id=batch.id).all()}
    return sorted(e.id for e in in_scope.all() if e.id not in done)


def _clear_grant(batch: PayrollBatch) -> None:
    batch.recalculation_allowed = False
    batch.recalculation_expires_at = None


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def change_status(batch_id: int, new_status: str, user_id=None, reason: str = "") -> PayrollBatch:
    """Move the batch to ``new_status``; any recalculation grant ends with the move."""
    batch = get_batch(batch_id)
    current = batch.status or "pending"
    allowed = VALID_TRANSITIONS.get(current, ())
    if new_status not in allowed:
        raise APIError(
            "INVALID_STATUS_TRANSITION",
            f"Cannot move batch from '{current}' to '{new_status}'",
            status_code=409,
            payload={"status": current, "allowed": list(allowed)},
        )

    if new_status == "approved" and current in ("pending", "calculated"):
        if not batch.total_employees:
            raise APIError("BATCH_INCOMPLETE", "Cannot approve an empty batch", status_code=409)
        missing = missing_employee_ids(batch)
        if missing:
            raise APIError(
                "BATCH_INCOMPLETE",
                "Cannot approve: not all employees have payroll calculated",
                status_code=409,
                payload={"missing_employee_ids": missing},
            )

    now = datetime.utcnow()
    by = str(user_id) if user_id is not None else None
    batch.status = new_status
    batch.status_history = list(batch.status_history or []) + [
        {"status": new_status, "from": current, "by": by, "at": now.isoformat(), "reason": reason or ""}
    ]
    if new_status == "approved":
        batch.approved_by, batch.approved_at = by, now
    elif new_status == "freeze":
        batch.frozen_by, batch.frozen_at = by, now
    elif new_status == "complete":
        batch.completed_by, batch.completed_at = by, now
    _clear_grant(batch)
    _commit()
    log.info("batch %s: %s -> %s by %s", batch.batch_number, current, new_status, by)
    return batch


def request_recalculation(batch_id: int, user_id=None, reason: str = "") -> PayrollBatch:
    batch = get_batch(batch_id)
    if batch.status not in LOCKED_BATCH_STATUSES:
        raise APIError(
            "INVALID_STATUS_TRANSITION",
            f"Batch is '{batch.status}'; recalculation needs no permission",
            status_code=409,
        )
    batch.recalculation_requested_by = str(user_id) if user_id is not None else None
    batch.recalculation_requested_at = datetime.utcnow()
    batch.recalculation_reason = reason or None
    _commit()
    return batch


def grant_recalculation(
    batch_id: int,
    user_id=None,
    reason: str = "",
    expiry_hours: Optional[float] = None,
) -> PayrollBatch:
    """Allow recalculating a locked batch until the grant expires."""
    batch = get_batch(batch_id)
    if batch.status not in LOCKED_BATCH_STATUSES:
        raise APIError(
            "INVALID_STATUS_TRANSITION",
            f"Batch is '{batch.status}'; recalculation needs no permission",
            status_code=409,
        )
    hours = DEFAULT_GRANT_HOURS if expiry_hours is None else expiry_hours
    if hours <= 0:
        raise APIError("VALIDATION_ERROR", "expiry_hours must be positive", status_code=422)

    now = datetime.utcnow()
    batch.recalculation_allowed = True
    batch.recalculation_granted_by = str(user_id) if user_id is not None else None
    batch.recalculation_granted_at = now
    batch.recalculation_expires_at = now + timedelta(hours=hours)
    if reason:
        batch.recalculation_reason = reason
    _commit()
    log.info("batch %s: recalculation granted until %s", batch.batch_number, batch.recalculation_expires_at)
    return batch
