# payroll_engine/services/payroll_run.py
"""
Calculate, persist and batch one employee-month.

Inputs are read from the store once, the pipeline runs without touching the
database, and the payroll record is upserted in a single transaction. Batch
attachment happens afterwards; a failure there is logged and does not undo
the calculation. Parallel runs attach their records in one pass once every
worker has finished.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from payroll_engine.common.errors import BatchLockedError, PayrollPreconditionError
from payroll_engine.common.money import D, num
from payroll_engine.extensions import db
from payroll_engine.models.attendance_rollup import PayRegisterSummary
from payroll_engine.models.employee import Employee
from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.models.payroll.record import PayrollBatch, PayrollRecord
from payroll_engine.services.attendance_normalizer import normalize_attendance, resolve_month_days
from payroll_engine.services.pay_cycle import parse_month, payroll_date_range
from payroll_engine.services.payslip_service import PayslipService
from payroll_engine.services.pipeline import CalculationInputs, CompensationProfile, PipelineResult, execute
from payroll_engine.services.recoveries import load_active_recoveries, safe_pending_arrears
from payroll_engine.services.requirements import ARREARS, LOAN_ADVANCE, analyze_columns
from payroll_engine.services.rule_resolver import RuleSnapshot, snapshot_cache

log = logging.getLogger(__name__)

LOCKED_BATCH_STATUSES = ("approved", "freeze", "complete")
LEAVE_POLICY_KEY = "leave_policy"


# ---------- helpers ----------

def _use_el_as_paid(snapshot: RuleSnapshot, department_id, division_id) -> bool:
    policy = snapshot.setting(LEAVE_POLICY_KEY, department_id, division_id, default={}) or {}
    el = policy.get("earnedLeave") if isinstance(policy, Mapping) else None
    return bool(el) and isinstance(el, Mapping) and el.get("useAsPaidInPayroll") is not False


def _cycle_days(month: str) -> Optional[int]:
    try:
        return payroll_date_range(month)["total_days"]
    except (ValueError, SQLAlchemyError):
        log.warning("pay cycle lookup failed for %s; using pay register day count", month, exc_info=True)
        return None


def employee_header(emp: Employee) -> Dict[str, Any]:
    return {
        "emp_no": emp.emp_no,
        "name": emp.name,
        "department": emp.department.name if emp.department else None,
        "division": emp.division.name if emp.division else None,
        "designation": emp.designation,
        "location": emp.location,
        "bank_account_no": emp.bank_account_no,
        "bank_name": emp.bank_name,
        "payment_mode": emp.salary_mode,
        "date_of_joining": emp.doj.isoformat() if emp.doj else None,
        "pf_number": emp.pf_number,
        "esi_number": emp.esi_number,
    }


def find_batch(department_id, division_id, month: str) -> Optional[PayrollBatch]:
    return PayrollBatch.query.filter_by(department_id=department_id, division_id=division_id, month=month).first()


def ensure_batch_unlocked(department_id, division_id, month: str) -> None:
    batch = find_batch(department_id, division_id, month) if department_id else None
    if batch and batch.status in LOCKED_BATCH_STATUSES and not batch.recalculation_permitted():
        raise BatchLockedError(batch.batch_number, batch.status)


# ---------- load ----------

def load_inputs(
    employee_id: int,
    month: str,
    snapshot: Optional[RuleSnapshot] = None,
    config: Optional[Mapping[str, Any]] = None,
):
    """(employee, CalculationInputs) for one employee-month; raises PayrollPreconditionError."""
    try:
        parse_month(month)
    except ValueError as e:
        raise PayrollPreconditionError(str(e), status_code=400)

    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise PayrollPreconditionError("Employee not found", payload={"employee_id": employee_id}, status_code=404)

    summary = PayRegisterSummary.query.filter_by(employee_id=emp.id, month=month).first()
    if not summary:
        raise PayrollPreconditionError(
            "Pay register not found for this month",
            payload={"employee_id": emp.id, "month": month},
        )

    snapshot = snapshot or snapshot_cache.get()
    if config is None:
        config = PayrollConfiguration.get().as_dict()
    if not config.get("enabled", True):
        raise PayrollPreconditionError("Payroll configuration is disabled")

    profile = CompensationProfile.from_employee(emp)
    month_days = resolve_month_days(_cycle_days(month), summary.total_days_in_month)
    attendance = normalize_attendance(
        summary.totals(),
        month_days,
        el_balance=profile.paid_leaves,
        use_el_as_paid=_use_el_as_paid(snapshot, emp.department_id, emp.division_id),
    )

    reqs = analyze_columns(config.get("outputColumns") or [])
    inputs = CalculationInputs(
        month=month,
        profile=profile,
        attendance=attendance,
        snapshot=snapshot,
        config=config,
        employee=employee_header(emp),
        department_id=emp.department_id,
        division_id=emp.division_id,
        recoveries=load_active_recoveries(emp.id) if reqs.needs(LOAN_ADVANCE) else (),
        arrears=safe_pending_arrears(emp.id) if reqs.needs(ARREARS) else (),
    )
    return emp, inputs


# ---------- persist ----------

def persist_record(emp: Employee, inputs: CalculationInputs, result: PipelineResult) -> PayrollRecord:
    """Upsert the employee-month record; commits or rolls back as a unit."""
    rec = result.record
    att = rec.get("attendance") or {}
    year, month_number = parse_month(inputs.month)
    row = PayrollRecord.query.filter_by(employee_id=emp.id, month=inputs.month).first()
    if row is None:
        row = PayrollRecord(employee_id=emp.id, month=inputs.month)
        db.session.add(row)

    row.emp_no = emp.emp_no
    row.month_name = rec.get("month")
    row.year = year
    row.month_number = month_number
    row.department_id = emp.department_id
    row.division_id = emp.division_id
    row.total_days_in_month = num(att.get("totalDaysInMonth")) or 30
    row.total_payable_shifts = num(att.get("payableShifts"))
    row.el_used_in_payroll = num(att.get("elUsedInPayroll"))
    row.status = "calculated"
    row.net_salary = D(rec.get("netSalary"))
    row.round_off = D(rec.get("roundOff"))
    row.attendance = att
    row.earnings = rec.get("earnings") or {}
    row.deductions = rec.get("deductions") or {}
    row.loan_advance = rec.get("loanAdvance") or {}
    row.arrears = rec.get("arrears") or {}
    row.paysheet_row = result.row
    row.calculated_at = datetime.utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return row


def batch_number_for(emp: Employee, month: str) -> str:
    dept = (emp.department.code if emp.department and emp.department.code else f"D{emp.department_id}")
    div = (emp.division.code if emp.division and emp.division.code else (f"V{emp.division_id}" if emp.division_id else "ALL"))
    return f"PB-{month.replace('-', '')}-{dept}-{div}".upper()


def recalculate_batch_totals(batch: PayrollBatch) -> None:
    """Totals from every record currently in the batch, read fresh from the session."""
    records = PayrollRecord.query.filter_by(batch_id=batch.id).all()
    gross = deductions = net = arrears = Decimal("0")
    for r in records:
        gross += D((r.earnings or {}).get("grossSalary"))
        deductions += D((r.deductions or {}).get("totalDeductions"))
        net += D(r.net_salary)
        arrears += D((r.arrears or {}).get("arrearsAmount"))
    batch.total_employees = len(records)
    batch.total_gross_salary = gross
    batch.total_deductions = deductions
    batch.total_net_salary = net
    batch.total_arrears = arrears


def get_or_create_batch(emp: Employee, month: str, user_id=None) -> PayrollBatch:
    """
    Department/division/month batch for ``emp``. The insert is committed on
    its own; if another writer created the batch first, its row is returned.
    """
    batch = find_batch(emp.department_id, emp.division_id, month)
    if batch is not None:
        return batch
    year, month_number = parse_month(month)
    batch = PayrollBatch(
        batch_number=batch_number_for(emp, month),
        department_id=emp.department_id,
        division_id=emp.division_id,
        month=month,
        year=year,
        month_number=month_number,
        status="pending",
        created_by=str(user_id) if user_id is not None else None,
    )
    db.session.add(batch)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        batch = find_batch(emp.department_id, emp.division_id, month)
        if batch is None:
            raise
        log.info("batch %s created concurrently; reusing it", batch.batch_number)
    return batch


def _lock_batch(batch_id: int) -> PayrollBatch:
    # row lock on PostgreSQL so concurrent total updates serialize
    return PayrollBatch.query.filter_by(id=batch_id).with_for_update().one()


def attach_to_batch(emp: Employee, record: PayrollRecord, month: str, user_id=None) -> Optional[PayrollBatch]:
    """Put the record in its department/division/month batch, creating the batch on first use."""
    if not emp.department_id:
        return None
    try:
        batch = _lock_batch(get_or_create_batch(emp, month, user_id=user_id).id)
        record.batch_id = batch.id
        db.session.flush()
        recalculate_batch_totals(batch)
        db.session.commit()
        return batch
    except SQLAlchemyError as e:
        db.session.rollback()
        log.error("batch update failed for employee %s %s: %s", emp.id, month, e)
        return None


def attach_records_to_batches(month: str, record_ids: Iterable[int], user_id=None) -> Dict[int, int]:
    """
    Batch attachment for many records at once, run after parallel workers
    finish: batches are created first, then records attached and totals
    recomputed once per batch. Returns {record id: batch id}.
    """
    ids = [i for i in record_ids if i is not None]
    if not ids:
        return {}
    rows = PayrollRecord.query.filter(PayrollRecord.id.in_(ids), PayrollRecord.month == month).all()

    batch_ids: Dict[tuple, int] = {}
    for row in rows:
        key = (row.department_id, row.division_id)
        if row.department_id and key not in batch_ids:
            batch_ids[key] = get_or_create_batch(row.employee, month, user_id=user_id).id

    try:
        batches = {key: _lock_batch(bid) for key, bid in batch_ids.items()}
        out: Dict[int, int] = {}
        for row in rows:
            batch = batches.get((row.department_id, row.division_id))
            if batch is not None:
                row.batch_id = batch.id
                out[row.id] = batch.id
        db.session.flush()
        for batch in batches.values():
            recalculate_batch_totals(batch)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    log.info("attached %d record(s) to %d batch(es) for %s", len(out), len(batches), month)
    return out


# ---------- entry point ----------

def calculate_employee_payroll(
    employee_id: int,
    month: str,
    user_id=None,
    snapshot: Optional[RuleSnapshot] = None,
    config: Optional[Mapping[str, Any]] = None,
    attach: bool = True,
) -> Dict[str, Any]:
    """
    Calculate and store one employee-month; returns the payslip and paysheet
    row. With ``attach=False`` the record is left out of its batch and the
    caller attaches it (see ``attach_records_to_batches``).
    """
    emp, inputs = load_inputs(employee_id, month, snapshot=snapshot, config=config)
    ensure_batch_unlocked(emp.department_id, emp.division_id, month)

    result = execute(inputs)
    record = persist_record(emp, inputs, result)
    batch = attach_to_batch(emp, record, month, user_id=user_id) if attach else None

    log.info("payroll calculated emp=%s month=%s net=%s", emp.emp_no, month, result.record.get("netSalary"))
    return {
        "payroll_record_id": record.id,
        "batch_id": batch.id if batch else None,
        "payslip": PayslipService().build_payslip_dto(result.record, result.row),
        "row": result.row,
    }
