# payroll_engine/services/batch_runner.py
"""
Parallel payroll for many employees.

Workers are threads, each with its own app context and session. The rule
snapshot and payroll configuration are read once for the whole batch; every
employee is calculated and committed on its own, so one failure leaves the
others untouched. A cancel event is checked before each employee starts.
Workers do not touch payroll batches; records are attached to their batches
after the pool drains.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from payroll_engine.common.errors import APIError
from payroll_engine.models.attendance_rollup import PayRegisterSummary
from payroll_engine.models.employee import Employee
from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.services.payroll_run import attach_records_to_batches, calculate_employee_payroll
from payroll_engine.services.rule_resolver import snapshot_cache

log = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    month: str
    total: int = 0
    succeeded: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["succeeded_count"] = len(self.succeeded)
        out["failed_count"] = len(self.failed)
        return out


def employee_ids_for(month: str, department_id=None, division_id=None) -> List[int]:
    """Active employees in scope that have a pay register summary for the month."""
    q = (
        Employee.query
        .join(PayRegisterSummary, PayRegisterSummary.employee_id == Employee.id)
        .filter(PayRegisterSummary.month == month, Employee.status == "active")
    )
    if department_id is not None:
        q = q.filter(Employee.department_id == department_id)
    if division_id is not None:
        q = q.filter(Employee.division_id == division_id)
    return [e.id for e in q.order_by(Employee.id.asc()).all()]


def run_batch(
    app,
    month: str,
    employee_ids: Optional[Iterable[int]] = None,
    department_id=None,
    division_id=None,
    max_workers: Optional[int] = None,
    user_id=None,
    cancel: Optional[threading.Event] = None,
    calculate: Callable[..., Dict[str, Any]] = calculate_employee_payroll,
) -> BatchSummary:
    """
    Calculate ``month`` for ``employee_ids`` (default: everyone in scope with
    a pay register). Must be called inside an app context.
    """
    ids = list(employee_ids) if employee_ids is not None else employee_ids_for(month, department_id, division_id)
    summary = BatchSummary(month=month, total=len(ids))
    if not ids:
        return summary

    workers = max(1, int(max_workers or app.config.get("PAYROLL_MAX_WORKERS", 4)))
    cancel = cancel or threading.Event()
    snapshot = snapshot_cache.get()
    config = PayrollConfiguration.get().as_dict()

    def _one(emp_id: int):
        if cancel.is_set():
            return emp_id, None, "cancelled"
        with app.app_context():
            result = calculate(emp_id, month, user_id=user_id, snapshot=snapshot, config=config, attach=False)
            return emp_id, result, None

    log.info("payroll batch %s: %d employee(s), %d worker(s)", month, len(ids), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payroll") as pool:
        futures = {pool.submit(_one, emp_id): emp_id for emp_id in ids}
        for fut in as_completed(futures):
            emp_id = futures[fut]
            try:
                _, result, state = fut.result()
            except APIError as e:
                summary.failed.append({"employee_id": emp_id, "code": e.code, "message": e.message})
                continue
            except Exception as e:
                log.exception("payroll failed for employee %s (%s)", emp_id, month)
                summary.failed.append({"employee_id": emp_id, "code": "INTERNAL", "message": str(e)})
                continue
            if state == "cancelled":
                summary.skipped.append(emp_id)
                continue
            summary.succeeded.append({
                "employee_id": emp_id,
                "payroll_record_id": result.get("payroll_record_id"),
                "batch_id": result.get("batch_id"),
                "net_salary": (result.get("payslip") or {}).get("totals", {}).get("net_pay"),
            })

    # batches and their totals are written here, single-threaded
    batch_ids = attach_records_to_batches(month, [s["payroll_record_id"] for s in summary.succeeded], user_id=user_id)
    for s in summary.succeeded:
        s["batch_id"] = batch_ids.get(s["payroll_record_id"])

    summary.cancelled = cancel.is_set()
    summary.skipped.sort()
    log.info(
        "payroll batch %s done: %d ok, %d failed, %d skipped",
        month, len(summary.succeeded), len(summary.failed), len(summary.skipped),
    )
    return summary
