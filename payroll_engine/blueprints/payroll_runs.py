from __future__ import annotations
from flask import Blueprint, request, current_app, send_file
from flask_jwt_extended import get_jwt_identity

from payroll_engine.common.auth import requires_perms
from payroll_engine.common.http import ok, fail
from payroll_engine.services import batch_service
from payroll_engine.services.batch_runner import run_batch
from payroll_engine.services.pay_cycle import parse_month
from payroll_engine.services.payroll_run import calculate_employee_payroll
from payroll_engine.services.paysheet_export import XLSX_MIME, build_paysheet_workbook

bp = Blueprint("payroll_runs", __name__, url_prefix="/api/v1/payroll")


# -------- helpers ----------
def _month_or_none(value):
    try:
        parse_month(value)
        return value
    except ValueError:
        return None


def _int_or_none(value):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# -------- routes ----------
@bp.post("/calculate")
@requires_perms("payroll.run.execute")
def calculate_one():
    j = request.get_json(silent=True) or {}
    emp_id = _int_or_none(j.get("employee_id"))
    month = _month_or_none(j.get("month"))
    if emp_id is None or month is None:
        return fail("employee_id and month (YYYY-MM) are required", 422)

    # precondition / lock errors propagate to the APIError handler
    res = calculate_employee_payroll(emp_id, month, user_id=get_jwt_identity())
    return ok(res)


@bp.post("/batches/calculate")
@requires_perms("payroll.run.execute")
def calculate_batch():
    j = request.get_json(silent=True) or {}
    month = _month_or_none(j.get("month"))
    if month is None:
        return fail("month (YYYY-MM) is required", 422)

    ids = j.get("employee_ids")
    if ids is not None:
        if not isinstance(ids, list) or any(_int_or_none(x) is None for x in ids):
            return fail("employee_ids must be a list of integers", 422)
        ids = [int(x) for x in ids]

    summary = run_batch(
        current_app._get_current_object(),
        month,
        employee_ids=ids,
        department_id=_int_or_none(j.get("department_id")),
        division_id=_int_or_none(j.get("division_id")),
        max_workers=_int_or_none(j.get("max_workers")),
        user_id=get_jwt_identity(),
    )
    return ok(summary.to_dict())


@bp.get("/paysheet")
@requires_perms("payroll.run.read")
def download_paysheet():
    month = _month_or_none(request.args.get("month"))
    if month is None:
        return fail("month (YYYY-MM) is required", 422)
    bio = build_paysheet_workbook(
        month,
        department_id=_int_or_none(request.args.get("department_id")),
        division_id=_int_or_none(request.args.get("division_id")),
    )
    filename = f"paysheet_{month.replace('-', '')}.xlsx"
    return send_file(bio, mimetype=XLSX_MIME, as_attachment=True, download_name=filename)


# -------- batches ----------
@bp.get("/batches")
@requires_perms("payroll.run.read")
def list_batches():
    month = request.args.get("month")
    if month and _month_or_none(month) is None:
        return fail("month must be YYYY-MM", 422)
    rows = batch_service.list_batches(
        month=month or None,
        department_id=_int_or_none(request.args.get("department_id")),
        division_id=_int_or_none(request.args.get("division_id")),
        status=request.args.get("status") or None,
    )
    return ok([batch_service.batch_to_dict(b) for b in rows], total=len(rows))


@bp.get("/batches/<int:batch_id>")
@requires_perms("payroll.run.read")
def get_batch(batch_id: int):
    batch = batch_service.get_batch(batch_id)
    data = batch_service.batch_to_dict(batch, with_records=True)
    data["missing_employee_ids"] = batch_service.missing_employee_ids(batch)
    return ok(data)


def _transition(batch_id: int, status: str):
    j = request.get_json(silent=True) or {}
    batch = batch_service.change_status(batch_id, status, user_id=get_jwt_identity(), reason=j.get("reason") or "")
    return ok(batch_service.batch_to_dict(batch))


@bp.post("/batches/<int:batch_id>/approve")
@requires_perms("payroll.run.approve")
def approve_batch(batch_id: int):
    return _transition(batch_id, "approved")


@bp.post("/batches/<int:batch_id>/freeze")
@requires_perms("payroll.run.approve")
def freeze_batch(batch_id: int):
    return _transition(batch_id, "freeze")


@bp.post("/batches/<int:batch_id>/complete")
@requires_perms("payroll.run.approve")
def complete_batch(batch_id: int):
    return _transition(batch_id, "complete")


@bp.post("/batches/<int:batch_id>/reopen")
@requires_perms("payroll.run.approve")
def reopen_batch(batch_id: int):
    """One stage back: approved -> pending, freeze -> approved."""
    batch = batch_service.get_batch(batch_id)
    previous = {"approved": "pending", "freeze": "approved"}.get(batch.status)
    if previous is None:
        return fail(f"Batch in status '{batch.status}' cannot be reopened", 409)
    return _transition(batch_id, previous)


@bp.post("/batches/<int:batch_id>/request-recalculation")
@requires_perms("payroll.run.execute")
def request_recalculation(batch_id: int):
    j = request.get_json(silent=True) or {}
    reason = (j.get("reason") or "").strip()
    if not reason:
        return fail("reason is required", 422)
    batch = batch_service.request_recalculation(batch_id, user_id=get_jwt_identity(), reason=reason)
    return ok(batch_service.batch_to_dict(batch))


@bp.post("/batches/<int:batch_id>/grant-recalculation")
@requires_perms("payroll.run.approve")
def grant_recalculation(batch_id: int):
    j = request.get_json(silent=True) or {}
    hours = j.get("expiry_hours")
    if hours is not None:
        try:
            hours = float(hours)
        except (TypeError, ValueError):
            return fail("expiry_hours must be a number", 422)
    batch = batch_service.grant_recalculation(
        batch_id, user_id=get_jwt_identity(), reason=j.get("reason") or "", expiry_hours=hours,
    )
    return ok(batch_service.batch_to_dict(batch))
