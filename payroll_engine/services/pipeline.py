# payroll_engine/services/pipeline.py
"""
Column-driven payroll calculation for one employee-month.

Output columns run in ascending ``order``. A field column reads its path from
the payslip record, running the calculator that owns the path the first time
it is needed. A formula column is evaluated against the base context derived
from the record plus the keys of earlier columns. Each column's numeric value
is then published under its header key so later formulas can use it.

Calculators run at most once per employee-month; values written by field
columns stick, so a calculator that runs later sees them and cannot overwrite
them.
"""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from payroll_engine.common.money import D, num, round2
from payroll_engine.models.payroll.configuration import normalize_output_columns
from payroll_engine.services import requirements as req
from payroll_engine.services.attendance_deduction import (
    calculate_leave_deduction,
    combined_attendance_deduction,
    resolve_attendance_rules,
    resolve_permission_rules,
)
from payroll_engine.services.attendance_normalizer import AttendanceSummary
from payroll_engine.services.basic_pay import calculate_basic_pay
from payroll_engine.services.components import (
    build_base_rules,
    compute_allowances,
    compute_other_deductions,
    include_missing_flag,
    merge_with_overrides,
)
from payroll_engine.services.field_paths import (
    base_context,
    context_keys_for_header,
    get_paid_and_total_days_from_context,
    get_value_by_path,
    set_value_by_path,
)
from payroll_engine.services.formula import evaluate
from payroll_engine.services.overtime import calculate_ot_pay, resolve_ot_settings
from payroll_engine.services.payslip_service import finalize_net, total_deductions
from payroll_engine.services.recoveries import calculate_arrears, calculate_loan_advance
from payroll_engine.services.rule_resolver import RuleSnapshot
from payroll_engine.services.statutory import calculate_statutory_deductions

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensationProfile:
    gross_salary: float
    apply_esi: bool = True
    apply_pf: bool = True
    apply_profession_tax: bool = True
    apply_attendance_deduction: bool = True
    deduct_late_in: bool = True
    deduct_early_out: bool = True
    deduct_permission: bool = True
    deduct_absent: bool = True
    allowance_overrides: Tuple[Mapping[str, Any], ...] = ()
    deduction_overrides: Tuple[Mapping[str, Any], ...] = ()
    paid_leaves: float = 0

    @classmethod
    def from_employee(cls, emp) -> "CompensationProfile":
        def flag(name):
            v = getattr(emp, name, None)
            return True if v is None else bool(v)

        return cls(
            gross_salary=num(emp.gross_salary),
            apply_esi=flag("apply_esi"),
            apply_pf=flag("apply_pf"),
            apply_profession_tax=flag("apply_profession_tax"),
            apply_attendance_deduction=flag("apply_attendance_deduction"),
            deduct_late_in=flag("deduct_late_in"),
            deduct_early_out=flag("deduct_early_out"),
            deduct_permission=flag("deduct_permission"),
            deduct_absent=flag("deduct_absent"),
            allowance_overrides=tuple(emp.allowance_overrides or ()),
            deduction_overrides=tuple(emp.deduction_overrides or ()),
            paid_leaves=num(emp.paid_leaves),
        )

    def flags(self) -> Dict[str, bool]:
        return {
            "applyESI": self.apply_esi,
            "applyPF": self.apply_pf,
            "applyProfessionTax": self.apply_profession_tax,
            "applyAttendanceDeduction": self.apply_attendance_deduction,
            "deductLateIn": self.deduct_late_in,
            "deductEarlyOut": self.deduct_early_out,
            "deductPermission": self.deduct_permission,
            "deductAbsent": self.deduct_absent,
        }


@dataclass
class CalculationInputs:
    """Everything the pipeline reads; no database access happens past this point."""
    month: str                                   # YYYY-MM
    profile: CompensationProfile
    attendance: AttendanceSummary
    snapshot: RuleSnapshot
    config: Mapping[str, Any]                    # PayrollConfiguration.as_dict()
    employee: Mapping[str, Any] = field(default_factory=dict)
    department_id: Optional[int] = None
    division_id: Optional[int] = None
    recoveries: Sequence[Mapping[str, Any]] = ()
    arrears: Sequence[Mapping[str, Any]] = ()


@dataclass
class RunContext:
    """Mutable state of one employee-month calculation."""
    inputs: CalculationInputs
    record: Dict[str, Any]
    results: Dict[str, Any] = field(default_factory=dict)        # calculator kind -> raw result
    column_context: Dict[str, float] = field(default_factory=dict)
    pinned: Dict[str, Any] = field(default_factory=dict)         # field path -> value set by a column

    def has_run(self, kind: str) -> bool:
        return kind in self.results


@dataclass
class PipelineResult:
    record: Dict[str, Any]
    row: Dict[str, Any]
    calculators: Tuple[str, ...]


EMPLOYEE_FIELDS = (
    "emp_no", "name", "department", "division", "designation", "location",
    "bank_account_no", "bank_name", "payment_mode", "date_of_joining",
    "pf_number", "esi_number",
)


def build_record(inputs: CalculationInputs) -> Dict[str, Any]:
    """Payslip skeleton: header fields, attendance, empty money blocks."""
    year, mon = (int(p) for p in inputs.month.split("-"))
    emp = inputs.employee or {}
    employee = {k: emp.get(k) if emp.get(k) is not None else "" for k in EMPLOYEE_FIELDS}
    for k in ("name", "department", "division", "designation"):
        employee[k] = employee[k] or "N/A"
    return {
        "month": f"{calendar.month_name[mon]} {year}",
        "monthNumber": mon,
        "year": year,
        "employee": employee,
        "attendance": inputs.attendance.as_record(),
        "earnings": {},
        "deductions": {},
        "loanAdvance": {},
        "arrears": {"arrearsAmount": 0, "arrearsSettlements": []},
        "netSalary": 0,
        "roundOff": 0,
        "status": "calculated",
    }


# ---------- calculators ----------

def _proration_attendance(ctx: RunContext) -> Dict[str, Any]:
    a = ctx.record.get("attendance") or {}
    data = {
        "presentDays": num(a.get("presentDays")),
        "paidLeaveDays": num(a.get("paidLeaveDays")),
        "odDays": num(a.get("odDays")),
        "monthDays": num(a.get("totalDaysInMonth")) or 30,
    }
    paid, total = get_paid_and_total_days_from_context(ctx.column_context, ctx.inputs.config)
    if paid is not None:
        data["totalPaidDays"] = paid
        data["totalDaysInMonth"] = total if total else data["monthDays"]
    return data


def _earned(record) -> float:
    e = record.get("earnings") or {}
    return num(e.get("earnedSalary") if e.get("earnedSalary") is not None else e.get("payableAmount"))


def _calc_basic(ctx: RunContext):
    res = calculate_basic_pay(ctx.inputs.profile.gross_salary, ctx.inputs.attendance)
    e = ctx.record.setdefault("earnings", {})
    e["basicPay"] = res.basic_pay
    e["perDayBasicPay"] = res.per_day_basic_pay
    e["earnedSalary"] = res.base_pay_for_work
    e["payableAmount"] = res.payable_amount
    e["incentive"] = res.incentive
    a = ctx.record.setdefault("attendance", {})
    a["extraDays"] = res.extra_days
    a["totalPaidDays"] = res.physical_units
    a["paidDays"] = res.paid_days
    a["earnedSalary"] = res.base_pay_for_work
    return res


def _calc_ot(ctx: RunContext):
    i = ctx.inputs
    res = calculate_ot_pay(i.attendance.ot_hours, resolve_ot_settings(i.snapshot, i.department_id, i.division_id))
    e = ctx.record.setdefault("earnings", {})
    e["otPay"] = res["otPay"]
    e["otHours"] = res["otHours"]
    e["otRatePerHour"] = res["otPayPerHour"]
    return res


def _resolved_rules(ctx: RunContext, category: str, overrides) -> List[Dict[str, Any]]:
    i = ctx.inputs
    base = build_base_rules(i.snapshot, category, i.department_id, i.division_id)
    normalized = [{**o, "category": category} for o in overrides if o and (o.get("masterId") or o.get("name"))]
    return merge_with_overrides(base, normalized, include_missing_flag(i.snapshot, i.department_id, i.division_id))


def _calc_allowances(ctx: RunContext):
    e = ctx.record.setdefault("earnings", {})
    earned = _earned(ctx.record)
    gross_so_far = D(earned) + D(e.get("otPay"))
    rules = _resolved_rules(ctx, "allowance", ctx.inputs.profile.allowance_overrides)
    res = compute_allowances(rules, earned, float(gross_so_far), _proration_attendance(ctx))
    e["allowances"] = res["items"]
    e["totalAllowances"] = res["total"]
    e["allowancesCumulative"] = res["total"]
    e["grossSalary"] = round2(gross_so_far + D(res["total"]))
    return res


def _calc_attendance_deduction(ctx: RunContext):
    i = ctx.inputs
    e = ctx.record.get("earnings") or {}
    a = ctx.record.setdefault("attendance", {})
    flags = i.profile.flags()
    res = combined_attendance_deduction(
        a, flags,
        resolve_attendance_rules(i.snapshot, i.department_id, i.division_id),
        resolve_permission_rules(i.snapshot, i.department_id, i.division_id),
        e.get("perDayBasicPay"),
    )
    d = ctx.record.setdefault("deductions", {})
    d["attendanceDeduction"] = res["attendanceDeduction"]
    d["permissionDeduction"] = res["permissionDeduction"]
    d["attendanceDeductionBreakdown"] = res["breakdown"]
    a["attendanceDeductionDays"] = res["daysDeducted"]

    if flags["deductAbsent"]:
        leave = calculate_leave_deduction(
            a.get("totalLeaveDays"), a.get("paidLeaveDays"), a.get("totalDaysInMonth"), e.get("basicPay"),
        )
        d["leaveDeduction"] = leave["leaveDeduction"]
        d["leaveDeductionBreakdown"] = leave["breakdown"]
    else:
        d["leaveDeduction"] = 0
    return res


def _calc_other_deductions(ctx: RunContext):
    e = ctx.record.get("earnings") or {}
    rules = _resolved_rules(ctx, "deduction", ctx.inputs.profile.deduction_overrides)
    res = compute_other_deductions(rules, _earned(ctx.record), e.get("grossSalary"), _proration_attendance(ctx))
    d = ctx.record.setdefault("deductions", {})
    d["otherDeductions"] = res["items"]
    d["totalOtherDeductions"] = res["total"]
    return res


def _calc_statutory(ctx: RunContext):
    i = ctx.inputs
    e = ctx.record.get("earnings") or {}
    paid, total = get_paid_and_total_days_from_context(ctx.column_context, i.config)
    res = calculate_statutory_deductions(
        i.snapshot.statutory,
        basic_pay=e.get("basicPay"),
        flags=i.profile.flags(),
        paid_days=paid,
        total_days=total,
    )
    d = ctx.record.setdefault("deductions", {})
    d["statutoryDeductions"] = res["breakdown"]
    d["statutoryCumulative"] = res["totalEmployeeShare"]
    d["totalStatutoryEmployee"] = res["totalEmployeeShare"]
    d["totalStatutoryEmployer"] = res["totalEmployerShare"]
    return res


def _calc_loan_advance(ctx: RunContext):
    e = ctx.record.get("earnings") or {}
    res = calculate_loan_advance(ctx.inputs.recoveries, e.get("payableAmount"))
    la = ctx.record.setdefault("loanAdvance", {})
    la.update({
        "totalEMI": res["totalEMI"],
        "emiBreakdown": res["emiBreakdown"],
        "advanceDeduction": res["advanceDeduction"],
        "advanceBreakdown": res["advanceBreakdown"],
        "remainingBalance": res["remainingBalance"],
    })
    return res


def _calc_arrears(ctx: RunContext):
    res = calculate_arrears(ctx.inputs.arrears)
    ctx.record["arrears"] = res
    return res


def _calc_total_deductions(ctx: RunContext):
    total = total_deductions(ctx.record)
    d = ctx.record.setdefault("deductions", {})
    d["deductionsCumulative"] = total
    d["totalDeductions"] = total
    return total


def _calc_net(ctx: RunContext):
    return finalize_net(ctx.record)


CALCULATORS: Dict[str, Callable[[RunContext], Any]] = {
    req.BASIC: _calc_basic,
    req.OT: _calc_ot,
    req.ALLOWANCES: _calc_allowances,
    req.ATTENDANCE_DEDUCTION: _calc_attendance_deduction,
    req.OTHER_DEDUCTIONS: _calc_other_deductions,
    req.STATUTORY: _calc_statutory,
    req.LOAN_ADVANCE: _calc_loan_advance,
    req.ARREARS: _calc_arrears,
    req.TOTAL_DEDUCTIONS: _calc_total_deductions,
    req.NET: _calc_net,
}


def _reapply_pinned(ctx: RunContext) -> None:
    for path, value in ctx.pinned.items():
        set_value_by_path(ctx.record, path, value)


def ensure(ctx: RunContext, *kinds: str) -> None:
    """Run ``kinds`` and everything they depend on, each at most once."""
    for kind in req.ordered(req.close(kinds)):
        if ctx.has_run(kind):
            continue
        ctx.results[kind] = CALCULATORS[kind](ctx)
        _reapply_pinned(ctx)


# ---------- column resolution ----------

def _as_column_number(val: Any):
    if isinstance(val, bool):
        return float(val)
    if isinstance(val, (int, float, Decimal)):
        return val
    if isinstance(val, str):
        try:
            return float(val.strip())
        except ValueError:
            return 0
    return 0


def resolve_field_value(ctx: RunContext, field_path: Any):
    path = (field_path or "").strip() if isinstance(field_path, str) else ""
    if not path:
        return 0

    if path.startswith("employee."):
        return (ctx.record.get("employee") or {}).get(path[len("employee."):], "")

    kind = req.kind_for_field(path)
    if kind and path not in ctx.pinned:
        ensure(ctx, kind)

    val = get_value_by_path(ctx.record, path)
    if path.startswith("attendance."):
        return num(val)
    if val == "":
        return ""
    return _as_column_number(val)


def _pinnable(ctx: RunContext, path: str) -> bool:
    """A field column's value sticks only for scalar paths whose calculator has already run."""
    if not path or ":" in path or path.startswith("employee."):
        return False
    kind = req.kind_for_field(path)
    if kind and not ctx.has_run(kind):
        return False
    # missing values and nested blocks read as ''
    return get_value_by_path(ctx.record, path) != ""


def _formula_value(ctx: RunContext, formula: Any) -> float:
    if not formula:
        return 0
    needed = req.kinds_for_formula(formula, known=ctx.column_context.keys())
    if needed:
        ensure(ctx, *needed)
    names = {**base_context(ctx.record), **ctx.column_context}
    return evaluate(formula, names)


def _publish(ctx: RunContext, header: str, val: Any) -> None:
    n = num(val)
    for key in context_keys_for_header(header):
        ctx.column_context[key] = n


def execute(inputs: CalculationInputs) -> PipelineResult:
    columns = sorted(
        normalize_output_columns(inputs.config.get("outputColumns") or []),
        key=lambda c: num(c.get("order")),
    )
    ctx = RunContext(inputs=inputs, record=build_record(inputs))
    row: Dict[str, Any] = {}

    for col in columns:
        header = col.get("header") or "Column"
        if col.get("source") == "formula":
            val = _formula_value(ctx, col.get("formula"))
        else:
            path = col.get("field") or ""
            val = resolve_field_value(ctx, path)
            if _pinnable(ctx, path):
                set_value_by_path(ctx.record, path, val)
                ctx.pinned[path] = val
        row[header] = val
        _publish(ctx, header, val)

    finalize_net(ctx.record, pinned=ctx.pinned)
    log.debug("payroll %s: calculators %s", inputs.month, ",".join(req.ordered(ctx.results)))
    return PipelineResult(record=ctx.record, row=row, calculators=req.ordered(ctx.results))
