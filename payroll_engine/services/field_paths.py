# payroll_engine/services/field_paths.py
"""Field-path lookups into the payslip record and the formula name context."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from payroll_engine.common.money import num

_WS = re.compile(r"\s+")
_NON_KEY = re.compile(r"[^a-z0-9_]")


def header_to_key(header: Any) -> str:
    """'Basic Pay' -> 'basic_pay'; headers with nothing usable become 'col'."""
    if not header or not isinstance(header, str):
        return ""
    key = _NON_KEY.sub("", _WS.sub("_", header.strip().lower()))
    return key or "col"


def context_keys_for_header(header: Any) -> List[str]:
    key = header_to_key(header)
    if not key:
        return []
    keys = [key]
    if key == "extra_days":
        keys.append("extradays")
    if key == "monthdays":
        keys.extend(["month_days", "monthday"])
    return keys


# basePath:key forms for per-item lookups
_ITEM_LOOKUPS = {
    "earnings.allowanceAmount": (("earnings", "allowances"), ("name",), "amount"),
    "deductions.otherDeductionAmount": (("deductions", "otherDeductions"), ("name",), "amount"),
    "deductions.statutoryAmount": (("deductions", "statutoryDeductions"), ("code", "name"), "employeeAmount"),
}


def _item_amount(obj: Mapping[str, Any], base_path: str, key: str):
    container, match_on, amount_field = _ITEM_LOOKUPS[base_path]
    items = obj
    for part in container:
        items = items.get(part) if isinstance(items, Mapping) else None
    if not isinstance(items, list):
        return 0
    for item in items:
        if not isinstance(item, Mapping):
            continue
        if any(str(item.get(f, "")).strip() == key for f in match_on):
            amount = item.get(amount_field)
            return amount if isinstance(amount, (int, float)) and not isinstance(amount, bool) else 0
    return 0


def get_value_by_path(obj: Optional[Mapping[str, Any]], path: Any):
    """
    Resolve ``path`` in the record.

    - ``earnings.allowanceAmount:<name>``, ``deductions.otherDeductionAmount:<name>``
      and ``deductions.statutoryAmount:<code or name>`` return the item amount, 0 when absent.
    - Plain dot paths return the value; missing values and nested objects return ''.
    """
    if not path or not isinstance(path, str):
        return ""
    trimmed = path.strip()
    base_path, sep, key = trimmed.partition(":")
    if sep and base_path.strip() in _ITEM_LOOKUPS and key.strip():
        return _item_amount(obj or {}, base_path.strip(), key.strip())

    val: Any = obj
    for part in (p for p in trimmed.split(".") if p):
        if val is None:
            return ""
        val = val.get(part) if isinstance(val, Mapping) else None
    if val is None:
        return ""
    if isinstance(val, Mapping):
        return ""
    return val


def set_value_by_path(obj: Dict[str, Any], path: Any, value: Any) -> None:
    if not path or not isinstance(path, str):
        return
    parts = [p for p in path.strip().split(".") if p]
    if not parts:
        return
    cur = obj
    for part in parts[:-1]:
        if not isinstance(cur.get(part), dict):
            cur[part] = {}
        cur = cur[part]
    cur[parts[-1]] = value


def base_context(record: Mapping[str, Any]) -> Dict[str, float]:
    """Fixed names every formula can read, derived from the record as it stands."""
    e = record.get("earnings") or {}
    d = record.get("deductions") or {}
    a = record.get("attendance") or {}
    la = record.get("loanAdvance") or {}
    ar = record.get("arrears") or {}

    month_days = num(a.get("totalDaysInMonth")) or 30
    ctx = {
        "basicPay": num(e.get("basicPay")),
        "grossSalary": num(e.get("grossSalary")),
        "netSalary": num(record.get("netSalary")),
        "totalDeductions": num(d.get("totalDeductions")),
        "roundOff": num(record.get("roundOff")),
        "presentDays": num(a.get("presentDays")),
        "payableShifts": num(a.get("payableShifts")),
        "monthDays": month_days,
        "otPay": num(e.get("otPay")),
        "incentive": num(e.get("incentive")),
        "earnedSalary": num(e.get("earnedSalary") if e.get("earnedSalary") is not None else e.get("payableAmount")),
        "totalAllowances": num(e.get("totalAllowances")),
        "allowancesCumulative": num(e.get("allowancesCumulative")),
        "deductionsCumulative": num(d.get("deductionsCumulative")),
        "statutoryCumulative": num(d.get("statutoryCumulative")),
        "advanceDeduction": num(la.get("advanceDeduction")),
        "loanEMI": num(la.get("totalEMI")),
        "perDayBasicPay": num(e.get("perDayBasicPay")),
        "attendanceDeduction": num(d.get("attendanceDeduction")),
        "permissionDeduction": num(d.get("permissionDeduction")),
        "leaveDeduction": num(d.get("leaveDeduction")),
        "otherDeductions": num(d.get("totalOtherDeductions")),
        "arrearsAmount": num(ar.get("arrearsAmount")),
        "extraDays": num(a.get("extraDays")),
        "paidLeaveDays": num(a.get("paidLeaveDays")),
        "odDays": num(a.get("odDays")),
        "absentDays": num(a.get("absentDays")),
        "weeklyOffs": num(a.get("weeklyOffs")),
        "holidays": num(a.get("holidays")),
        "lopDays": num(a.get("lopDays")),
        "elUsedInPayroll": num(a.get("elUsedInPayroll")),
        "attendanceDeductionDays": num(a.get("attendanceDeductionDays")),
    }
    # snake_case aliases for formula authors
    ctx.update({
        "basic_pay": ctx["basicPay"],
        "month_days": month_days,
        "monthdays": month_days,
        "present_days": ctx["presentDays"],
        "week_offs": ctx["weeklyOffs"],
        "paidleaves": ctx["paidLeaveDays"],
        "el": ctx["elUsedInPayroll"],
        "salary": ctx["basicPay"],
        "extradays": ctx["extraDays"],
        "statutory_deductions": ctx["statutoryCumulative"],
        "net_salary": ctx["netSalary"],
        "extra_hours_pay": ctx["otPay"],
        "total_allowances": ctx["totalAllowances"],
        "gross_salary": ctx["grossSalary"],
        "salary_advance": ctx["advanceDeduction"],
        "loan_recovery": ctx["loanEMI"],
        "remaining_balance": num(la.get("remainingBalance")),
        "attendance_deduction": ctx["attendanceDeduction"],
        "round_off": ctx["roundOff"],
    })
    return ctx


# Conventional keys used when no proration columns are declared
AUTO_PAID_DAYS_KEY = "paid_days"
AUTO_TOTAL_DAYS_KEY = "month_days"


def _positive_or_none(value) -> Optional[float]:
    if value is None or value == "":
        return None
    v = num(value)
    return v if v >= 0 else None


def get_paid_and_total_days_from_context(
    column_context: Optional[Mapping[str, Any]], config: Optional[Mapping[str, Any]]
) -> Tuple[Optional[float], Optional[float]]:
    """
    Paid days / total days for proration, taken from earlier column values.

    Declared headers (``statutoryProratePaidDaysColumnHeader`` /
    ``statutoryProrateTotalDaysColumnHeader``) win; when none is declared the
    ``paid_days`` and ``month_days`` keys are used if present.
    """
    if not column_context:
        return None, None
    config = config or {}
    paid_header = config.get("statutoryProratePaidDaysColumnHeader")
    total_header = config.get("statutoryProrateTotalDaysColumnHeader")

    if paid_header or total_header:
        paid_key = header_to_key(paid_header) if paid_header else ""
        total_key = header_to_key(total_header) if total_header else ""
        paid = _positive_or_none(column_context.get(paid_key)) if paid_key else None
        total = _positive_or_none(column_context.get(total_key)) if total_key else None
        return paid, total

    return (
        _positive_or_none(column_context.get(AUTO_PAID_DAYS_KEY)),
        _positive_or_none(column_context.get(AUTO_TOTAL_DAYS_KEY)),
    )
