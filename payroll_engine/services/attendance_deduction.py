# payroll_engine/services/attendance_deduction.py
"""
Attendance-driven deductions: late-in/early-out, permissions, unpaid leave.

Late-ins and early-outs are counted together. Every full ``threshold`` of
occurrences deducts a half day, a full day, or a custom amount; in
``proportional`` mode the remainder deducts a matching fraction, in
``floor`` mode it is ignored.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping

from payroll_engine.common.money import D, num, round2
from payroll_engine.services.rule_resolver import RuleSnapshot

log = logging.getLogger(__name__)

ATTENDANCE_RULES_KEY = "attendance_deduction"
PERMISSION_RULES_KEY = "permission_deduction"

DEDUCTION_TYPES = ("half_day", "full_day", "custom_amount")


def resolve_attendance_rules(snapshot: RuleSnapshot, department_id=None, division_id=None) -> Dict[str, Any]:
    r = snapshot.merged_setting(ATTENDANCE_RULES_KEY, department_id, division_id)
    return {
        "combinedCountThreshold": r.get("combinedCountThreshold"),
        "deductionType": r.get("deductionType"),
        "deductionAmount": r.get("deductionAmount"),
        "calculationMode": r.get("calculationMode"),
    }


def resolve_permission_rules(snapshot: RuleSnapshot, department_id=None, division_id=None) -> Dict[str, Any]:
    r = snapshot.merged_setting(PERMISSION_RULES_KEY, department_id, division_id)
    return {
        "countThreshold": r.get("countThreshold"),
        "deductionType": r.get("deductionType"),
        "deductionAmount": r.get("deductionAmount"),
        "calculationMode": r.get("calculationMode"),
        "freeAllowedPerMonth": r.get("freeAllowedPerMonth") or 0,
    }


def calculate_days_to_deduct(multiplier, remainder, threshold, deduction_type, custom_amount, per_day_basic_pay, calculation_mode) -> float:
    multiplier = D(multiplier)
    remainder = D(remainder)
    threshold = D(threshold)
    per_day = D(per_day_basic_pay)
    proportional = calculation_mode == "proportional" and remainder > 0 and threshold > 0

    days = Decimal("0")
    if deduction_type == "half_day":
        days = multiplier * Decimal("0.5")
        if proportional:
            days += remainder / threshold * Decimal("0.5")
    elif deduction_type == "full_day":
        days = multiplier
        if proportional:
            days += remainder / threshold
    elif deduction_type == "custom_amount" and custom_amount and per_day > 0:
        amount = D(custom_amount)
        days = multiplier * amount / per_day
        if proportional:
            days += remainder / threshold * amount / per_day
    return round2(days)


def _count_deduction(count, threshold, rules: Mapping[str, Any], per_day) -> float:
    if not threshold or count < threshold:
        return 0.0
    t = int(threshold)
    return calculate_days_to_deduct(
        int(count) // t, int(count) % t, t,
        rules.get("deductionType"), rules.get("deductionAmount"), per_day, rules.get("calculationMode"),
    )


def calculate_attendance_deduction(
    late_count: Any,
    early_out_count: Any,
    rules: Mapping[str, Any],
    per_day_basic_pay: Any,
) -> Dict[str, Any]:
    late = int(num(late_count))
    early = int(num(early_out_count))
    combined = late + early
    breakdown = {
        "lateInsCount": late,
        "earlyOutsCount": early,
        "combinedCount": combined,
        "daysDeducted": 0,
        "deductionType": None,
        "calculationMode": None,
    }
    threshold = rules.get("combinedCountThreshold")
    if not threshold or not rules.get("deductionType") or not rules.get("calculationMode"):
        return {"attendanceDeduction": 0, "breakdown": breakdown}

    days = _count_deduction(combined, threshold, rules, per_day_basic_pay)
    breakdown.update({
        "daysDeducted": days,
        "deductionType": rules.get("deductionType"),
        "calculationMode": rules.get("calculationMode"),
    })
    return {"attendanceDeduction": round2(D(days) * D(per_day_basic_pay)), "breakdown": breakdown}


def calculate_permission_deduction(permission_count: Any, rules: Mapping[str, Any], per_day_basic_pay: Any) -> Dict[str, Any]:
    total = int(num(permission_count))
    free = int(num(rules.get("freeAllowedPerMonth")))
    eligible = max(0, total - free)
    breakdown = {
        "permissionCount": total,
        "eligiblePermissionCount": eligible,
        "daysDeducted": 0,
        "deductionType": None,
        "calculationMode": None,
    }
    threshold = rules.get("countThreshold")
    if not threshold or not rules.get("deductionType") or not rules.get("calculationMode"):
        return {"permissionDeduction": 0, "breakdown": breakdown}

    days = _count_deduction(eligible, threshold, rules, per_day_basic_pay)
    breakdown.update({
        "daysDeducted": days,
        "deductionType": rules.get("deductionType"),
        "calculationMode": rules.get("calculationMode"),
    })
    return {"permissionDeduction": round2(D(days) * D(per_day_basic_pay)), "breakdown": breakdown}


def calculate_leave_deduction(total_leaves: Any, paid_leaves: Any, total_days_in_month: Any, basic_pay: Any) -> Dict[str, Any]:
    """Unpaid leave share of the monthly basic."""
    unpaid = max(Decimal("0"), D(total_leaves) - D(paid_leaves))
    days = D(total_days_in_month)
    amount = unpaid / days * D(basic_pay) if days > 0 else Decimal("0")
    return {
        "leaveDeduction": round2(amount),
        "breakdown": {
            "totalLeaves": num(total_leaves),
            "paidLeaves": num(paid_leaves),
            "unpaidLeaves": float(unpaid),
            "daysDeducted": float(unpaid),
        },
    }


def combined_attendance_deduction(
    attendance: Mapping[str, Any],
    profile_flags: Mapping[str, bool],
    attendance_rules: Mapping[str, Any],
    permission_rules: Mapping[str, Any],
    per_day_basic_pay: Any,
) -> Dict[str, Any]:
    """
    Late/early deduction plus permission deduction, honouring the employee's
    deduction preferences. The total is what lands in ``deductions.attendanceDeduction``.
    """
    if not profile_flags.get("applyAttendanceDeduction", True):
        return {
            "attendanceDeduction": 0,
            "permissionDeduction": 0,
            "daysDeducted": 0,
            "breakdown": {"skipped": "employee preference"},
        }

    late = attendance.get("lateCount", 0) if profile_flags.get("deductLateIn", True) else 0
    early = attendance.get("earlyOutCount", 0) if profile_flags.get("deductEarlyOut", True) else 0
    att = calculate_attendance_deduction(late, early, attendance_rules, per_day_basic_pay)

    if profile_flags.get("deductPermission", True):
        perm = calculate_permission_deduction(attendance.get("permissionCount", 0), permission_rules, per_day_basic_pay)
    else:
        perm = {"permissionDeduction": 0, "breakdown": {"skipped": "employee preference"}}

    days = D(att["breakdown"]["daysDeducted"]) + D(perm["breakdown"].get("daysDeducted", 0))
    return {
        "attendanceDeduction": round2(D(att["attendanceDeduction"]) + D(perm["permissionDeduction"])),
        "permissionDeduction": perm["permissionDeduction"],
        "daysDeducted": round2(days),
        "breakdown": {"lateEarly": att["breakdown"], "permission": perm["breakdown"]},
    }
