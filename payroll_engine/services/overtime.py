# payroll_engine/services/overtime.py
from __future__ import annotations

from typing import Any, Dict

from payroll_engine.common.money import D, num, round2
from payroll_engine.services.rule_resolver import RuleSnapshot

OVERTIME_KEY = "overtime"


def resolve_ot_settings(snapshot: RuleSnapshot, department_id=None, division_id=None) -> Dict[str, float]:
    s = snapshot.merged_setting(OVERTIME_KEY, department_id, division_id)
    return {
        "otPayPerHour": num(s.get("otPayPerHour")),
        "minOTHours": num(s.get("minOTHours")),
    }


def calculate_ot_pay(ot_hours: Any, settings: Dict[str, float]) -> Dict[str, Any]:
    """OT pay = hours x department rate, nothing below the minimum OT hours."""
    hours = num(ot_hours)
    if hours < 0:
        hours = 0.0
    rate = num(settings.get("otPayPerHour"))
    min_hours = num(settings.get("minOTHours"))

    eligible = hours >= min_hours
    eligible_hours = hours if eligible else 0.0
    return {
        "otHours": hours,
        "eligibleOTHours": eligible_hours,
        "otPayPerHour": rate,
        "minOTHours": min_hours,
        "otPay": round2(D(eligible_hours) * D(rate)),
        "isEligible": eligible,
    }
