# payroll_engine/services/components.py
"""
Allowance and deduction line items.

Base rules come from the rule masters (division+department, department, then
global rule). Employee overrides replace a matching base rule, matched by
masterId or else by case-insensitive name. Amounts are computed once per
employee-month from the merged rules.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from payroll_engine.common.money import D, round2
from payroll_engine.services.rule_resolver import RuleSnapshot

log = logging.getLogger(__name__)

INCLUDE_MISSING_KEY = "include_missing_components"


def rule_base(rule: Mapping[str, Any]) -> str:
    base = (rule.get("percentageBase") or rule.get("base") or "basic")
    return "gross" if str(base).lower() == "gross" else "basic"


def effective_paid_days(attendance: Optional[Mapping[str, Any]]):
    """(paid_days, total_days) used for proration, or (None, None) when unknown."""
    if not attendance:
        return None, None
    total_paid = attendance.get("totalPaidDays")
    total_days = attendance.get("totalDaysInMonth")
    if total_paid is not None and total_days:
        return D(total_paid), D(total_days)
    paid = D(attendance.get("presentDays")) + D(attendance.get("paidLeaveDays")) + D(attendance.get("odDays"))
    month_days = attendance.get("monthDays")
    return paid, D(month_days if month_days is not None else 30)


def calculate_component_amount(
    rule: Optional[Mapping[str, Any]],
    basic_pay,
    gross_salary=None,
    attendance: Optional[Mapping[str, Any]] = None,
) -> float:
    """
    Fixed: ``amount``, prorated to ``amount * paid / total`` when
    ``basedOnPresentDays`` is set and attendance is given.
    Percentage: ``percentage`` of gross (when the rule's base is gross and a
    gross is known) or of basic. min/max clamps apply last.
    """
    if not rule:
        return 0.0

    amount = Decimal("0")
    kind = (rule.get("type") or "fixed").lower()
    if kind == "fixed":
        amount = D(rule.get("amount"))
        if rule.get("basedOnPresentDays") and attendance:
            paid, total = effective_paid_days(attendance)
            if paid is not None and total and total > 0:
                amount = amount * paid / total
    elif kind == "percentage":
        gross = D(gross_salary) if gross_salary is not None else Decimal("0")
        base = gross if rule_base(rule) == "gross" and gross else D(basic_pay)
        amount = base * D(rule.get("percentage")) / Decimal("100")

    lo = rule.get("minAmount")
    hi = rule.get("maxAmount")
    if lo is not None and lo != "" and amount < D(lo):
        amount = D(lo)
    if hi is not None and hi != "" and amount > D(hi):
        amount = D(hi)
    return round2(amount)


# deductions share the allowance arithmetic
calculate_allowance_amount = calculate_component_amount
calculate_deduction_amount = calculate_component_amount


def include_missing_flag(snapshot: RuleSnapshot, department_id=None, division_id=None) -> bool:
    """Whether base components without an employee override are kept (default True)."""
    value = snapshot.setting(INCLUDE_MISSING_KEY, department_id, division_id)
    if value is None:
        return True
    return bool(value)


def build_base_rules(snapshot: RuleSnapshot, category: str, department_id=None, division_id=None) -> List[Dict[str, Any]]:
    """Resolved rule per active master of ``category`` for the scope."""
    out: List[Dict[str, Any]] = []
    for master in snapshot.masters_for(category):
        rule = master.resolve_rule(department_id, division_id)
        if rule is None:
            continue
        base = rule_base(rule)
        rule.pop("percentageBase", None)
        out.append({
            **rule,
            "base": base,
            "masterId": master.id,
            "name": master.name,
            "category": category,
            "type": (rule.get("type") or "fixed").lower(),
            "basedOnPresentDays": bool(rule.get("basedOnPresentDays")),
        })
    return out


def _merge_key(item: Mapping[str, Any]) -> str:
    if item.get("masterId") not in (None, ""):
        return f"id:{item['masterId']}"
    return f"name:{str(item.get('name') or '').strip().lower()}"


def merge_with_overrides(
    base: Sequence[Mapping[str, Any]],
    overrides: Optional[Sequence[Mapping[str, Any]]],
    include_missing: bool,
) -> List[Dict[str, Any]]:
    """
    Employee overrides first (replacing the matching base rule, or added as
    new items), then, when ``include_missing``, base rules nobody overrode.
    """
    overrides = [o for o in (overrides or []) if o and (o.get("masterId") or o.get("name"))]
    if not overrides:
        return [dict(b) for b in base] if include_missing else []

    by_key = {_merge_key(b): b for b in base}
    # name matches are case-insensitive even when the base item carries a masterId
    by_name = {str(b.get("name") or "").strip().lower(): b for b in base}

    result: List[Dict[str, Any]] = []
    matched = set()
    for ov in overrides:
        key = _merge_key(ov)
        hit = by_key.get(key)
        if hit is None and not ov.get("masterId"):
            hit = by_name.get(str(ov.get("name") or "").strip().lower())
        amount = ov.get("amount")
        if amount is None:
            amount = ov.get("overrideAmount")
        fields = {k: v for k, v in ov.items() if v is not None and k != "overrideAmount"}
        merged = {**(hit or {}), **fields, "amount": amount if amount is not None else 0, "isEmployeeOverride": True}
        if hit is not None:
            merged["masterId"] = ov.get("masterId") or hit.get("masterId")
            merged["name"] = hit.get("name") or ov.get("name")
            matched.add(_merge_key(hit))
        merged["base"] = rule_base(merged)
        merged["type"] = str(merged.get("type") or "fixed").lower()
        result.append(merged)

    if include_missing:
        result.extend(dict(b) for b in base if _merge_key(b) not in matched)
    return result


def compute_allowances(
    rules: Sequence[Mapping[str, Any]],
    earned_salary,
    gross_so_far,
    attendance: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Two passes: basic-based and fixed items first, then gross-based
    percentages against gross including the first pass.
    """
    amounts: Dict[int, float] = {}
    first_total = Decimal("0")
    for i, r in enumerate(rules):
        if r.get("type") == "percentage" and r.get("base") == "gross":
            continue
        amounts[i] = calculate_component_amount(r, earned_salary, gross_so_far, attendance)
        first_total += D(amounts[i])

    gross_for_pct = D(gross_so_far) + first_total
    for i, r in enumerate(rules):
        if i not in amounts:
            amounts[i] = calculate_component_amount(r, earned_salary, gross_for_pct, attendance)

    items = []
    for i, r in enumerate(rules):
        if not r.get("name"):
            continue
        items.append({
            "masterId": r.get("masterId"),
            "name": r["name"],
            "amount": amounts[i],
            "type": r.get("type") or "fixed",
            "base": r.get("base") or "basic",
            "isEmployeeOverride": bool(r.get("isEmployeeOverride")),
        })
    total = round2(sum((D(x["amount"]) for x in items), Decimal("0")))
    return {"items": items, "total": total}


def compute_other_deductions(
    rules: Sequence[Mapping[str, Any]],
    earned_salary,
    gross_salary,
    attendance: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    items = []
    for r in rules:
        if not r.get("name"):
            continue
        amount = calculate_component_amount(r, earned_salary, gross_salary, attendance)
        if amount <= 0:
            continue
        items.append({
            "masterId": r.get("masterId"),
            "name": r["name"],
            "amount": amount,
            "type": r.get("type") or "fixed",
            "base": r.get("base") or "basic",
            "isEmployeeOverride": bool(r.get("isEmployeeOverride")),
        })
    total = round2(sum((D(x["amount"]) for x in items), Decimal("0")))
    return {"items": items, "total": total}
