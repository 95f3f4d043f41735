# payroll_engine/services/statutory.py
"""
ESI / PF / Profession Tax.

Only the employee share is deducted from pay; the employer share is carried
for reporting. When both paid days and total days are supplied every amount
is scaled by ``clamp(paid / total, 0, 1)``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from payroll_engine.common.money import D, round2
from payroll_engine.models.payroll.stat_config import DEFAULT_ESI, DEFAULT_PF, DEFAULT_PT

PT_OPEN_MAX = Decimal("1e9")


def _prorate_ratio(paid_days, total_days) -> Optional[Decimal]:
    if paid_days is None or total_days is None:
        return None
    paid, total = D(paid_days), D(total_days)
    if total <= 0 or paid < 0:
        return None
    return min(Decimal("1"), max(Decimal("0"), paid / total))


def _share(base: Decimal, pct, ratio: Optional[Decimal]) -> float:
    amount = D(round2(base * D(pct) / Decimal("100")))
    if ratio is not None and amount:
        amount = amount * ratio
    return round2(amount)


def _pct(cfg: Mapping[str, Any], key: str, default):
    v = cfg.get(key)
    return default if v is None else v


def _esi(cfg, basic: Decimal, ratio) -> Optional[Dict[str, Any]]:
    wage_pct = min(Decimal("100"), max(Decimal("0"), D(_pct(cfg, "wageBasePercentOfBasic", 50))))
    ceiling = D(cfg.get("wageCeiling"))
    if basic <= 0 or (ceiling > 0 and basic > ceiling):
        return None
    wage = basic * wage_pct / Decimal("100")
    return {
        "name": "ESI",
        "code": "ESI",
        "employeeAmount": _share(wage, _pct(cfg, "employeePercent", 0.75), ratio),
        "employerAmount": _share(wage, _pct(cfg, "employerPercent", 3.25), ratio),
    }


def _pf(cfg, basic: Decimal, dearness_allowance, ratio) -> Optional[Dict[str, Any]]:
    base = basic + D(dearness_allowance) if cfg.get("base") == "basic_da" else basic
    ceiling = D(cfg.get("wageCeiling")) or Decimal("15000")
    contribution_base = min(base, ceiling) if base > 0 else Decimal("0")
    if contribution_base <= 0:
        return None
    return {
        "name": "PF",
        "code": "PF",
        "employeeAmount": _share(contribution_base, _pct(cfg, "employeePercent", 12), ratio),
        "employerAmount": _share(contribution_base, _pct(cfg, "employerPercent", 12), ratio),
    }


def profession_tax_for(basic, slabs) -> Decimal:
    """Slab amount for ``basic``; a slab without ``max`` is open-ended."""
    valid = [s for s in (slabs or []) if isinstance(s, Mapping) and isinstance(s.get("min"), (int, float))]
    for slab in sorted(valid, key=lambda s: s["min"]):
        hi = PT_OPEN_MAX if slab.get("max") is None else D(slab["max"])
        if D(slab["min"]) <= D(basic) <= hi:
            return D(slab.get("amount"))
    return Decimal("0")


def _pt(cfg, basic: Decimal, ratio) -> Optional[Dict[str, Any]]:
    slabs = cfg.get("slabs")
    if not isinstance(slabs, list) or not slabs:
        return None
    amount = profession_tax_for(basic, slabs)
    if ratio is not None and amount:
        amount = amount * ratio
    return {
        "name": "Profession Tax",
        "code": "PT",
        "employeeAmount": round2(amount),
        "employerAmount": 0,
    }


def calculate_statutory_deductions(
    config: Mapping[str, Any],
    basic_pay: Any = 0,
    dearness_allowance: Any = 0,
    flags: Optional[Mapping[str, bool]] = None,
    paid_days: Any = None,
    total_days: Any = None,
) -> Dict[str, Any]:
    """
    ``config`` is ``{"esi", "pf", "professionTax"}`` as stored in the
    statutory configuration; a scheme runs only when its ``enabled`` flag is
    set and the employee's ``applyESI`` / ``applyPF`` / ``applyProfessionTax``
    flag is not False.
    """
    flags = flags or {}
    esi_cfg = {**DEFAULT_ESI, **(config.get("esi") or {})}
    pf_cfg = {**DEFAULT_PF, **(config.get("pf") or {})}
    pt_cfg = {**DEFAULT_PT, **(config.get("professionTax") or {})}

    basic = D(basic_pay)
    ratio = _prorate_ratio(paid_days, total_days)

    breakdown: List[Dict[str, Any]] = []
    if flags.get("applyESI", True) and esi_cfg.get("enabled"):
        item = _esi(esi_cfg, basic, ratio)
        if item:
            breakdown.append(item)
    if flags.get("applyPF", True) and pf_cfg.get("enabled"):
        item = _pf(pf_cfg, basic, dearness_allowance, ratio)
        if item:
            breakdown.append(item)
    if flags.get("applyProfessionTax", True) and pt_cfg.get("enabled"):
        item = _pt(pt_cfg, basic, ratio)
        if item:
            breakdown.append(item)

    return {
        "breakdown": breakdown,
        "totalEmployeeShare": round2(sum((D(b["employeeAmount"]) for b in breakdown), Decimal("0"))),
        "totalEmployerShare": round2(sum((D(b["employerAmount"]) for b in breakdown), Decimal("0"))),
    }
