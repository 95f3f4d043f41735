# payroll_engine/services/recoveries.py
"""Loan EMI, salary advance recovery and pending arrears for an employee-month."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError

from payroll_engine.common.money import D, round2
from payroll_engine.models.payroll.recoveries import Arrear, Loan

log = logging.getLogger(__name__)

ARREAR_PAYABLE_STATUSES = ("approved", "partially_settled")


# ---------- loaders ----------

def load_active_recoveries(employee_id: int) -> List[Dict[str, Any]]:
    """Active loans and salary advances with something left to recover."""
    rows = (
        Loan.query
        .filter(Loan.employee_id == employee_id, Loan.status == "active", Loan.remaining_balance > 0)
        .order_by(Loan.id.asc())
        .all()
    )
    return [
        {
            "id": r.id,
            "kind": r.kind,
            "emiAmount": float(r.emi_amount or 0),
            "remainingBalance": float(r.remaining_balance or 0),
        }
        for r in rows
    ]


def load_pending_arrears(employee_id: int) -> List[Dict[str, Any]]:
    rows = (
        Arrear.query
        .filter(
            Arrear.employee_id == employee_id,
            Arrear.status.in_(ARREAR_PAYABLE_STATUSES),
            Arrear.remaining_amount > 0,
        )
        .order_by(Arrear.id.asc())
        .all()
    )
    return [
        {"id": r.id, "status": r.status, "reason": r.reason, "remainingAmount": float(r.remaining_amount or 0)}
        for r in rows
    ]


# ---------- calculators ----------

def calculate_total_emi(loans: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    total = Decimal("0")
    breakdown = []
    for loan in loans:
        if loan.get("kind") != "loan":
            continue
        emi = D(loan.get("emiAmount"))
        if emi <= 0 or D(loan.get("remainingBalance")) <= 0:
            continue
        total += emi
        breakdown.append({"loanId": loan.get("id"), "emiAmount": round2(emi)})
    return {"totalEMI": round2(total), "emiBreakdown": breakdown, "loanCount": len(breakdown)}


def process_salary_advance(advances: Sequence[Mapping[str, Any]], payable_amount: Any) -> Dict[str, Any]:
    """
    Recover outstanding advances from ``payable_amount``. When the balance
    exceeds what is payable, the payable amount is split across advances in
    proportion to their balances and the rest is carried forward.
    """
    active = [a for a in advances if a.get("kind") == "salary_advance" and D(a.get("remainingBalance")) > 0]
    if not active:
        return {"advanceDeduction": 0, "advanceBreakdown": [], "totalAdvanceBalance": 0}

    total_balance = sum((D(a.get("remainingBalance")) for a in active), Decimal("0"))
    payable = max(Decimal("0"), D(payable_amount))
    breakdown = []
    if total_balance > payable:
        deduction = payable
        for a in active:
            bal = D(a.get("remainingBalance"))
            part = payable * bal / total_balance
            breakdown.append({
                "advanceId": a.get("id"),
                "advanceAmount": round2(part),
                "carriedForward": round2(bal - part),
            })
    else:
        deduction = total_balance
        for a in active:
            breakdown.append({
                "advanceId": a.get("id"),
                "advanceAmount": round2(a.get("remainingBalance")),
                "carriedForward": 0,
            })
    return {
        "advanceDeduction": round2(deduction),
        "advanceBreakdown": breakdown,
        "totalAdvanceBalance": round2(total_balance),
    }


def calculate_loan_advance(recoveries: Sequence[Mapping[str, Any]], payable_amount: Any = 0) -> Dict[str, Any]:
    loans = calculate_total_emi(recoveries)
    adv = process_salary_advance(recoveries, payable_amount)

    # what is still owed once this month's EMI and advance recovery are taken
    remaining = Decimal("0")
    for r in recoveries:
        if r.get("kind") == "loan":
            remaining += max(Decimal("0"), D(r.get("remainingBalance")) - D(r.get("emiAmount")))
    remaining += sum((D(b["carriedForward"]) for b in adv["advanceBreakdown"]), Decimal("0"))

    return {
        **loans,
        **adv,
        "remainingBalance": round2(remaining),
    }


def calculate_arrears(pending: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    total = sum((D(a.get("remainingAmount")) for a in pending if D(a.get("remainingAmount")) > 0), Decimal("0"))
    return {
        "arrearsAmount": round2(total),
        "arrearsSettlements": [
            {"arrearId": a.get("id"), "amount": round2(a.get("remainingAmount"))}
            for a in pending if D(a.get("remainingAmount")) > 0
        ],
    }


def safe_pending_arrears(employee_id: int) -> List[Dict[str, Any]]:
    """Pending arrears, or nothing when the lookup fails; payroll goes ahead without them."""
    try:
        return load_pending_arrears(employee_id)
    except SQLAlchemyError:
        log.exception("arrears lookup failed for employee %s", employee_id)
        return []
