# payroll_engine/services/requirements.py
"""
Which calculators a payroll configuration actually needs.

Field paths and formula variables map to calculator kinds through fixed
tables; dependencies between calculators are then closed transitively, so a
column reading ``netSalary`` pulls in everything that feeds gross pay and
total deductions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Set, Tuple

from payroll_engine.services.formula import formula_variables

BASIC = "basic"
OT = "ot"
ALLOWANCES = "allowances"
ATTENDANCE_DEDUCTION = "attendance_deduction"
OTHER_DEDUCTIONS = "other_deductions"
STATUTORY = "statutory"
LOAN_ADVANCE = "loan_advance"
ARREARS = "arrears"
TOTAL_DEDUCTIONS = "total_deductions"
NET = "net"

# execution order; every kind only depends on kinds before it
CALCULATOR_ORDER: Tuple[str, ...] = (
    BASIC, OT, ALLOWANCES, ATTENDANCE_DEDUCTION, OTHER_DEDUCTIONS,
    STATUTORY, LOAN_ADVANCE, ARREARS, TOTAL_DEDUCTIONS, NET,
)

DEPENDS_ON: Dict[str, FrozenSet[str]] = {
    BASIC: frozenset(),
    OT: frozenset(),
    ALLOWANCES: frozenset({BASIC, OT}),
    ATTENDANCE_DEDUCTION: frozenset({BASIC}),
    OTHER_DEDUCTIONS: frozenset({BASIC, ALLOWANCES}),
    STATUTORY: frozenset({BASIC}),
    LOAN_ADVANCE: frozenset({BASIC}),
    ARREARS: frozenset(),
    TOTAL_DEDUCTIONS: frozenset({ATTENDANCE_DEDUCTION, OTHER_DEDUCTIONS, STATUTORY, LOAN_ADVANCE}),
    NET: frozenset({BASIC, OT, ALLOWANCES, TOTAL_DEDUCTIONS}),
}

# exact field paths
FIELD_EXACT: Dict[str, str] = {
    "earnings.basicPay": BASIC,
    "earnings.perDayBasicPay": BASIC,
    "earnings.payableAmount": BASIC,
    "earnings.earnedSalary": BASIC,
    "earnings.incentive": BASIC,
    "attendance.extraDays": BASIC,
    "attendance.totalPaidDays": BASIC,
    "attendance.paidDays": BASIC,
    "attendance.earnedSalary": BASIC,
    "earnings.totalAllowances": ALLOWANCES,
    "earnings.allowancesCumulative": ALLOWANCES,
    "earnings.grossSalary": ALLOWANCES,
    "attendance.attendanceDeductionDays": ATTENDANCE_DEDUCTION,
    "deductions.totalStatutoryEmployee": STATUTORY,
    "deductions.totalStatutoryEmployer": STATUTORY,
    "deductions.totalOtherDeductions": OTHER_DEDUCTIONS,
    "deductions.deductionsCumulative": TOTAL_DEDUCTIONS,
    "deductions.totalDeductions": TOTAL_DEDUCTIONS,
    "netSalary": NET,
    "roundOff": NET,
}

# path prefixes, checked in order
FIELD_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("earnings.allowance", ALLOWANCES),
    ("earnings.ot", OT),
    ("deductions.attendanceDeduction", ATTENDANCE_DEDUCTION),
    ("deductions.permissionDeduction", ATTENDANCE_DEDUCTION),
    ("deductions.leaveDeduction", ATTENDANCE_DEDUCTION),
    ("deductions.other", OTHER_DEDUCTIONS),
    ("deductions.statutory", STATUTORY),
    ("loanAdvance.", LOAN_ADVANCE),
    ("arrears.", ARREARS),
)

# formula names from the base context
VARIABLE_KINDS: Dict[str, str] = {
    "basicPay": BASIC, "basic_pay": BASIC, "salary": BASIC,
    "perDayBasicPay": BASIC, "incentive": BASIC, "earnedSalary": BASIC,
    "extraDays": BASIC, "extradays": BASIC,
    "otPay": OT, "extra_hours_pay": OT,
    "grossSalary": ALLOWANCES, "gross_salary": ALLOWANCES,
    "totalAllowances": ALLOWANCES, "total_allowances": ALLOWANCES,
    "allowancesCumulative": ALLOWANCES,
    "attendanceDeduction": ATTENDANCE_DEDUCTION, "attendance_deduction": ATTENDANCE_DEDUCTION,
    "attendanceDeductionDays": ATTENDANCE_DEDUCTION,
    "permissionDeduction": ATTENDANCE_DEDUCTION, "leaveDeduction": ATTENDANCE_DEDUCTION,
    "otherDeductions": OTHER_DEDUCTIONS,
    "statutoryCumulative": STATUTORY, "statutory_deductions": STATUTORY,
    "loanEMI": LOAN_ADVANCE, "loan_recovery": LOAN_ADVANCE,
    "advanceDeduction": LOAN_ADVANCE, "salary_advance": LOAN_ADVANCE,
    "remaining_balance": LOAN_ADVANCE,
    "arrearsAmount": ARREARS,
    "totalDeductions": TOTAL_DEDUCTIONS, "deductionsCumulative": TOTAL_DEDUCTIONS,
    "netSalary": NET, "net_salary": NET, "roundOff": NET, "round_off": NET,
}


def close(kinds: Iterable[str]) -> FrozenSet[str]:
    """Transitive closure over DEPENDS_ON."""
    out: Set[str] = set()
    stack = [k for k in kinds if k in DEPENDS_ON]
    while stack:
        k = stack.pop()
        if k in out:
            continue
        out.add(k)
        stack.extend(DEPENDS_ON[k] - out)
    return frozenset(out)


def ordered(kinds: Iterable[str]) -> Tuple[str, ...]:
    wanted = set(kinds)
    return tuple(k for k in CALCULATOR_ORDER if k in wanted)


def kind_for_field(path: Any) -> Optional[str]:
    """Calculator that produces ``path``, None for employee/attendance fields read as-is."""
    if not path or not isinstance(path, str):
        return None
    p = path.strip()
    base = p.partition(":")[0]
    if base in FIELD_EXACT:
        return FIELD_EXACT[base]
    for prefix, kind in FIELD_PREFIXES:
        if base.startswith(prefix):
            return kind
    return None


def kinds_for_formula(formula: Any, known: Optional[Iterable[str]] = None) -> FrozenSet[str]:
    """
    Calculators referenced by a formula's variables. Names in ``known``
    (earlier column keys) are already resolved and pull in nothing.
    """
    if not formula or not isinstance(formula, str):
        return frozenset()
    names = formula_variables(formula)
    skip = set(known or ())
    return frozenset(VARIABLE_KINDS[n] for n in names if n not in skip and n in VARIABLE_KINDS)


@dataclass(frozen=True)
class Requirements:
    calculators: FrozenSet[str]

    def needs(self, kind: str) -> bool:
        return kind in self.calculators

    @property
    def order(self) -> Tuple[str, ...]:
        return ordered(self.calculators)


def analyze_columns(columns: Sequence[Mapping[str, Any]]) -> Requirements:
    direct: Set[str] = set()
    for col in columns or ():
        if col.get("source") == "formula":
            direct |= kinds_for_formula(col.get("formula"))
        else:
            kind = kind_for_field(col.get("field"))
            if kind:
                direct.add(kind)
    return Requirements(close(direct))
