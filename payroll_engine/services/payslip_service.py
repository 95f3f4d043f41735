from dataclasses import dataclass, asdict, field
from decimal import Decimal, ROUND_CEILING
from typing import List, Dict, Any, Optional, Mapping

from payroll_engine.common.money import D, num, round2

DEDUCTION_PARTS = (
    ("deductions", "attendanceDeduction"),
    ("deductions", "totalOtherDeductions"),
    ("deductions", "statutoryCumulative"),
    ("loanAdvance", "totalEMI"),
    ("loanAdvance", "advanceDeduction"),
)


def total_deductions(record: Mapping[str, Any]) -> float:
    """attendance + other + statutory + loan EMI + advance, as they stand in the record."""
    total = Decimal("0")
    for block, key in DEDUCTION_PARTS:
        total += D((record.get(block) or {}).get(key))
    return round2(total)


def gross_of(record: Mapping[str, Any]) -> Decimal:
    e = record.get("earnings") or {}
    if e.get("grossSalary") not in (None, ""):
        return D(e.get("grossSalary"))
    earned = e.get("earnedSalary") if e.get("earnedSalary") is not None else e.get("payableAmount")
    return D(earned) + D(e.get("otPay"))


def finalize_net(record: Dict[str, Any], pinned: Optional[Mapping[str, Any]] = None) -> Dict[str, float]:
    """
    Settle totalDeductions, netSalary and roundOff on the record.

    Values a column wrote (``pinned``) are kept. Net pay is the exact net
    rounded up to the rupee and never negative; roundOff is what the ceiling added.
    """
    pinned = pinned or {}
    d = record.setdefault("deductions", {})
    if "deductions.totalDeductions" not in pinned:
        total = total_deductions(record)
        d["totalDeductions"] = total
        if "deductions.deductionsCumulative" not in pinned:
            d["deductionsCumulative"] = total
    total_ded = D(d.get("totalDeductions"))

    if "netSalary" in pinned:
        return {"netSalary": num(record.get("netSalary")), "roundOff": num(record.get("roundOff"))}

    exact = max(Decimal("0"), gross_of(record) - total_ded)
    net = exact.to_integral_value(rounding=ROUND_CEILING)
    record["netSalary"] = int(net)
    if "roundOff" not in pinned:
        record["roundOff"] = round2(net - exact)
    return {"netSalary": record["netSalary"], "roundOff": num(record["roundOff"])}


@dataclass
class PayslipComponent:
    name: str
    amount: float
    code: Optional[str] = None
    type: Optional[str] = None
    base: Optional[str] = None
    employer_amount: Optional[float] = None


@dataclass
class PayslipDTO:
    month: str
    month_number: int
    year: int
    employee: Dict[str, Any]
    attendance: Dict[str, Any]
    earnings: List[PayslipComponent]
    earnings_summary: Dict[str, Any]
    deductions: List[PayslipComponent]
    deductions_summary: Dict[str, Any]
    loan_advance: Dict[str, Any]
    arrears: Dict[str, Any]
    totals: Dict[str, Any]
    status: str = "calculated"
    row: Dict[str, Any] = field(default_factory=dict)


class PayslipService:
    def build_payslip_dto(self, record: Mapping[str, Any], row: Optional[Mapping[str, Any]] = None) -> dict:
        """
        Shape a calculated payslip record into the stable payslip document.
        Returns a dictionary representation of the DTO.
        """
        e = record.get("earnings") or {}
        d = record.get("deductions") or {}
        la = record.get("loanAdvance") or {}
        ar = record.get("arrears") or {}

        earnings = []
        if e.get("basicPay") is not None:
            earnings.append(PayslipComponent(code="BASIC", name="Basic Pay", amount=num(e.get("earnedSalary"))))
        if num(e.get("incentive")):
            earnings.append(PayslipComponent(code="INCENTIVE", name="Incentive", amount=num(e.get("incentive"))))
        if num(e.get("otPay")):
            earnings.append(PayslipComponent(code="OT", name="Overtime", amount=num(e.get("otPay"))))
        for a in e.get("allowances") or []:
            earnings.append(PayslipComponent(name=a.get("name"), amount=num(a.get("amount")),
                                             type=a.get("type"), base=a.get("base")))

        deductions = []
        if num(d.get("attendanceDeduction")):
            deductions.append(PayslipComponent(code="ATTENDANCE", name="Attendance Deduction",
                                               amount=num(d.get("attendanceDeduction"))))
        for s in d.get("statutoryDeductions") or []:
            deductions.append(PayslipComponent(code=s.get("code"), name=s.get("name"),
                                               amount=num(s.get("employeeAmount")),
                                               employer_amount=num(s.get("employerAmount"))))
        for o in d.get("otherDeductions") or []:
            deductions.append(PayslipComponent(name=o.get("name"), amount=num(o.get("amount")),
                                               type=o.get("type"), base=o.get("base")))
        if num(la.get("totalEMI")):
            deductions.append(PayslipComponent(code="LOAN_EMI", name="Loan EMI", amount=num(la.get("totalEMI"))))
        if num(la.get("advanceDeduction")):
            deductions.append(PayslipComponent(code="ADVANCE", name="Salary Advance",
                                               amount=num(la.get("advanceDeduction"))))

        dto = PayslipDTO(
            month=record.get("month") or "",
            month_number=int(num(record.get("monthNumber"))),
            year=int(num(record.get("year"))),
            employee=dict(record.get("employee") or {}),
            attendance=dict(record.get("attendance") or {}),
            earnings=earnings,
            earnings_summary={
                "basic_pay": num(e.get("basicPay")),
                "per_day_basic_pay": num(e.get("perDayBasicPay")),
                "earned_salary": num(e.get("earnedSalary")),
                "incentive": num(e.get("incentive")),
                "ot_pay": num(e.get("otPay")),
                "total_allowances": num(e.get("totalAllowances")),
                "gross_salary": float(gross_of(record)),
            },
            deductions=deductions,
            deductions_summary={
                "attendance_deduction": num(d.get("attendanceDeduction")),
                "other_deductions": num(d.get("totalOtherDeductions")),
                "statutory_employee": num(d.get("statutoryCumulative")),
                "statutory_employer": num(d.get("totalStatutoryEmployer")),
                "total_deductions": num(d.get("totalDeductions")),
            },
            loan_advance={
                "total_emi": num(la.get("totalEMI")),
                "advance_deduction": num(la.get("advanceDeduction")),
                "remaining_balance": num(la.get("remainingBalance")),
            },
            arrears={"arrears_amount": num(ar.get("arrearsAmount"))},
            totals={
                "gross_pay": float(gross_of(record)),
                "total_deductions": num(d.get("totalDeductions")),
                "net_pay": num(record.get("netSalary")),
                "round_off": num(record.get("roundOff")),
            },
            status=record.get("status") or "calculated",
            row=dict(row or {}),
        )

        return asdict(dto)
