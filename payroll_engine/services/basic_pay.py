# payroll_engine/services/basic_pay.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal

from payroll_engine.common.errors import PayrollPreconditionError
from payroll_engine.common.money import D, round2
from payroll_engine.services.attendance_normalizer import AttendanceSummary


@dataclass(frozen=True)
class BasicPayResult:
    basic_pay: float            # monthly basic (the employee's gross salary)
    per_day_basic_pay: float
    base_pay_for_work: float    # capped paid days x per-day rate
    incentive: float            # extra days x per-day rate
    payable_amount: float       # base pay + incentive
    total_days_in_month: float
    paid_days: float
    extra_days: float
    physical_units: float

    def to_dict(self):
        return asdict(self)


def calculate_basic_pay(gross_salary, attendance: AttendanceSummary) -> BasicPayResult:
    """
    Per-day rate = gross / days in month. Physical units (payable shifts + paid
    leave + weekly offs + holidays) above the month length are paid as incentive
    and paid days are capped at the month length.
    """
    gross = D(gross_salary)
    if gross <= 0:
        raise PayrollPreconditionError("Employee gross salary is missing")
    if attendance is None or not attendance.total_days_in_month:
        raise PayrollPreconditionError("Attendance summary or days in month is missing")

    days = D(attendance.total_days_in_month)
    per_day = gross / days if days > 0 else Decimal("0")

    units = (
        D(attendance.payable_shifts)
        + D(attendance.paid_leave_days)
        + D(attendance.weekly_offs)
        + D(attendance.holidays)
    )
    if units > days:
        extra = units - days
        paid = days
    else:
        extra = Decimal("0")
        paid = units

    base_pay = paid * per_day
    incentive = extra * per_day

    return BasicPayResult(
        basic_pay=round2(gross),
        per_day_basic_pay=round2(per_day),
        base_pay_for_work=round2(base_pay),
        incentive=round2(incentive),
        payable_amount=round2(base_pay + incentive),
        total_days_in_month=float(days),
        paid_days=float(paid),
        extra_days=round2(extra),
        physical_units=float(units),
    )
