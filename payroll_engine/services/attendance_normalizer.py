# payroll_engine/services/attendance_normalizer.py
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

from payroll_engine.common.money import num

log = logging.getLogger(__name__)

DEFAULT_MONTH_DAYS = 30


@dataclass(frozen=True)
class AttendanceSummary:
    """Canonical attendance for one employee-month; absent days balance the month."""
    total_days_in_month: float
    present_days: float = 0
    paid_leave_days: float = 0
    od_days: float = 0
    weekly_offs: float = 0
    holidays: float = 0
    absent_days: float = 0
    payable_shifts: float = 0
    ot_hours: float = 0
    ot_days: float = 0
    lop_days: float = 0
    late_count: float = 0
    early_out_count: float = 0
    permission_count: float = 0
    total_leave_days: float = 0
    extra_days: float = 0
    earned_leave_used: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def as_record(self) -> Dict[str, Any]:
        """The payslip ``attendance`` block."""
        return {
            "totalDaysInMonth": self.total_days_in_month,
            "presentDays": self.present_days,
            "paidLeaveDays": self.paid_leave_days,
            "odDays": self.od_days,
            "weeklyOffs": self.weekly_offs,
            "holidays": self.holidays,
            "absentDays": self.absent_days,
            "payableShifts": self.payable_shifts,
            "extraDays": self.extra_days,
            "totalPaidDays": 0,
            "otHours": self.ot_hours,
            "otDays": self.ot_days,
            "earnedSalary": 0,
            "lopDays": self.lop_days,
            "lateCount": self.late_count,
            "earlyOutCount": self.early_out_count,
            "permissionCount": self.permission_count,
            "totalLeaveDays": self.total_leave_days,
            "elUsedInPayroll": self.earned_leave_used,
            "attendanceDeductionDays": 0,
        }


def resolve_month_days(cycle_days: Optional[float], summary_days: Optional[float]) -> float:
    """Pay-cycle window length, else the aggregate's own day count, else 30."""
    if cycle_days and num(cycle_days) > 0:
        return num(cycle_days)
    if summary_days and num(summary_days) > 0:
        return num(summary_days)
    return DEFAULT_MONTH_DAYS


def normalize_attendance(
    totals: Mapping[str, Any],
    month_days: float,
    el_balance: Any = 0,
    use_el_as_paid: bool = False,
) -> AttendanceSummary:
    """
    Build the canonical summary from a raw pay-register aggregate.

    When earned leave counts as paid in payroll, up to ``min(balance, month_days)``
    EL units are added to both payable shifts and paid leave days.
    """
    present = num(totals.get("present_days"))
    od = num(totals.get("od_days"))
    weekly_offs = num(totals.get("weekly_offs"))
    holidays = num(totals.get("holidays"))
    paid_leave = num(totals.get("paid_leave_days"))
    if totals.get("payable_shifts") is not None:
        payable = num(totals.get("payable_shifts"))
    else:
        payable = present + od

    el_used = 0.0
    if use_el_as_paid:
        balance = max(0.0, num(el_balance))
        if balance > 0:
            el_used = min(balance, month_days)
            payable += el_used
            paid_leave += el_used
            log.debug("EL offset applied: %s day(s)", el_used)

    absent = max(0.0, month_days - present - weekly_offs - holidays - paid_leave)

    return AttendanceSummary(
        total_days_in_month=month_days,
        present_days=present,
        paid_leave_days=paid_leave,
        od_days=od,
        weekly_offs=weekly_offs,
        holidays=holidays,
        absent_days=absent,
        payable_shifts=payable,
        ot_hours=num(totals.get("ot_hours")),
        ot_days=num(totals.get("ot_days")),
        lop_days=num(totals.get("lop_days")),
        late_count=num(totals.get("late_count")),
        early_out_count=num(totals.get("early_out_count")),
        permission_count=num(totals.get("permission_count")),
        total_leave_days=num(totals.get("total_leave_days")),
        extra_days=num(totals.get("extra_days")),
        earned_leave_used=el_used,
    )
