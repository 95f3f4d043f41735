import pytest

from payroll_engine.services.attendance_deduction import (
    calculate_attendance_deduction,
    calculate_days_to_deduct,
    calculate_leave_deduction,
    calculate_permission_deduction,
    combined_attendance_deduction,
    resolve_attendance_rules,
    resolve_permission_rules,
)
from payroll_engine.services.rule_resolver import RuleSnapshot, ScopedValue

HALF_DAY_PER_3 = {"combinedCountThreshold": 3, "deductionType": "half_day", "calculationMode": "floor"}
PERMISSIONS = {"countThreshold": 3, "deductionType": "full_day", "calculationMode": "floor", "freeAllowedPerMonth": 1}
ALL_ON = {
    "applyAttendanceDeduction": True, "deductLateIn": True,
    "deductEarlyOut": True, "deductPermission": True,
}


@pytest.mark.parametrize("args,days", [
    ((1, 1, 3, "half_day", None, 1000, "floor"), 0.5),
    ((1, 1, 3, "half_day", None, 1000, "proportional"), 0.67),
    ((2, 0, 3, "full_day", None, 1000, "floor"), 2),
    ((1, 2, 4, "full_day", None, 1000, "proportional"), 1.5),
    ((2, 0, 3, "custom_amount", 500, 1000, "floor"), 1),
    ((2, 0, 3, "custom_amount", 500, 0, "floor"), 0),
    ((2, 0, 3, "unknown", None, 1000, "floor"), 0),
])
def test_days_to_deduct(args, days):
    assert calculate_days_to_deduct(*args) == days


def test_late_and_early_are_counted_together():
    res = calculate_attendance_deduction(2, 2, HALF_DAY_PER_3, 1000)
    assert res["attendanceDeduction"] == 500
    assert res["breakdown"]["combinedCount"] == 4
    assert res["breakdown"]["daysDeducted"] == 0.5


def test_below_threshold_or_without_rules_nothing_is_deducted():
    assert calculate_attendance_deduction(1, 1, HALF_DAY_PER_3, 1000)["attendanceDeduction"] == 0
    assert calculate_attendance_deduction(9, 9, {}, 1000)["attendanceDeduction"] == 0


def test_free_permissions_are_not_counted():
    res = calculate_permission_deduction(4, PERMISSIONS, 1000)
    assert res["breakdown"]["eligiblePermissionCount"] == 3
    assert res["permissionDeduction"] == 1000
    assert calculate_permission_deduction(3, PERMISSIONS, 1000)["permissionDeduction"] == 0


def test_unpaid_leave_share_of_basic():
    res = calculate_leave_deduction(5, 2, 30, 30000)
    assert res["leaveDeduction"] == 3000
    assert res["breakdown"]["unpaidLeaves"] == 3
    assert calculate_leave_deduction(1, 2, 30, 30000)["leaveDeduction"] == 0
    assert calculate_leave_deduction(5, 0, 0, 30000)["leaveDeduction"] == 0


def test_combined_deduction_sums_late_early_and_permissions():
    att = {"lateCount": 2, "earlyOutCount": 1, "permissionCount": 4}
    res = combined_attendance_deduction(att, ALL_ON, HALF_DAY_PER_3, PERMISSIONS, 1000)
    assert res["attendanceDeduction"] == 1500
    assert res["permissionDeduction"] == 1000
    assert res["daysDeducted"] == 1.5


def test_employee_preferences():
    att = {"lateCount": 2, "earlyOutCount": 1, "permissionCount": 4}
    res = combined_attendance_deduction(att, {**ALL_ON, "deductLateIn": False}, HALF_DAY_PER_3, PERMISSIONS, 1000)
    # early-outs alone stay under the threshold
    assert res["attendanceDeduction"] == 1000
    assert res["breakdown"]["lateEarly"]["lateInsCount"] == 0

    res = combined_attendance_deduction(att, {**ALL_ON, "deductPermission": False}, HALF_DAY_PER_3, PERMISSIONS, 1000)
    assert res["attendanceDeduction"] == 500
    assert res["permissionDeduction"] == 0

    res = combined_attendance_deduction(att, {"applyAttendanceDeduction": False}, HALF_DAY_PER_3, PERMISSIONS, 1000)
    assert res["attendanceDeduction"] == 0
    assert res["breakdown"] == {"skipped": "employee preference"}


def test_rules_resolved_from_scoped_settings():
    snap = RuleSnapshot(settings={
        "attendance_deduction": (
            ScopedValue(HALF_DAY_PER_3),
            ScopedValue({"deductionType": "full_day"}, 5, None),
        ),
        "permission_deduction": (ScopedValue({"countThreshold": 2}),),
    })
    rules = resolve_attendance_rules(snap, 5, None)
    assert rules["combinedCountThreshold"] == 3
    assert rules["deductionType"] == "full_day"
    assert resolve_permission_rules(snap)["freeAllowedPerMonth"] == 0
    assert resolve_permission_rules(snap)["countThreshold"] == 2
