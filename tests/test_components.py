import pytest

from payroll_engine.services.components import (
    build_base_rules,
    calculate_component_amount,
    compute_allowances,
    compute_other_deductions,
    include_missing_flag,
    merge_with_overrides,
)
from payroll_engine.services.rule_resolver import MasterDef, RuleSnapshot, ScopedValue

PRESENT_22 = {"presentDays": 20, "paidLeaveDays": 2, "odDays": 0, "monthDays": 30}


def test_fixed_amount_prorated_on_present_days():
    rule = {"type": "fixed", "amount": 3000, "basedOnPresentDays": True}
    assert calculate_component_amount(rule, 30000, None, PRESENT_22) == 2200
    # explicit paid-days signal wins over present + leave + od
    att = {**PRESENT_22, "totalPaidDays": 15, "totalDaysInMonth": 30}
    assert calculate_component_amount(rule, 30000, None, att) == 1500
    # no attendance, no proration
    assert calculate_component_amount(rule, 30000) == 3000


def test_zero_paid_days_prorate_to_zero():
    rule = {"type": "fixed", "amount": 3000, "basedOnPresentDays": True}
    assert calculate_component_amount(rule, 0, None, {"totalPaidDays": 0, "totalDaysInMonth": 30}) == 0
    nobody_in = {"presentDays": 0, "paidLeaveDays": 0, "odDays": 0, "monthDays": 30}
    assert calculate_component_amount(rule, 30000, None, nobody_in) == 0


def test_percentage_of_basic_or_gross():
    assert calculate_component_amount({"type": "percentage", "percentage": 10}, 20000, 30000) == 2000
    gross_rule = {"type": "percentage", "percentage": 10, "percentageBase": "gross"}
    assert calculate_component_amount(gross_rule, 20000, 30000) == 3000
    # gross unknown: falls back to basic
    assert calculate_component_amount(gross_rule, 20000, None) == 2000


def test_min_and_max_clamps():
    assert calculate_component_amount({"type": "percentage", "percentage": 10, "minAmount": 500}, 1000) == 500
    assert calculate_component_amount({"type": "fixed", "amount": 9000, "maxAmount": 5000}, 0) == 5000
    assert calculate_component_amount(None, 30000) == 0


def _snapshot(**settings):
    hra = MasterDef(1, "HRA", "allowance", True, (
        ScopedValue({"type": "fixed", "amount": 2000}, 5, 7),
        ScopedValue({"type": "fixed", "amount": 1500}, 5, None),
        ScopedValue({"type": "fixed", "amount": 1000}),
    ))
    da = MasterDef(2, "DA", "allowance", True, (
        ScopedValue({"type": "percentage", "percentage": 10, "percentageBase": "gross"}),
    ))
    old = MasterDef(3, "Old", "allowance", False, (ScopedValue({"type": "fixed", "amount": 99}),))
    canteen = MasterDef(4, "Canteen", "deduction", True, (ScopedValue({"type": "fixed", "amount": 150}),))
    return RuleSnapshot(
        masters=(hra, da, old, canteen),
        settings={k: tuple(v) for k, v in settings.items()},
    )


@pytest.mark.parametrize("dept,div,amount", [
    (5, 7, 2000),
    (5, 8, 1500),
    (6, None, 1000),
])
def test_base_rule_scope_resolution(dept, div, amount):
    rules = build_base_rules(_snapshot(), "allowance", dept, div)
    by_name = {r["name"]: r for r in rules}
    assert set(by_name) == {"HRA", "DA"}
    assert by_name["HRA"]["amount"] == amount
    assert by_name["DA"]["base"] == "gross"
    assert "percentageBase" not in by_name["DA"]


def test_include_missing_flag_is_scoped():
    snap = _snapshot(include_missing_components=[ScopedValue(False, 5, None)])
    assert include_missing_flag(snap, 5, None) is False
    assert include_missing_flag(snap, 6, None) is True


BASE = [
    {"masterId": 1, "name": "HRA", "type": "fixed", "amount": 1000, "base": "basic"},
    {"masterId": 2, "name": "Conveyance", "type": "fixed", "amount": 800, "base": "basic"},
]


def test_override_matched_by_name_case_insensitively():
    merged = merge_with_overrides(BASE, [{"name": "hra", "amount": 1500}], include_missing=True)
    assert [m["name"] for m in merged] == ["HRA", "Conveyance"]
    assert merged[0]["amount"] == 1500
    assert merged[0]["masterId"] == 1
    assert merged[0]["isEmployeeOverride"] is True
    assert "isEmployeeOverride" not in merged[1]


def test_override_matched_by_master_id_and_missing_excluded():
    merged = merge_with_overrides(BASE, [{"masterId": 2, "overrideAmount": 500}], include_missing=False)
    assert len(merged) == 1
    assert merged[0]["name"] == "Conveyance"
    assert merged[0]["amount"] == 500


def test_unmatched_override_is_added():
    merged = merge_with_overrides(BASE, [{"name": "Shift Allowance", "amount": 700}], include_missing=True)
    assert [m["name"] for m in merged] == ["Shift Allowance", "HRA", "Conveyance"]


def test_no_overrides():
    assert merge_with_overrides(BASE, [], include_missing=True) == BASE
    assert merge_with_overrides(BASE, None, include_missing=False) == []


def test_gross_percentages_see_first_pass_allowances():
    rules = [
        {"name": "Fixed", "type": "fixed", "amount": 1000, "base": "basic"},
        {"name": "Gross Pct", "type": "percentage", "percentage": 10, "base": "gross"},
    ]
    res = compute_allowances(rules, 20000, 20000, None)
    assert [i["amount"] for i in res["items"]] == [1000, 2100]
    assert res["total"] == 3100


def test_zero_deductions_are_dropped():
    rules = [
        {"name": "Canteen", "type": "fixed", "amount": 150},
        {"name": "Nothing", "type": "fixed", "amount": 0},
    ]
    res = compute_other_deductions(rules, 20000, 20000, None)
    assert [i["name"] for i in res["items"]] == ["Canteen"]
    assert res["total"] == 150
