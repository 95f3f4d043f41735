import pytest

from payroll_engine.services.statutory import calculate_statutory_deductions, profession_tax_for

PF_ON = {"pf": {"enabled": True}}


def _by_code(res):
    return {b["code"]: b for b in res["breakdown"]}


def test_schemes_are_off_by_default():
    res = calculate_statutory_deductions({}, basic_pay=20000)
    assert res["breakdown"] == []
    assert res["totalEmployeeShare"] == 0


def test_pf_contribution_base_is_capped_at_ceiling():
    res = calculate_statutory_deductions(PF_ON, basic_pay=20000)
    pf = _by_code(res)["PF"]
    assert pf["employeeAmount"] == 1800.0
    assert pf["employerAmount"] == 1800.0
    assert res["totalEmployeeShare"] == 1800.0


def test_pf_below_ceiling_and_basic_da():
    assert _by_code(calculate_statutory_deductions(PF_ON, basic_pay=10000))["PF"]["employeeAmount"] == 1200
    cfg = {"pf": {"enabled": True, "base": "basic_da", "wageCeiling": 50000}}
    res = calculate_statutory_deductions(cfg, basic_pay=10000, dearness_allowance=5000)
    assert _by_code(res)["PF"]["employeeAmount"] == 1800


def test_esi_applies_up_to_wage_ceiling():
    cfg = {"esi": {"enabled": True}}
    esi = _by_code(calculate_statutory_deductions(cfg, basic_pay=20000))["ESI"]
    # wage base is 50% of basic
    assert esi["employeeAmount"] == 75.0
    assert esi["employerAmount"] == 325.0
    assert calculate_statutory_deductions(cfg, basic_pay=25000)["breakdown"] == []


@pytest.mark.parametrize("basic,amount", [(10000, 0), (15000, 150), (19999, 150), (25000, 200)])
def test_profession_tax_slabs(basic, amount):
    slabs = [
        {"min": 0, "max": 14999, "amount": 0},
        {"min": 15000, "max": 19999, "amount": 150},
        {"min": 20000, "max": None, "amount": 200},
    ]
    assert profession_tax_for(basic, slabs) == amount


def test_employee_flags_switch_schemes_off():
    cfg = {"pf": {"enabled": True}, "professionTax": {"enabled": True}}
    res = calculate_statutory_deductions(cfg, basic_pay=20000, flags={"applyPF": False})
    assert set(_by_code(res)) == {"PT"}
    assert res["totalEmployeeShare"] == 200


def test_amounts_prorated_by_paid_days():
    res = calculate_statutory_deductions(PF_ON, basic_pay=20000, paid_days=15, total_days=30)
    assert _by_code(res)["PF"]["employeeAmount"] == 900.0
    # ratio is clamped to 1
    res = calculate_statutory_deductions(PF_ON, basic_pay=20000, paid_days=40, total_days=30)
    assert _by_code(res)["PF"]["employeeAmount"] == 1800.0
    # unusable totals mean no proration
    res = calculate_statutory_deductions(PF_ON, basic_pay=20000, paid_days=15, total_days=0)
    assert _by_code(res)["PF"]["employeeAmount"] == 1800.0
