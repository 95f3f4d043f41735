from decimal import Decimal

from payroll_engine.models.payroll.recoveries import Arrear, Loan
from payroll_engine.services.recoveries import (
    calculate_arrears,
    calculate_loan_advance,
    calculate_total_emi,
    load_active_recoveries,
    load_pending_arrears,
    process_salary_advance,
)

LOAN = {"id": 1, "kind": "loan", "emiAmount": 2000, "remainingBalance": 10000}
ADV_A = {"id": 2, "kind": "salary_advance", "emiAmount": 0, "remainingBalance": 6000}
ADV_B = {"id": 3, "kind": "salary_advance", "emiAmount": 0, "remainingBalance": 4000}


def test_emi_total_skips_advances_and_settled_loans():
    settled = {"id": 9, "kind": "loan", "emiAmount": 500, "remainingBalance": 0}
    res = calculate_total_emi([LOAN, ADV_A, settled])
    assert res["totalEMI"] == 2000
    assert res["loanCount"] == 1
    assert res["emiBreakdown"] == [{"loanId": 1, "emiAmount": 2000}]


def test_advances_recovered_in_full_when_payable_covers_them():
    res = process_salary_advance([ADV_A, ADV_B], 30000)
    assert res["advanceDeduction"] == 10000
    assert [b["carriedForward"] for b in res["advanceBreakdown"]] == [0, 0]


def test_advances_split_proportionally_when_payable_falls_short():
    res = process_salary_advance([ADV_A, ADV_B], 5000)
    assert res["advanceDeduction"] == 5000
    assert res["totalAdvanceBalance"] == 10000
    assert [(b["advanceAmount"], b["carriedForward"]) for b in res["advanceBreakdown"]] == [(3000, 3000), (2000, 2000)]


def test_no_advances():
    assert process_salary_advance([LOAN], 5000) == {"advanceDeduction": 0, "advanceBreakdown": [], "totalAdvanceBalance": 0}


def test_remaining_balance_after_this_month():
    res = calculate_loan_advance([LOAN, ADV_A, ADV_B], 5000)
    assert res["totalEMI"] == 2000
    assert res["advanceDeduction"] == 5000
    # loan 10000 - 2000, plus 5000 carried forward on advances
    assert res["remainingBalance"] == 13000


def test_arrears_total_positive_remaining_only():
    res = calculate_arrears([
        {"id": 1, "remainingAmount": 1200.5},
        {"id": 2, "remainingAmount": 0},
        {"id": 3, "remainingAmount": 300},
    ])
    assert res["arrearsAmount"] == 1500.5
    assert [s["arrearId"] for s in res["arrearsSettlements"]] == [1, 3]


def test_loaders_pick_active_items(session, make_employee):
    emp = make_employee()
    session.add_all([
        Loan(employee_id=emp.id, kind="loan", status="active", emi_amount=Decimal("2000"), remaining_balance=Decimal("10000")),
        Loan(employee_id=emp.id, kind="loan", status="closed", emi_amount=Decimal("100"), remaining_balance=Decimal("500")),
        Loan(employee_id=emp.id, kind="salary_advance", status="active", remaining_balance=Decimal("0")),
        Arrear(employee_id=emp.id, status="approved", total_amount=Decimal("900"), remaining_amount=Decimal("900")),
        Arrear(employee_id=emp.id, status="pending", total_amount=Decimal("400"), remaining_amount=Decimal("400")),
    ])
    session.commit()

    loans = load_active_recoveries(emp.id)
    assert [(r["kind"], r["emiAmount"], r["remainingBalance"]) for r in loans] == [("loan", 2000.0, 10000.0)]

    arrears = load_pending_arrears(emp.id)
    assert [a["remainingAmount"] for a in arrears] == [900.0]
