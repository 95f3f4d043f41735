from datetime import datetime, timedelta

import pytest

from payroll_engine.common.errors import BatchLockedError, PayrollPreconditionError
from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.models.payroll.record import PayrollBatch, PayrollRecord
from payroll_engine.models.payroll.recoveries import Loan
from payroll_engine.models.payroll.settings import PayrollSetting
from payroll_engine.services import payroll_run
from payroll_engine.services.payroll_run import (
    attach_records_to_batches,
    batch_number_for,
    calculate_employee_payroll,
    get_or_create_batch,
    load_inputs,
)


def test_calculate_persists_record_and_batch(session, make_employee, hra_master, paysheet_config):
    emp = make_employee()
    res = calculate_employee_payroll(emp.id, "2025-04", user_id="7")

    assert res["row"]["HRA"] == 2200
    assert res["row"]["Net Salary"] == 32200
    assert res["payslip"]["totals"]["net_pay"] == 32200
    assert res["payslip"]["totals"]["gross_pay"] == 32200

    rec = session.get(PayrollRecord, res["payroll_record_id"])
    assert rec.emp_no == emp.emp_no
    assert rec.month_name == "April 2025"
    assert float(rec.net_salary) == 32200
    assert rec.paysheet_row["Emp No"] == emp.emp_no

    batch = session.get(PayrollBatch, res["batch_id"])
    assert batch.batch_number == "PB-202504-ENG-BLR"
    assert batch.status == "pending"
    assert batch.created_by == "7"
    assert batch.total_employees == 1
    assert float(batch.total_net_salary) == 32200
    assert float(batch.total_gross_salary) == 32200


def test_recalculation_replaces_the_record(session, make_employee, hra_master, paysheet_config):
    emp = make_employee()
    first = calculate_employee_payroll(emp.id, "2025-04")
    second = calculate_employee_payroll(emp.id, "2025-04")
    assert first["payroll_record_id"] == second["payroll_record_id"]
    assert PayrollRecord.query.count() == 1
    assert session.get(PayrollBatch, second["batch_id"]).total_employees == 1


def test_batch_totals_cover_all_employees(session, make_employee, hra_master, paysheet_config):
    a = make_employee()
    b = make_employee(gross=60000)
    calculate_employee_payroll(a.id, "2025-04")
    res = calculate_employee_payroll(b.id, "2025-04")
    batch = session.get(PayrollBatch, res["batch_id"])
    assert batch.total_employees == 2
    # 32200 + (60000 + 2200)
    assert float(batch.total_net_salary) == 94400


@pytest.mark.parametrize("status", ["approved", "freeze", "complete"])
def test_locked_batch_refuses_recalculation(session, make_employee, paysheet_config, status):
    emp = make_employee()
    res = calculate_employee_payroll(emp.id, "2025-04")
    batch = session.get(PayrollBatch, res["batch_id"])
    batch.status = status
    session.commit()

    with pytest.raises(BatchLockedError) as ei:
        calculate_employee_payroll(emp.id, "2025-04")
    assert ei.value.status_code == 409

    batch.recalculation_allowed = True
    session.commit()
    assert calculate_employee_payroll(emp.id, "2025-04")["batch_id"] == batch.id


def test_expired_recalculation_grant_locks_again(session, make_employee, paysheet_config):
    emp = make_employee()
    batch = session.get(PayrollBatch, calculate_employee_payroll(emp.id, "2025-04")["batch_id"])
    batch.status = "approved"
    batch.recalculation_allowed = True
    batch.recalculation_expires_at = datetime.utcnow() - timedelta(minutes=1)
    session.commit()
    with pytest.raises(BatchLockedError):
        calculate_employee_payroll(emp.id, "2025-04")


def test_batch_created_by_another_writer_is_reused(session, make_employee, monkeypatch):
    emp = make_employee()
    existing = get_or_create_batch(emp, "2025-04")

    real_find = payroll_run.find_batch
    calls = []

    def stale_first_lookup(*args):
        calls.append(args)
        return None if len(calls) == 1 else real_find(*args)

    monkeypatch.setattr(payroll_run, "find_batch", stale_first_lookup)
    assert get_or_create_batch(emp, "2025-04").id == existing.id
    assert len(calls) == 2
    assert PayrollBatch.query.count() == 1


def test_deferred_attachment(session, make_employee, hra_master, paysheet_config):
    a = make_employee()
    b = make_employee()
    ids = [calculate_employee_payroll(e.id, "2025-04", attach=False)["payroll_record_id"] for e in (a, b)]
    assert PayrollBatch.query.count() == 0
    assert {r.batch_id for r in PayrollRecord.query.all()} == {None}

    mapping = attach_records_to_batches("2025-04", ids + [None])
    batch = PayrollBatch.query.one()
    assert mapping == {ids[0]: batch.id, ids[1]: batch.id}
    assert batch.total_employees == 2
    assert float(batch.total_net_salary) == 64400
    assert attach_records_to_batches("2025-04", []) == {}


def test_employee_without_department_gets_no_batch(session, make_employee, paysheet_config):
    emp = make_employee(department_id=None, division_id=None)
    res = calculate_employee_payroll(emp.id, "2025-04")
    assert res["batch_id"] is None
    assert PayrollRecord.query.count() == 1


def test_batch_number_without_codes(session, make_employee):
    emp = make_employee(division_id=None)
    emp.department.code = None
    assert batch_number_for(emp, "2025-04") == f"PB-202504-D{emp.department_id}-ALL"


def test_preconditions(session, make_employee, paysheet_config):
    with pytest.raises(PayrollPreconditionError) as ei:
        calculate_employee_payroll(999, "2025-04")
    assert ei.value.status_code == 404

    emp = make_employee(register=False)
    with pytest.raises(PayrollPreconditionError) as ei:
        calculate_employee_payroll(emp.id, "2025-04")
    assert ei.value.status_code == 422

    with pytest.raises(PayrollPreconditionError) as ei:
        calculate_employee_payroll(emp.id, "2025-13")
    assert ei.value.status_code == 400


def test_disabled_configuration(session, make_employee, paysheet_config):
    emp = make_employee()
    cfg = PayrollConfiguration.get()
    cfg.enabled = False
    session.commit()
    with pytest.raises(PayrollPreconditionError):
        calculate_employee_payroll(emp.id, "2025-04")


def test_recoveries_loaded_only_when_a_column_needs_them(session, make_employee, paysheet_config):
    emp = make_employee()
    session.add(Loan(employee_id=emp.id, kind="loan", status="active", emi_amount=2000, remaining_balance=10000))
    session.commit()

    _, inputs = load_inputs(emp.id, "2025-04")
    assert inputs.recoveries == ()

    cfg = {"enabled": True, "outputColumns": [{"header": "EMI", "field": "loanAdvance.totalEMI"}]}
    _, inputs = load_inputs(emp.id, "2025-04", config=cfg)
    assert [r["emiAmount"] for r in inputs.recoveries] == [2000.0]


def test_earned_leave_policy(session, make_employee, paysheet_config):
    emp = make_employee(paid_leaves=2)
    session.add(PayrollSetting(key="leave_policy", value_json={"earnedLeave": {"useAsPaidInPayroll": True}}))
    session.commit()

    _, inputs = load_inputs(emp.id, "2025-04")
    assert inputs.attendance.earned_leave_used == 2
    assert inputs.attendance.payable_shifts == 24
    assert inputs.attendance.total_days_in_month == 30
