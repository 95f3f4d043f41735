import threading
from decimal import Decimal

import pytest

from payroll_engine import create_app
from payroll_engine.common.errors import PayrollPreconditionError
from payroll_engine.extensions import db
from payroll_engine.models.attendance_rollup import PayRegisterSummary
from payroll_engine.models.employee import Employee
from payroll_engine.models.master import Department, Division
from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.models.payroll.record import PayrollBatch, PayrollRecord
from payroll_engine.services.batch_runner import employee_ids_for, run_batch
from payroll_engine.services.payroll_run import calculate_employee_payroll
from payroll_engine.services.rule_resolver import snapshot_cache


def _fake(fail_on=(), crash_on=()):
    calls = []

    def calculate(emp_id, month, user_id=None, snapshot=None, config=None, attach=True):
        calls.append((emp_id, month, snapshot is not None, config is not None, attach))
        if emp_id in fail_on:
            raise PayrollPreconditionError("Pay register not found for this month")
        if emp_id in crash_on:
            raise RuntimeError("boom")
        return {"payroll_record_id": emp_id * 10, "batch_id": None, "payslip": {"totals": {"net_pay": 100}}}

    calculate.calls = calls
    return calculate


def test_failures_are_isolated(app):
    calc = _fake(fail_on={3}, crash_on={4})
    summary = run_batch(app, "2025-04", employee_ids=[1, 2, 3, 4, 5], max_workers=3, calculate=calc)

    assert summary.total == 5
    assert sorted(s["employee_id"] for s in summary.succeeded) == [1, 2, 5]
    failed = {f["employee_id"]: f["code"] for f in summary.failed}
    assert failed == {3: "PAYROLL_PRECONDITION", 4: "INTERNAL"}
    assert not summary.cancelled
    # every worker got the batch-wide snapshot and configuration
    assert all(has_snap and has_cfg for _, _, has_snap, has_cfg, _ in calc.calls)
    # workers never touch batches
    assert not any(attach for *_, attach in calc.calls)


def test_workers_run_in_parallel(app):
    barrier = threading.Barrier(2, timeout=5)

    def calculate(emp_id, month, **kw):
        barrier.wait()
        return {"payroll_record_id": emp_id}

    summary = run_batch(app, "2025-04", employee_ids=[1, 2], max_workers=2, calculate=calculate)
    assert summary.failed == []
    assert len(summary.succeeded) == 2


def test_cancelled_batch_skips_remaining_employees(app):
    cancel = threading.Event()
    cancel.set()
    calc = _fake()
    summary = run_batch(app, "2025-04", employee_ids=[1, 2, 3], cancel=cancel, calculate=calc)
    assert summary.cancelled
    assert summary.skipped == [1, 2, 3]
    assert calc.calls == []


def test_empty_batch(app):
    summary = run_batch(app, "2025-04", employee_ids=[], calculate=_fake())
    assert summary.to_dict()["succeeded_count"] == 0
    assert summary.total == 0


def test_scope_selects_active_employees_with_a_register(session, make_employee):
    a = make_employee()
    make_employee(register=False)
    c = make_employee(status="inactive")
    other = make_employee(month="2025-05")
    assert employee_ids_for("2025-04") == [a.id]
    assert employee_ids_for("2025-05") == [other.id]
    assert employee_ids_for("2025-04", department_id=a.department_id + 100) == []
    assert c.id not in employee_ids_for("2025-04")


def test_database_batch(app, session, make_employee, hra_master, paysheet_config):
    a = make_employee()
    b = make_employee()
    # in-memory sqlite shares one connection, so keep to a single worker
    summary = run_batch(app, "2025-04", max_workers=1)
    assert summary.failed == []
    assert sorted(s["employee_id"] for s in summary.succeeded) == [a.id, b.id]
    assert {s["net_salary"] for s in summary.succeeded} == {32200}
    assert PayrollRecord.query.count() == 2
    batch_ids = {s["batch_id"] for s in summary.succeeded}
    assert len(batch_ids) == 1 and None not in batch_ids
    batch = db.session.get(PayrollBatch, batch_ids.pop())
    assert batch.total_employees == 2
    assert batch.total_net_salary == Decimal("64400.00")


@pytest.fixture
def file_app(tmp_path, monkeypatch):
    # a file database gives every worker thread its own connection
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'payroll.db'}")
    app = create_app()
    app.config["TESTING"] = True
    snapshot_cache.invalidate()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    snapshot_cache.invalidate()


def test_parallel_workers_share_one_batch(file_app):
    dept = Department(code="OPS", name="Operations")
    div = Division(code="PUN", name="Pune")
    db.session.add_all([dept, div])
    db.session.flush()
    ids = []
    for n in range(4):
        emp = Employee(emp_no=f"P{n:03d}", name=f"Worker {n}", department_id=dept.id,
                       division_id=div.id, gross_salary=Decimal("30000"))
        db.session.add(emp)
        db.session.flush()
        db.session.add(PayRegisterSummary(
            employee_id=emp.id, month="2025-04", total_days_in_month=30,
            present_days=24, weekly_offs=4, holidays=2, payable_shifts=24,
        ))
        ids.append(emp.id)
    PayrollConfiguration.get().replace({"outputColumns": [{"header": "Net", "field": "netSalary"}]})
    db.session.commit()

    barrier = threading.Barrier(4, timeout=10)

    def calculate(emp_id, month, **kw):
        # every worker reaches the calculation at the same time
        barrier.wait()
        return calculate_employee_payroll(emp_id, month, **kw)

    summary = run_batch(file_app, "2025-04", employee_ids=ids, max_workers=4, calculate=calculate)
    assert summary.failed == []

    db.session.expire_all()
    assert PayrollBatch.query.count() == 1
    batch = PayrollBatch.query.one()
    assert batch.batch_number == "PB-202504-OPS-PUN"
    assert {r.batch_id for r in PayrollRecord.query.all()} == {batch.id}
    assert {s["batch_id"] for s in summary.succeeded} == {batch.id}
    assert batch.total_employees == 4
    assert batch.total_net_salary == Decimal("120000.00")
