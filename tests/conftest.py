import os
from decimal import Decimal

import pytest

from payroll_engine import create_app
from payroll_engine.extensions import db
from payroll_engine.models.master import Department, Division
from payroll_engine.models.employee import Employee
from payroll_engine.models.attendance_rollup import PayRegisterSummary
from payroll_engine.models.payroll.components import AllowanceDeductionMaster
from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.services.rule_resolver import snapshot_cache


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    snapshot_cache.invalidate()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    snapshot_cache.invalidate()


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        yield db.session


@pytest.fixture
def org(session):
    dept = Department(code="ENG", name="Engineering")
    div = Division(code="BLR", name="Bangalore")
    session.add_all([dept, div])
    session.commit()
    return dept, div


@pytest.fixture
def make_employee(session, org):
    dept, div = org
    counter = {"n": 0}

    def _make(month="2025-04", gross=30000, register=True, **kw):
        counter["n"] += 1
        emp = Employee(
            emp_no=kw.pop("emp_no", f"E{counter['n']:03d}"),
            name=kw.pop("name", f"Employee {counter['n']}"),
            department_id=kw.pop("department_id", dept.id),
            division_id=kw.pop("division_id", div.id),
            designation="Engineer",
            gross_salary=Decimal(str(gross)),
            allowance_overrides=kw.pop("allowance_overrides", []),
            deduction_overrides=kw.pop("deduction_overrides", []),
            **kw,
        )
        session.add(emp)
        session.flush()
        if register:
            session.add(PayRegisterSummary(
                employee_id=emp.id,
                month=month,
                total_days_in_month=30,
                present_days=20,
                paid_leave_days=2,
                weekly_offs=4,
                holidays=2,
                payable_shifts=22,
            ))
        session.commit()
        return emp

    return _make


@pytest.fixture
def hra_master(session):
    m = AllowanceDeductionMaster(
        name="HRA",
        category="allowance",
        global_rule={"type": "fixed", "amount": 3000, "basedOnPresentDays": True},
    )
    session.add(m)
    session.commit()
    return m


@pytest.fixture
def paysheet_config(session):
    cfg = PayrollConfiguration.get()
    cfg.replace({"outputColumns": [
        {"header": "Emp No", "field": "employee.emp_no"},
        {"header": "Basic Pay", "field": "earnings.basicPay"},
        {"header": "HRA", "field": "earnings.allowanceAmount:HRA"},
        {"header": "Gross", "field": "earnings.grossSalary"},
        {"header": "Net Salary", "field": "netSalary"},
    ]})
    session.commit()
    return cfg
