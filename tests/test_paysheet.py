from openpyxl import load_workbook

from payroll_engine.models.payroll.configuration import PayrollConfiguration
from payroll_engine.models.payroll.record import PayrollRecord
from payroll_engine.services.payslip_service import PayslipService
from payroll_engine.services.paysheet_export import build_paysheet_workbook, paysheet_rows


def _record(session, emp, row, month="2025-04"):
    session.add(PayrollRecord(
        employee_id=emp.id, emp_no=emp.emp_no, month=month, year=2025, month_number=4,
        department_id=emp.department_id, division_id=emp.division_id, paysheet_row=row,
    ))
    session.commit()


def test_rows_follow_configured_column_order(session, make_employee):
    cfg = PayrollConfiguration.get()
    cfg.replace({"outputColumns": [
        {"header": "Net", "field": "netSalary", "order": 2},
        {"header": "Emp No", "field": "employee.emp_no", "order": 1},
    ]})
    session.commit()
    a = make_employee()
    b = make_employee()
    _record(session, b, {"Emp No": b.emp_no, "Net": 200, "Old Column": 5})
    _record(session, a, {"Emp No": a.emp_no, "Net": 100})

    headers, rows = paysheet_rows("2025-04")
    assert headers == ["Emp No", "Net", "Old Column"]
    assert [r["Emp No"] for r in rows] == [a.emp_no, b.emp_no]
    assert paysheet_rows("2025-04", department_id=a.department_id + 1)[1] == []


def test_workbook_has_serial_numbers_and_totals(session, make_employee):
    PayrollConfiguration.get().replace({"outputColumns": [
        {"header": "Emp No", "field": "employee.emp_no"},
        {"header": "Net", "field": "netSalary"},
    ]})
    session.commit()
    a = make_employee()
    b = make_employee()
    _record(session, a, {"Emp No": a.emp_no, "Net": 100.25})
    _record(session, b, {"Emp No": b.emp_no, "Net": 200})

    ws = load_workbook(build_paysheet_workbook("2025-04")).active
    rows = list(ws.iter_rows(values_only=True))
    assert ws.title == "PAYSHEET"
    assert rows[0] == ("SR.NO", "Emp No", "Net")
    assert [r[0] for r in rows[1:3]] == [1, 2]
    assert rows[3] == ("TOTAL", None, 300.25)
    assert ws.freeze_panes == "B2"


def test_empty_month_has_header_only(session):
    ws = load_workbook(build_paysheet_workbook("2030-01")).active
    assert ws.max_row == 1


def test_payslip_document():
    record = {
        "month": "April 2025", "monthNumber": 4, "year": 2025,
        "employee": {"emp_no": "E001", "name": "Asha"},
        "attendance": {"presentDays": 20},
        "earnings": {
            "basicPay": 30000, "earnedSalary": 30000, "perDayBasicPay": 1000, "incentive": 0,
            "otPay": 600, "grossSalary": 32800, "totalAllowances": 2200,
            "allowances": [{"name": "HRA", "amount": 2200, "type": "fixed", "base": "basic"}],
        },
        "deductions": {
            "attendanceDeduction": 500, "statutoryCumulative": 1800, "totalDeductions": 4300,
            "statutoryDeductions": [{"code": "PF", "name": "PF", "employeeAmount": 1800, "employerAmount": 1800}],
        },
        "loanAdvance": {"totalEMI": 2000},
        "netSalary": 28500, "roundOff": 0,
    }
    dto = PayslipService().build_payslip_dto(record, {"Net": 28500})

    assert [e["code"] or e["name"] for e in dto["earnings"]] == ["BASIC", "OT", "HRA"]
    assert [d["code"] for d in dto["deductions"]] == ["ATTENDANCE", "PF", "LOAN_EMI"]
    assert dto["deductions"][1]["employer_amount"] == 1800
    assert dto["totals"] == {"gross_pay": 32800, "total_deductions": 4300, "net_pay": 28500, "round_off": 0}
    assert dto["row"] == {"Net": 28500}
    assert dto["status"] == "calculated"
