from datetime import datetime
from payroll_engine.extensions import db


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True)
    division_id   = db.Column(db.Integer, db.ForeignKey("divisions.id", ondelete="RESTRICT"), nullable=True)

    emp_no = db.Column(db.String(32), nullable=False, unique=True)
    name   = db.Column(db.String(160), nullable=False)
    designation = db.Column(db.String(120), nullable=True)
    location    = db.Column(db.String(120), nullable=True)

    bank_account_no = db.Column(db.String(40), nullable=True)
    bank_name       = db.Column(db.String(120), nullable=True)
    salary_mode     = db.Column(db.String(20), nullable=True)   # bank/cash/cheque
    pf_number       = db.Column(db.String(40), nullable=True)
    esi_number      = db.Column(db.String(40), nullable=True)
    doj = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), default="active", nullable=False)   # active/inactive

    # compensation profile
    gross_salary = db.Column(db.Numeric(12, 2), nullable=True)
    paid_leaves  = db.Column(db.Float, default=0.0)              # earned-leave balance
    apply_esi = db.Column(db.Boolean, default=True, nullable=False)
    apply_pf  = db.Column(db.Boolean, default=True, nullable=False)
    apply_profession_tax = db.Column(db.Boolean, default=True, nullable=False)
    apply_attendance_deduction = db.Column(db.Boolean, default=True, nullable=False)
    deduct_late_in    = db.Column(db.Boolean, default=True, nullable=False)
    deduct_early_out  = db.Column(db.Boolean, default=True, nullable=False)
    deduct_permission = db.Column(db.Boolean, default=True, nullable=False)
    deduct_absent     = db.Column(db.Boolean, default=True, nullable=False)
    # [{masterId|name, type, amount|percentage, base, minAmount, maxAmount, basedOnPresentDays}]
    allowance_overrides = db.Column(db.JSON, nullable=False, default=list)
    deduction_overrides = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_emp_dept_div", "department_id", "division_id"),
    )

    department = db.relationship("Department", lazy="joined")
    division   = db.relationship("Division", lazy="joined")
