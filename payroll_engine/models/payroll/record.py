from datetime import datetime
from payroll_engine.extensions import db


class PayrollBatch(db.Model):
    __tablename__ = "payroll_batches"

    id = db.Column(db.Integer, primary_key=True)
    batch_number = db.Column(db.String(64), nullable=False, unique=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False)
    division_id = db.Column(db.Integer, db.ForeignKey("divisions.id", ondelete="RESTRICT"), nullable=True)
    month = db.Column(db.String(7), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    month_number = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum("pending", "calculated", "approved", "freeze", "complete", name="payroll_batch_status"),
        nullable=False, default="pending",
    )
    recalculation_allowed = db.Column(db.Boolean, default=False, nullable=False)
    recalculation_expires_at = db.Column(db.DateTime, nullable=True)
    recalculation_requested_by = db.Column(db.String(64), nullable=True)
    recalculation_requested_at = db.Column(db.DateTime, nullable=True)
    recalculation_granted_by = db.Column(db.String(64), nullable=True)
    recalculation_granted_at = db.Column(db.DateTime, nullable=True)
    recalculation_reason = db.Column(db.String(255), nullable=True)
    total_employees = db.Column(db.Integer, default=0, nullable=False)
    total_gross_salary = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    total_deductions = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    total_net_salary = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    total_arrears = db.Column(db.Numeric(14, 2), default=0, nullable=False)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    frozen_by = db.Column(db.String(64), nullable=True)
    frozen_at = db.Column(db.DateTime, nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    status_history = db.Column(db.JSON, nullable=True)       # [{status, from, by, at, reason}]
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    records = db.relationship("PayrollRecord", back_populates="batch", lazy="selectin")

    def recalculation_permitted(self, now=None) -> bool:
        """Granted and not expired."""
        if not self.recalculation_allowed:
            return False
        now = now or datetime.utcnow()
        return self.recalculation_expires_at is None or self.recalculation_expires_at > now

    __table_args__ = (
        db.UniqueConstraint("department_id", "division_id", "month", name="uq_payroll_batch_scope"),
    )


class PayrollRecord(db.Model):
    """System of record for one employee-month; recalculation replaces it in place."""
    __tablename__ = "payroll_records"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("payroll_batches.id", ondelete="SET NULL"), nullable=True)
    emp_no = db.Column(db.String(32), nullable=False)
    month = db.Column(db.String(7), nullable=False)
    month_name = db.Column(db.String(32), nullable=True)
    year = db.Column(db.Integer, nullable=False)
    month_number = db.Column(db.Integer, nullable=False)
    department_id = db.Column(db.Integer, nullable=True)
    division_id = db.Column(db.Integer, nullable=True)

    total_days_in_month = db.Column(db.Float, nullable=True)
    total_payable_shifts = db.Column(db.Float, nullable=True)
    el_used_in_payroll = db.Column(db.Float, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="calculated")

    net_salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    round_off = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    attendance = db.Column(db.JSON, nullable=False, default=dict)
    earnings = db.Column(db.JSON, nullable=False, default=dict)
    deductions = db.Column(db.JSON, nullable=False, default=dict)
    loan_advance = db.Column(db.JSON, nullable=False, default=dict)
    arrears = db.Column(db.JSON, nullable=False, default=dict)
    paysheet_row = db.Column(db.JSON, nullable=False, default=dict)

    calculated_at = db.Column(db.DateTime, default=datetime.utcnow)

    batch = db.relationship("PayrollBatch", back_populates="records")
    employee = db.relationship("Employee", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month", name="uq_payroll_record_emp_month"),
        db.Index("ix_payroll_record_month", "month"),
    )
