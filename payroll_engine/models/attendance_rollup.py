from datetime import datetime
from payroll_engine.extensions import db


class PayRegisterSummary(db.Model):
    """Monthly attendance aggregate per employee, as produced by the pay register."""
    __tablename__ = "pay_register_summaries"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    month = db.Column(db.String(7), nullable=False)       # YYYY-MM

    total_days_in_month = db.Column(db.Float, nullable=True)
    present_days = db.Column(db.Float, default=0.0)
    paid_leave_days = db.Column(db.Float, default=0.0)
    od_days = db.Column(db.Float, default=0.0)
    weekly_offs = db.Column(db.Float, default=0.0)
    holidays = db.Column(db.Float, default=0.0)
    absent_days = db.Column(db.Float, default=0.0)
    payable_shifts = db.Column(db.Float, nullable=True)
    lop_days = db.Column(db.Float, default=0.0)
    total_leave_days = db.Column(db.Float, default=0.0)
    extra_days = db.Column(db.Float, default=0.0)
    ot_hours = db.Column(db.Float, default=0.0)
    ot_days = db.Column(db.Float, default=0.0)
    late_count = db.Column(db.Integer, default=0)
    early_out_count = db.Column(db.Integer, default=0)
    permission_count = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month", name="uq_pay_register_emp_month"),
    )

    def totals(self):
        return {
            "total_days_in_month": self.total_days_in_month,
            "present_days": self.present_days,
            "paid_leave_days": self.paid_leave_days,
            "od_days": self.od_days,
            "weekly_offs": self.weekly_offs,
            "holidays": self.holidays,
            "absent_days": self.absent_days,
            "payable_shifts": self.payable_shifts,
            "lop_days": self.lop_days,
            "total_leave_days": self.total_leave_days,
            "extra_days": self.extra_days,
            "ot_hours": self.ot_hours,
            "ot_days": self.ot_days,
            "late_count": self.late_count,
            "early_out_count": self.early_out_count,
            "permission_count": self.permission_count,
        }
