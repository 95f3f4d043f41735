from datetime import datetime
from payroll_engine.extensions import db


class PayrollSetting(db.Model):
    """
    Scoped payroll setting. Department/division NULL ⇒ global.

    Known keys and value shapes:
    - overtime: {"otPayPerHour": 120, "minOTHours": 1}
    - attendance_deduction: {"combinedCountThreshold": 3, "deductionType": "half_day",
      "deductionAmount": null, "calculationMode": "floor"}
    - permission_deduction: {"countThreshold": 3, "deductionType": "half_day",
      "deductionAmount": null, "calculationMode": "floor", "freeAllowedPerMonth": 0}
    - include_missing_components: true
    - leave_policy: {"earnedLeave": {"useAsPaidInPayroll": true}}
    """
    __tablename__ = "payroll_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=True)
    division_id = db.Column(db.Integer, db.ForeignKey("divisions.id", ondelete="CASCADE"), nullable=True)
    value_json = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("key", "department_id", "division_id", name="uq_payroll_setting_scope"),
        db.Index("ix_payroll_setting_key", "key"),
    )
