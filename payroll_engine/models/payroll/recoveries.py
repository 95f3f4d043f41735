from datetime import datetime
from payroll_engine.extensions import db


class Loan(db.Model):
    """Loan (EMI recovery) or salary advance (balance recovery)."""
    __tablename__ = "loans"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.Enum("loan", "salary_advance", name="loan_kind"), nullable=False, default="loan")
    status = db.Column(db.String(20), nullable=False, default="active")   # active/closed/cancelled
    principal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    emi_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Arrear(db.Model):
    __tablename__ = "arrears"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    # pending/approved/partially_settled/settled/rejected
    status = db.Column(db.String(20), nullable=False, default="pending")
    reason = db.Column(db.String(255), nullable=True)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
