from datetime import datetime
from payroll_engine.extensions import db

class PayCycle(db.Model):
    __tablename__ = "pay_cycles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=True)
    # 1 ⇒ calendar month; N ⇒ N-th of previous month .. (N-1)-th of the month
    period_anchor_day = db.Column(db.Integer, nullable=False, default=1)
    active = db.Column(db.Boolean, default=True)
    effective_from = db.Column(db.Date, nullable=True)
    effective_to = db.Column(db.Date, nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=100)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_pay_cycles_resolve", "active", "effective_from", "effective_to", "priority"),
    )
