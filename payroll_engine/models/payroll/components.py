from datetime import datetime
from payroll_engine.extensions import db


class AllowanceDeductionMaster(db.Model):
    """An allowance or deduction definition with its global rule."""
    __tablename__ = "allowance_deduction_masters"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    category = db.Column(db.Enum("allowance", "deduction", name="component_category"), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    # {type: fixed|percentage, amount, percentage, percentageBase: basic|gross,
    #  minAmount, maxAmount, basedOnPresentDays}
    global_rule = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    rules = db.relationship("ComponentRule", back_populates="master", lazy="selectin",
                            cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("category", "name", name="uq_component_master_name"),
    )


class ComponentRule(db.Model):
    """Department (optionally division-scoped) rule overriding a master's global rule."""
    __tablename__ = "component_rules"

    id = db.Column(db.Integer, primary_key=True)
    master_id = db.Column(db.Integer, db.ForeignKey("allowance_deduction_masters.id", ondelete="CASCADE"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    division_id = db.Column(db.Integer, db.ForeignKey("divisions.id", ondelete="CASCADE"), nullable=True)
    rule = db.Column(db.JSON, nullable=False)

    master = db.relationship("AllowanceDeductionMaster", back_populates="rules")

    __table_args__ = (
        db.UniqueConstraint("master_id", "department_id", "division_id", name="uq_component_rule_scope"),
    )
