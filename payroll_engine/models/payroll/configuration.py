from datetime import datetime
from payroll_engine.extensions import db


def normalize_output_columns(columns):
    """Fill defaults: header 'Column N', formula ⇒ source formula, order = position."""
    out = []
    for i, c in enumerate(columns or []):
        if not isinstance(c, dict):
            continue
        formula = c.get("formula") if isinstance(c.get("formula"), str) else ""
        field = c.get("field") if isinstance(c.get("field"), str) else ""
        source = c.get("source")
        if source not in ("field", "formula"):
            source = "formula" if formula.strip() else "field"
        order = c.get("order")
        out.append({
            "header": (c.get("header") or "").strip() or f"Column {i + 1}",
            "source": source,
            "field": field.strip(),
            "formula": formula.strip(),
            "order": order if isinstance(order, (int, float)) and not isinstance(order, bool) else i,
        })
    return out


class PayrollConfiguration(db.Model):
    """Paysheet definition: ordered output columns drive the calculation."""
    __tablename__ = "payroll_configurations"

    id = db.Column(db.Integer, primary_key=True)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    output_columns = db.Column(db.JSON, nullable=False, default=list)
    # legacy step list; stored for old clients, never read by the calculation
    steps = db.Column(db.JSON, nullable=False, default=list)
    statutory_prorate_paid_days_column_header = db.Column(db.String(120), nullable=True)
    statutory_prorate_total_days_column_header = db.Column(db.String(120), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def get(cls):
        row = cls.query.order_by(cls.id.asc()).first()
        if row is None:
            row = cls(output_columns=[], steps=[])
            db.session.add(row)
            db.session.commit()
        return row

    def replace(self, payload):
        """Whole-document replace from an API payload."""
        if "enabled" in payload:
            self.enabled = bool(payload.get("enabled"))
        if isinstance(payload.get("outputColumns"), list):
            self.output_columns = normalize_output_columns(payload["outputColumns"])
        if isinstance(payload.get("steps"), list):
            self.steps = payload["steps"]
        for attr, key in (
            ("statutory_prorate_paid_days_column_header", "statutoryProratePaidDaysColumnHeader"),
            ("statutory_prorate_total_days_column_header", "statutoryProrateTotalDaysColumnHeader"),
        ):
            if key in payload:
                setattr(self, attr, (payload.get(key) or "").strip() or None)

    def as_dict(self):
        return {
            "enabled": bool(self.enabled),
            "outputColumns": normalize_output_columns(self.output_columns),
            "statutoryProratePaidDaysColumnHeader": self.statutory_prorate_paid_days_column_header,
            "statutoryProrateTotalDaysColumnHeader": self.statutory_prorate_total_days_column_header,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
