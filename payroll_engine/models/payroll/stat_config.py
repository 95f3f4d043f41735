import copy
from datetime import datetime
from payroll_engine.extensions import db

DEFAULT_ESI = {
    "enabled": False,
    "employeePercent": 0.75,
    "employerPercent": 3.25,
    "wageBasePercentOfBasic": 50,
    "wageCeiling": 21000,
}
DEFAULT_PF = {
    "enabled": False,
    "employeePercent": 12,
    "employerPercent": 12,
    "wageCeiling": 15000,
    "base": "basic",            # basic | basic_da
}
DEFAULT_PT = {
    "enabled": False,
    "slabs": [
        {"min": 0, "max": 14999, "amount": 0},
        {"min": 15000, "max": 19999, "amount": 150},
        {"min": 20000, "max": None, "amount": 200},
    ],
}


class StatutoryDeductionConfig(db.Model):
    """Single row holding ESI / PF / Profession Tax settings."""
    __tablename__ = "statutory_deduction_configs"

    id = db.Column(db.Integer, primary_key=True)
    esi = db.Column(db.JSON, nullable=False, default=lambda: copy.deepcopy(DEFAULT_ESI))
    pf = db.Column(db.JSON, nullable=False, default=lambda: copy.deepcopy(DEFAULT_PF))
    profession_tax = db.Column(db.JSON, nullable=False, default=lambda: copy.deepcopy(DEFAULT_PT))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def get(cls):
        row = cls.query.order_by(cls.id.asc()).first()
        if row is None:
            row = cls(esi=copy.deepcopy(DEFAULT_ESI), pf=copy.deepcopy(DEFAULT_PF),
                      profession_tax=copy.deepcopy(DEFAULT_PT))
            db.session.add(row)
            db.session.commit()
        return row

    def as_dict(self):
        return {
            "esi": {**DEFAULT_ESI, **(self.esi or {})},
            "pf": {**DEFAULT_PF, **(self.pf or {})},
            "professionTax": {**DEFAULT_PT, **(self.profession_tax or {})},
        }
