# payroll_engine/models/payroll/__init__.py
# Import order matters: masters first, then configuration, then records (which reference batches).
from payroll_engine.extensions import db  # noqa

from .components import AllowanceDeductionMaster, ComponentRule
from .cycle import PayCycle
from .settings import PayrollSetting
from .stat_config import StatutoryDeductionConfig
from .configuration import PayrollConfiguration
from .recoveries import Loan, Arrear
from .record import PayrollBatch, PayrollRecord

__all__ = [
    "AllowanceDeductionMaster", "ComponentRule",
    "PayCycle", "PayrollSetting", "StatutoryDeductionConfig",
    "PayrollConfiguration", "Loan", "Arrear",
    "PayrollBatch", "PayrollRecord",
]
