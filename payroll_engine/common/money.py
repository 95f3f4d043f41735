# payroll_engine/common/money.py
from __future__ import annotations
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")


def D(x: Any) -> Decimal:
    """Decimal from anything numeric; None/''/garbage become 0."""
    if x is None or x == "":
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, bool):
        return Decimal(int(x))
    try:
        d = Decimal(str(x))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")
    if not d.is_finite():
        return Decimal("0")
    return d


def num(x: Any) -> float:
    """Numeric coercion used for context values: non-numeric -> 0."""
    if isinstance(x, bool):
        return float(x)
    if isinstance(x, (int, float)):
        return float(x) if math.isfinite(x) else 0.0
    if isinstance(x, Decimal):
        return float(x) if x.is_finite() else 0.0
    if isinstance(x, str):
        s = x.strip()
        if not s:
            return 0.0
        try:
            f = float(s)
        except ValueError:
            return 0.0
        return f if math.isfinite(f) else 0.0
    return 0.0


def round2(x: Any) -> float:
    return float(D(x).quantize(CENT, rounding=ROUND_HALF_UP))
