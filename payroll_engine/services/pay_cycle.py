# payroll_engine/services/pay_cycle.py
from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Dict, Optional, Tuple

from sqlalchemy import or_

from payroll_engine.models.payroll.cycle import PayCycle

log = logging.getLogger(__name__)


def parse_month(month: str) -> Tuple[int, int]:
    """'2025-01' -> (2025, 1); raises ValueError on anything else."""
    try:
        y, m = (int(p) for p in str(month).split("-"))
    except (TypeError, ValueError):
        raise ValueError(f"month must be YYYY-MM, got {month!r}")
    if not (1 <= m <= 12) or y < 1900:
        raise ValueError(f"month must be YYYY-MM, got {month!r}")
    return y, m


def cycle_window(year: int, month: int, anchor_day: Optional[int]) -> Tuple[date, date]:
    """
    Pay-cycle window for a payroll month.

    anchor 1 (or unset) is the calendar month; anchor N covers the N-th of the
    previous month through the (N-1)-th of the payroll month.
    """
    last = calendar.monthrange(year, month)[1]
    if not anchor_day or anchor_day <= 1:
        return date(year, month, 1), date(year, month, last)
    py, pm = (year - 1, 12) if month == 1 else (year, month - 1)
    prev_last = calendar.monthrange(py, pm)[1]
    start = date(py, pm, min(anchor_day, prev_last))
    end = date(year, month, min(anchor_day - 1, last))
    return start, end


def _resolve_pay_cycle(period_start: date, period_end: date) -> Optional[PayCycle]:
    """Active cycle effective over the period; lower priority wins, then latest effective_from."""
    q = (
        PayCycle.query
        .filter(PayCycle.active.is_(True))
        .filter(or_(PayCycle.effective_from.is_(None), PayCycle.effective_from <= period_start))
        .filter(or_(PayCycle.effective_to.is_(None), PayCycle.effective_to >= period_end))
        .order_by(PayCycle.priority.asc(), PayCycle.effective_from.desc(), PayCycle.id.desc())
    )
    cyc = q.first()
    if cyc is None:
        # fallback: any active cycle
        cyc = (
            PayCycle.query.filter(PayCycle.active.is_(True))
            .order_by(PayCycle.priority.asc(), PayCycle.id.desc())
            .first()
        )
    return cyc


def payroll_date_range(month: str) -> Dict[str, object]:
    """{start, end, total_days} for the month's configured pay cycle."""
    year, mon = parse_month(month)
    first = date(year, mon, 1)
    last = date(year, mon, calendar.monthrange(year, mon)[1])
    cyc = _resolve_pay_cycle(first, last)
    anchor = cyc.period_anchor_day if cyc else 1
    start, end = cycle_window(year, mon, anchor)
    return {
        "start": start,
        "end": end,
        "total_days": (end - start).days + 1,
        "anchor_day": anchor,
    }
