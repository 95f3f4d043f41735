from datetime import date

import pytest

from payroll_engine.extensions import db
from payroll_engine.models.payroll.cycle import PayCycle
from payroll_engine.services.pay_cycle import _resolve_pay_cycle, cycle_window, parse_month, payroll_date_range


def test_parse_month():
    assert parse_month("2025-01") == (2025, 1)
    for bad in ("2025-13", "2025", "Jan-2025", None, "1800-01"):
        with pytest.raises(ValueError):
            parse_month(bad)


def test_calendar_and_anchored_windows():
    assert cycle_window(2025, 4, 1) == (date(2025, 4, 1), date(2025, 4, 30))
    assert cycle_window(2025, 3, 26) == (date(2025, 2, 26), date(2025, 3, 25))
    assert cycle_window(2025, 1, 26) == (date(2024, 12, 26), date(2025, 1, 25))
    # anchor past the end of a short month
    assert cycle_window(2025, 3, 31) == (date(2025, 2, 28), date(2025, 3, 30))


def test_cycle_resolution_matches_and_priority(app):
    # Two active cycles with overlapping windows; priority decides
    a = PayCycle(period_anchor_day=1, active=True, effective_from=date(2025, 1, 1), priority=20)
    b = PayCycle(period_anchor_day=1, active=True, effective_from=date(2025, 6, 1), priority=10)
    db.session.add_all([a, b]); db.session.commit()
    got = _resolve_pay_cycle(date(2025, 9, 1), date(2025, 9, 30))
    assert got.id == b.id


def test_cycle_resolution_latest_effective_from_tie(app):
    a = PayCycle(period_anchor_day=1, active=True, effective_from=date(2025, 1, 1), priority=10)
    b = PayCycle(period_anchor_day=1, active=True, effective_from=date(2025, 7, 1), priority=10)
    db.session.add_all([a, b]); db.session.commit()
    got = _resolve_pay_cycle(date(2025, 9, 1), date(2025, 9, 30))
    assert got.id == b.id


def test_cycle_resolution_fallback_any_active(app):
    # windows don't cover the period; fall back to any active by priority
    a = PayCycle(period_anchor_day=1, active=True,
                 effective_from=date(2024, 1, 1), effective_to=date(2024, 12, 31), priority=20)
    b = PayCycle(period_anchor_day=1, active=True,
                 effective_from=date(2025, 1, 1), effective_to=date(2025, 3, 31), priority=10)
    db.session.add_all([a, b]); db.session.commit()
    got = _resolve_pay_cycle(date(2025, 9, 1), date(2025, 9, 30))
    assert got.id == b.id


def test_cycle_resolution_no_active_returns_none(app):
    db.session.add(PayCycle(period_anchor_day=26, active=False)); db.session.commit()
    assert _resolve_pay_cycle(date(2025, 9, 1), date(2025, 9, 30)) is None


def test_payroll_date_range_uses_the_cycle(app):
    assert payroll_date_range("2025-03")["total_days"] == 31

    db.session.add(PayCycle(name="26th to 25th", period_anchor_day=26, active=True)); db.session.commit()
    rng = payroll_date_range("2025-03")
    assert rng["start"] == date(2025, 2, 26)
    assert rng["end"] == date(2025, 3, 25)
    assert rng["total_days"] == 28
