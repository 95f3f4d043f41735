from payroll_engine.services.rule_resolver import (
    RuleSnapshot,
    ScopedValue,
    SnapshotCache,
    load_snapshot,
    rank,
    resolve,
)
from payroll_engine.models.payroll.components import AllowanceDeductionMaster, ComponentRule
from payroll_engine.models.payroll.settings import PayrollSetting

CANDIDATES = [
    ScopedValue("global"),
    ScopedValue("dept", 1, None),
    ScopedValue("div", 1, 2),
    ScopedValue("other-dept", 9, None),
]


def test_rank_orders_by_specificity():
    tiers = [(tier, c.value) for tier, c in rank(CANDIDATES, 1, 2)]
    assert tiers == [("division_department", "div"), ("department", "dept"), ("global", "global")]


def test_resolve_first_tier_wins():
    assert resolve(CANDIDATES, 1, 2).value == "div"
    assert resolve(CANDIDATES, 1, 3).value == "dept"
    assert resolve(CANDIDATES, 1, None).value == "dept"
    assert resolve(CANDIDATES, 5, 2).value == "global"
    assert resolve([], 1, 2) is None


def test_merged_setting_fills_gaps_from_wider_scopes():
    snap = RuleSnapshot(settings={"overtime": (
        ScopedValue({"otPayPerHour": 100, "minOTHours": 1}),
        ScopedValue({"otPayPerHour": 150, "minOTHours": None}, 1, None),
    )})
    assert snap.merged_setting("overtime", 1, None) == {"otPayPerHour": 150, "minOTHours": 1}
    assert snap.merged_setting("overtime", 2, None) == {"otPayPerHour": 100, "minOTHours": 1}
    assert snap.merged_setting("missing") == {}


def test_setting_returns_copies():
    snap = RuleSnapshot(settings={"leave_policy": (ScopedValue({"earnedLeave": {"useAsPaidInPayroll": True}}),)})
    got = snap.setting("leave_policy")
    got["earnedLeave"]["useAsPaidInPayroll"] = False
    assert snap.setting("leave_policy")["earnedLeave"]["useAsPaidInPayroll"] is True
    assert snap.setting("nope", default=7) == 7


def test_cache_reuses_snapshot_until_invalidated():
    calls = []

    def loader():
        calls.append(1)
        return RuleSnapshot()

    cache = SnapshotCache(ttl_seconds=60, loader=loader)
    first = cache.get()
    assert cache.get() is first
    assert len(calls) == 1

    cache.invalidate()
    assert cache.get() is not first
    assert len(calls) == 2


def test_cache_expires_after_ttl():
    calls = []
    cache = SnapshotCache(ttl_seconds=0, loader=lambda: calls.append(1) or RuleSnapshot())
    cache.get()
    cache.get()
    assert len(calls) == 2


def test_load_snapshot_from_database(session, org):
    dept, div = org
    m = AllowanceDeductionMaster(name="HRA", category="allowance", global_rule={"type": "fixed", "amount": 1000})
    session.add(m)
    session.flush()
    session.add(ComponentRule(master_id=m.id, department_id=dept.id, division_id=None,
                              rule={"type": "fixed", "amount": 1500}))
    session.add(PayrollSetting(key="overtime", value_json={"otPayPerHour": 120}))
    session.commit()

    snap = load_snapshot()
    (hra,) = snap.masters_for("allowance")
    assert hra.resolve_rule(dept.id, div.id)["amount"] == 1500
    assert hra.resolve_rule(None, None)["amount"] == 1000
    assert snap.merged_setting("overtime") == {"otPayPerHour": 120}
    assert snap.statutory["pf"]["enabled"] is False
