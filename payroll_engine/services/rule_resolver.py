# payroll_engine/services/rule_resolver.py
from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from payroll_engine.models.payroll.components import AllowanceDeductionMaster
from payroll_engine.models.payroll.settings import PayrollSetting
from payroll_engine.models.payroll.stat_config import StatutoryDeductionConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopedValue:
    """A rule or setting value and the scope it applies to (None = any)."""
    value: Any
    department_id: Optional[int] = None
    division_id: Optional[int] = None


# ---------- ranked resolvers ----------
# Each resolver picks candidates for one tier; the first tier with a match wins.

def _division_department(c: ScopedValue, department_id, division_id) -> bool:
    return (
        division_id is not None and department_id is not None
        and c.department_id == department_id and c.division_id == division_id
    )


def _department_only(c: ScopedValue, department_id, division_id) -> bool:
    return department_id is not None and c.department_id == department_id and c.division_id is None


def _global(c: ScopedValue, department_id, division_id) -> bool:
    return c.department_id is None and c.division_id is None


RESOLVERS: Tuple[Tuple[str, Callable[..., bool]], ...] = (
    ("division_department", _division_department),
    ("department", _department_only),
    ("global", _global),
)


def rank(candidates: Iterable[ScopedValue], department_id=None, division_id=None) -> List[Tuple[str, ScopedValue]]:
    """All applicable candidates in resolution order, tagged with their tier."""
    pool = list(candidates)
    out: List[Tuple[str, ScopedValue]] = []
    for tier, matches in RESOLVERS:
        out.extend((tier, c) for c in pool if matches(c, department_id, division_id))
    return out


def resolve(candidates: Iterable[ScopedValue], department_id=None, division_id=None) -> Optional[ScopedValue]:
    ranked = rank(candidates, department_id, division_id)
    return ranked[0][1] if ranked else None


# ---------- rule master snapshot ----------

@dataclass(frozen=True)
class MasterDef:
    id: int
    name: str
    category: str                 # allowance | deduction
    is_active: bool
    rules: Tuple[ScopedValue, ...] = ()

    def resolve_rule(self, department_id=None, division_id=None) -> Optional[Dict[str, Any]]:
        """Effective rule for the scope: division+department, department, then global."""
        if not self.is_active:
            return None
        hit = resolve(self.rules, department_id, division_id)
        if hit is None or not hit.value:
            return None
        return dict(hit.value)


@dataclass(frozen=True)
class RuleSnapshot:
    """Read-only view of rule masters, scoped settings and statutory config."""
    masters: Tuple[MasterDef, ...] = ()
    settings: Mapping[str, Tuple[ScopedValue, ...]] = field(default_factory=lambda: MappingProxyType({}))
    statutory: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: float = 0.0

    def masters_for(self, category: str) -> List[MasterDef]:
        return [m for m in self.masters if m.category == category]

    def setting(self, key: str, department_id=None, division_id=None, default=None):
        hit = resolve(self.settings.get(key, ()), department_id, division_id)
        if hit is None or hit.value is None:
            return default
        return copy.deepcopy(hit.value)

    def merged_setting(self, key: str, department_id=None, division_id=None) -> Dict[str, Any]:
        """Dict setting merged field by field; the more specific scope wins where it is not None."""
        out: Dict[str, Any] = {}
        for _, c in reversed(rank(self.settings.get(key, ()), department_id, division_id)):
            if isinstance(c.value, Mapping):
                out.update({k: copy.deepcopy(v) for k, v in c.value.items() if v is not None})
        return out


def load_snapshot() -> RuleSnapshot:
    """Read masters, settings and statutory config from the database."""
    masters: List[MasterDef] = []
    for m in AllowanceDeductionMaster.query.order_by(AllowanceDeductionMaster.id.asc()).all():
        rules = [
            ScopedValue(copy.deepcopy(r.rule), r.department_id, r.division_id)
            for r in m.rules
        ]
        if m.global_rule:
            rules.append(ScopedValue(copy.deepcopy(m.global_rule)))
        masters.append(MasterDef(m.id, m.name, m.category, bool(m.is_active), tuple(rules)))

    settings: Dict[str, List[ScopedValue]] = {}
    for s in PayrollSetting.query.order_by(PayrollSetting.id.asc()).all():
        settings.setdefault(s.key, []).append(ScopedValue(copy.deepcopy(s.value_json), s.department_id, s.division_id))

    statutory = StatutoryDeductionConfig.get().as_dict()
    return RuleSnapshot(
        masters=tuple(masters),
        settings=MappingProxyType({k: tuple(v) for k, v in settings.items()}),
        statutory=MappingProxyType(statutory),
        loaded_at=time.time(),
    )


class SnapshotCache:
    """Time-boxed cache of the rule snapshot shared by batch workers."""

    def __init__(self, ttl_seconds: float = 60.0, loader: Callable[[], RuleSnapshot] = load_snapshot):
        self.ttl = ttl_seconds
        self._loader = loader
        self._lock = threading.Lock()
        self._snap: Optional[RuleSnapshot] = None
        self._expires = 0.0

    def get(self) -> RuleSnapshot:
        with self._lock:
            now = time.monotonic()
            if self._snap is None or now >= self._expires:
                self._snap = self._loader()
                self._expires = now + self.ttl
                log.debug("rule snapshot reloaded (%d masters)", len(self._snap.masters))
            return self._snap

    def invalidate(self) -> None:
        with self._lock:
            self._snap = None
            self._expires = 0.0


snapshot_cache = SnapshotCache()
