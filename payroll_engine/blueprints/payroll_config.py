from __future__ import annotations
from collections import Counter
from typing import Any, Dict, List, Tuple

from flask import Blueprint, request

from payroll_engine.extensions import db
from payroll_engine.common.auth import requires_perms
from payroll_engine.common.http import ok, fail
from payroll_engine.models.payroll.configuration import PayrollConfiguration, normalize_output_columns
from payroll_engine.models.payroll.stat_config import StatutoryDeductionConfig
from payroll_engine.services.field_paths import base_context, context_keys_for_header, header_to_key
from payroll_engine.services.formula import formula_variables, validate_formula
from payroll_engine.services.rule_resolver import snapshot_cache

bp = Blueprint("payroll_config", __name__, url_prefix="/api/v1/payroll")

# names every formula can see regardless of columns
_BASE_NAMES = frozenset(base_context({}))


# -------- helpers ----------
def _check_columns(columns: List[Dict[str, Any]]) -> Tuple[List[str], List[str]]:
    """(errors, warnings) for a normalized column list."""
    errors: List[str] = []
    warnings: List[str] = []

    used = set()
    for c in columns:
        if c["source"] == "formula":
            used |= formula_variables(c["formula"])
    dupes = [k for k, n in Counter(header_to_key(c["header"]) for c in columns).items() if n > 1]
    for k in dupes:
        if k in used:
            errors.append(f"header key {k!r} is used by a formula but is not unique")

    seen = set()
    for c in sorted(columns, key=lambda x: x["order"]):
        if c["source"] == "formula":
            problems = validate_formula(c["formula"], _BASE_NAMES | seen)
            for p in problems:
                msg = f"{c['header']}: {p}"
                # unknown names only read as 0; anything else never evaluates
                (warnings if p.startswith("unknown variable") else errors).append(msg)
        elif not c["field"]:
            errors.append(f"{c['header']}: field column without a field path")
        seen.update(context_keys_for_header(c["header"]))
    return errors, warnings


# -------- routes ----------
@bp.get("/config")
@requires_perms("payroll.config.read")
def get_config():
    return ok(PayrollConfiguration.get().as_dict())


@bp.put("/config")
@requires_perms("payroll.config.write")
def put_config():
    j = request.get_json(silent=True) or {}
    if "outputColumns" in j and not isinstance(j.get("outputColumns"), list):
        return fail("outputColumns must be an array", 422)

    warnings: List[str] = []
    if isinstance(j.get("outputColumns"), list):
        errors, warnings = _check_columns(normalize_output_columns(j["outputColumns"]))
        if errors:
            return fail("Invalid payroll configuration", 422, code="CONFIG_INVALID", errors=errors)

    cfg = PayrollConfiguration.get()
    cfg.replace(j)
    db.session.commit()
    if warnings:
        return ok(cfg.as_dict(), warnings=warnings)
    return ok(cfg.as_dict())


@bp.get("/statutory-config")
@requires_perms("payroll.config.read")
def get_statutory_config():
    return ok(StatutoryDeductionConfig.get().as_dict())


@bp.put("/statutory-config")
@requires_perms("payroll.config.write")
def put_statutory_config():
    j = request.get_json(silent=True) or {}
    row = StatutoryDeductionConfig.get()
    for attr, key in (("esi", "esi"), ("pf", "pf"), ("profession_tax", "professionTax")):
        if key in j:
            if not isinstance(j[key], dict):
                return fail(f"{key} must be an object", 422)
            setattr(row, attr, {**(getattr(row, attr) or {}), **j[key]})
    db.session.commit()
    # the calculation reads statutory settings from the rule snapshot
    snapshot_cache.invalidate()
    return ok(row.as_dict())
