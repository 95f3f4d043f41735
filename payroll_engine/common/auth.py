# payroll_engine/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Iterable, Set

from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from payroll_engine.common.http import fail


# ---------- helpers ----------

def _wildcard_match(user_perm: str, required: str) -> bool:
    """
    Match required permission against a user's permission with simple wildcards.
    Examples:
      user_perm: 'payroll.*'         matches required: 'payroll.config.write'
      user_perm: 'payroll.run.*'     matches required: 'payroll.run.execute'
      user_perm: 'payroll.run.read'  matches only exact
    """
    if user_perm == required:
        return True
    if user_perm.endswith(".*"):
        # keep the dot so "payroll.*" does not match "payrollx.read"
        return required.startswith(user_perm[:-1])
    return False


def _has_any_perm(user_perms: Set[str], required_perms: Iterable[str]) -> bool:
    if not required_perms:
        return True
    if not user_perms:
        return False
    return any(_wildcard_match(up, req) for req in required_perms for up in user_perms)


# ---------- decorators ----------

def requires_perms(*perm_codes: str):
    """
    Require that the current user has ANY of the given permission codes.

    Permissions and roles are read from the JWT claims ('perms', 'roles')
    issued by the identity service; the 'admin' role always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            if not perm_codes:
                return fn(*args, **kwargs)

            claims = get_jwt() or {}
            if "admin" in set(claims.get("roles") or []):
                return fn(*args, **kwargs)

            if get_jwt_identity() is None:
                return fail("Unauthorized", status=401)

            if not _has_any_perm(set(claims.get("perms") or []), perm_codes):
                return fail("Forbidden", status=403)
            return fn(*args, **kwargs)
        return inner
    return outer
