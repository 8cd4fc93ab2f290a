"""
Identity & role gate.

Callers are resolved once at the HTTP edge into a ``Principal`` which is then
threaded explicitly into every engine call.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from worktime.core.exceptions import Forbidden, Unauthorized

ADMIN = "admin"
MANAGER = "manager"
EMPLOYEE = "employee"

ANY_ROLE = (ADMIN, MANAGER, EMPLOYEE)
PRIVILEGED = (ADMIN, MANAGER)


@dataclass(frozen=True)
class Principal:
    id: int
    role: str


def require_role(caller: Principal | None, allowed: Iterable[str]) -> Principal:
    """Return *caller* if it may act with one of the *allowed* roles."""
    if caller is None:
        raise Unauthorized()
    if caller.role not in tuple(allowed):
        raise Forbidden(f"Role '{caller.role}' is not permitted for this operation")
    return caller


def is_privileged(caller: Principal) -> bool:
    return caller.role in PRIVILEGED


def require_self_or_privileged(caller: Principal | None, owner_id: int) -> Principal:
    """Owners act on their own records; managers and admins on anyone's."""
    principal = require_role(caller, ANY_ROLE)
    if principal.id != owner_id and not is_privileged(principal):
        raise Forbidden("You can only access your own records")
    return principal
