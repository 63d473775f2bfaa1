from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

ROLE_MANAGER = "Manager"
ROLE_DIRECTOR = "Director"
ROLE_OPERATOR = "Operator"
REQUESTER_ROLES = (ROLE_MANAGER, ROLE_DIRECTOR, ROLE_OPERATOR)

HOURLY = "hourly"
_HOURLY_ALIASES = {"", "none", "hourly", "employee"}

# requester role -> target system roles it may see. Directors additionally see
# Directors when can_see_directors is set; Operator is absent from every row.
VISIBLE_TARGETS: dict[str, frozenset[str]] = {
    ROLE_OPERATOR: frozenset({HOURLY, ROLE_MANAGER, ROLE_DIRECTOR}),
    ROLE_DIRECTOR: frozenset({HOURLY, ROLE_MANAGER}),
    ROLE_MANAGER: frozenset({HOURLY}),
}

T = TypeVar("T")


@dataclass(frozen=True)
class RequestContext:
    role: str
    user_id: str
    can_see_directors: bool = False


def normalize_role(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    for role in REQUESTER_ROLES:
        if text.lower() == role.lower():
            return role
    return None


def target_role_key(system_role: str | None) -> str | None:
    if system_role is None or system_role.strip().lower() in _HOURLY_ALIASES:
        return HOURLY
    return normalize_role(system_role)


def check_view_permission(context: RequestContext, target_system_role: str | None) -> bool:
    requester = normalize_role(context.role)
    target = target_role_key(target_system_role)
    if requester is None or target is None or target == ROLE_OPERATOR:
        return False
    if target in VISIBLE_TARGETS[requester]:
        return True
    return requester == ROLE_DIRECTOR and target == ROLE_DIRECTOR and context.can_see_directors


def _system_role_of(item: Any) -> str | None:
    if isinstance(item, dict):
        return item.get("system_role")
    return getattr(item, "system_role", None)


def filter_employees_by_visibility(context: RequestContext, employees: Iterable[T]) -> list[T]:
    return [employee for employee in employees if check_view_permission(context, _system_role_of(employee))]
