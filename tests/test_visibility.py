from __future__ import annotations

import pytest

from conftest import days_ago, seed_infraction
from manager_hub.infractions import InfractionService
from manager_hub.roster import (
    EmployeeDetail,
    NotFound,
    PermissionDenied,
    get_employee_detail,
    get_employees_with_points,
)
from manager_hub.visibility import RequestContext, check_view_permission, filter_employees_by_visibility

MANAGER = RequestContext(role="Manager", user_id="mgr-1")
DIRECTOR = RequestContext(role="Director", user_id="dir-1")
SENIOR_DIRECTOR = RequestContext(role="Director", user_id="dir-2", can_see_directors=True)
OPERATOR = RequestContext(role="Operator", user_id="op-1")


@pytest.mark.parametrize(
    ("context", "target", "expected"),
    [
        (MANAGER, None, True),
        (MANAGER, "", True),
        (MANAGER, "Manager", False),
        (MANAGER, "Director", False),
        (DIRECTOR, None, True),
        (DIRECTOR, "Manager", True),
        (DIRECTOR, "Director", False),
        (SENIOR_DIRECTOR, "Director", True),
        (OPERATOR, "Director", True),
        (OPERATOR, "manager", True),
        (OPERATOR, "Operator", False),
        (SENIOR_DIRECTOR, "Operator", False),
        (DIRECTOR, "Owner", False),
        (RequestContext(role="Intern", user_id="x"), None, False),
    ],
)
def test_view_permission_table(context, target, expected):
    assert check_view_permission(context, target) is expected


def test_director_without_flag_sees_only_hourly_and_managers(roster):
    rows = get_employees_with_points(roster, DIRECTOR)

    assert {row.employee_id for row in rows} == {"E100", "E200"}
    assert all(row.system_role not in ("Director", "Operator") for row in rows)


def test_operator_never_appears_in_any_list(roster):
    for context in (MANAGER, DIRECTOR, SENIOR_DIRECTOR, OPERATOR):
        ids = {row.employee_id for row in get_employees_with_points(roster, context)}
        assert "E400" not in ids


def test_filter_accepts_plain_dicts():
    employees = [{"employee_id": "a", "system_role": None}, {"employee_id": "b", "system_role": "Manager"}]

    assert filter_employees_by_visibility(MANAGER, employees) == [employees[0]]


def test_employee_list_sorted_by_points_and_skips_inactive(roster):
    seed_infraction(roster, "E200", days_ago(3), 5)
    seed_infraction(roster, "E100", days_ago(3), 1)

    rows = get_employees_with_points(roster, OPERATOR)

    assert [row.employee_id for row in rows] == ["E200", "E100", "E300"]
    assert rows[0].total_points == 5
    assert rows[0].active_infraction_count == 1
    with_inactive = get_employees_with_points(roster, OPERATOR, include_inactive=True)
    assert "E500" in {row.employee_id for row in with_inactive}


def test_detail_checks_existence_then_permission(roster):
    assert isinstance(get_employee_detail(roster, "E999", MANAGER), NotFound)

    denied = get_employee_detail(roster, "E300", MANAGER)
    assert isinstance(denied, PermissionDenied)
    assert denied.message == "You do not have permission to view this employee."


def test_detail_includes_history_and_audit(roster):
    seed_infraction(roster, "E100", days_ago(200), 4)
    recent = seed_infraction(roster, "E100", days_ago(2), 3)
    reason = "Entered against the wrong shift after a schedule swap. " * 6
    InfractionService(roster).edit_infraction(recent.infraction_id, {"points": 2}, reason, "dir-1")

    detail = get_employee_detail(roster, "E100", DIRECTOR)

    assert isinstance(detail, EmployeeDetail)
    assert detail.points.total_points == 2
    assert len(detail.points.expired_infractions) == 1
    assert [i.infraction_id for i in detail.infractions][0] == recent.infraction_id
    assert detail.highest_points_ever == 6
    assert [e.field_changed for e in detail.edit_history] == ["points"]
    assert detail.termination is None
