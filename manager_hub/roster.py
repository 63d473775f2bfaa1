from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

from manager_hub.models import COUNTING_STATUSES, EditLogEntry, EmployeeRecord, Infraction, TerminationRecord
from manager_hub.points import PointSummary, as_day, highest_points_ever, summarize_points
from manager_hub.policy import PointsPolicy
from manager_hub.store import RecordStore
from manager_hub.visibility import RequestContext, check_view_permission, filter_employees_by_visibility

PERMISSION_DENIED_MESSAGE = "You do not have permission to view this employee."


@dataclass
class EmployeePoints:
    employee_id: str
    full_name: str
    primary_location: str
    status: str
    system_role: str | None
    total_points: float
    active_infraction_count: int
    next_expiration_date: date | None
    highest_points_ever: float


@dataclass
class EmployeeDetail:
    employee: EmployeeRecord
    points: PointSummary
    highest_points_ever: float
    infractions: list[Infraction] = field(default_factory=list)
    edit_history: list[EditLogEntry] = field(default_factory=list)
    termination: TerminationRecord | None = None


@dataclass
class PermissionDenied:
    message: str = PERMISSION_DENIED_MESSAGE


@dataclass
class NotFound:
    message: str


def get_employees_with_points(
    store: RecordStore,
    context: RequestContext,
    as_of: date | None = None,
    policy: PointsPolicy | None = None,
    include_inactive: bool = False,
) -> list[EmployeePoints]:
    policy = policy or PointsPolicy()
    as_of = as_of or date.today()
    visible = filter_employees_by_visibility(context, store.list_employees(include_inactive=include_inactive))
    by_employee: dict[str, list[Infraction]] = defaultdict(list)
    for infraction in store.list_infractions(statuses=COUNTING_STATUSES):
        by_employee[infraction.employee_id].append(infraction)

    rows = []
    for employee in visible:
        history = by_employee.get(employee.employee_id, [])
        summary = summarize_points(
            history, as_of, expiration_days=policy.expiration_days, point_floor=policy.point_floor
        )
        rows.append(
            EmployeePoints(
                employee_id=employee.employee_id,
                full_name=employee.full_name,
                primary_location=employee.primary_location,
                status=employee.status,
                system_role=employee.system_role,
                total_points=summary.total_points,
                active_infraction_count=len(summary.active_infractions),
                next_expiration_date=summary.next_expiration_date,
                highest_points_ever=highest_points_ever(history),
            )
        )
    rows.sort(key=lambda row: (-row.total_points, row.full_name.lower()))
    return rows


def get_all_employee_infractions(store: RecordStore, employee_id: str) -> list[Infraction]:
    infractions = store.list_infractions_by_employee(employee_id)
    return sorted(infractions, key=lambda i: (as_day(i.date), i.infraction_id), reverse=True)


def get_edit_history(store: RecordStore, employee_id: str) -> list[EditLogEntry]:
    return store.list_audit_log_by_employee(employee_id)


def get_employee_detail(
    store: RecordStore,
    employee_id: str,
    context: RequestContext,
    as_of: date | None = None,
    policy: PointsPolicy | None = None,
) -> EmployeeDetail | PermissionDenied | NotFound:
    employee = store.find_employee(employee_id)
    if employee is None:
        return NotFound(message=f"Employee {employee_id} was not found.")
    if not check_view_permission(context, employee.system_role):
        return PermissionDenied()

    policy = policy or PointsPolicy()
    infractions = get_all_employee_infractions(store, employee_id)
    summary = summarize_points(
        infractions, as_of or date.today(), expiration_days=policy.expiration_days, point_floor=policy.point_floor
    )
    return EmployeeDetail(
        employee=employee,
        points=summary,
        highest_points_ever=highest_points_ever(infractions),
        infractions=infractions,
        edit_history=get_edit_history(store, employee_id),
        termination=store.find_termination_record(employee_id),
    )
