from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Any, Literal

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from manager_hub.config import ServiceSettings, get_service_settings
from manager_hub.db import get_db
from manager_hub.exceptions import StoreError
from manager_hub.infractions import NOT_FOUND, InfractionService, Result
from manager_hub.logging_config import configure_logging, get_logger
from manager_hub.models import EditLogEntry, EmployeeRecord, Infraction, TerminationRecord
from manager_hub.notifications import NotificationChannel, RetryPolicy, SmtpChannel
from manager_hub.orchestrator import ProcessResult, process_infraction_with_notifications
from manager_hub.points import PointSummary, calculate_points
from manager_hub.policy import PointsPolicy, load_policy
from manager_hub.roster import (
    EmployeePoints,
    NotFound,
    PermissionDenied,
    get_edit_history,
    get_employee_detail,
    get_employees_with_points,
)
from manager_hub.store import RecordStore
from manager_hub.visibility import ROLE_OPERATOR, RequestContext, check_view_permission, normalize_role

configure_logging(level=get_service_settings().log_level)
logger = get_logger("api")

EMPLOYEE_NOT_FOUND = "Employee not found"
INFRACTION_NOT_FOUND = "Infraction not found"

app = FastAPI(title="Manager Hub Accountability Points")


@app.middleware("http")
async def disable_cache_for_api(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store, no-cache, max-age=0, must-revalidate"
        response.headers["Pragma"] = "no-cache"
    return response


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Request failed on record store", extra={"path": request.url.path, "operation": exc.operation})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "The record store is unavailable. No changes were confirmed; please try again."},
    )


class InfractionPayload(BaseModel):
    employee_id: str | None = None
    date: str | None = None
    infraction_type: str | None = None
    description: str | None = None
    location: str | None = None
    points: float | None = None


class InfractionEditPayload(BaseModel):
    changes: dict[str, Any]
    reason: str = ""


class ReasonPayload(BaseModel):
    reason: str = ""


class AdjustmentPayload(BaseModel):
    points: float
    reason: str = ""


class EmployeeIn(BaseModel):
    employee_id: str = Field(min_length=1)
    full_name: str = Field(min_length=1)
    primary_location: str = ""
    status: Literal["Active", "Inactive"] = "Active"
    system_role: Literal["Manager", "Director", "Operator"] | None = None
    email: str | None = None


class InfractionOut(BaseModel):
    infraction_id: str
    employee_id: str
    full_name: str
    date: dt.date
    infraction_type: str
    points: float
    description: str
    location: str
    entered_by: str
    entry_timestamp: datetime
    expiration_date: dt.date
    status: str
    modified_by: str | None = None
    modified_date: datetime | None = None
    modification_reason: str | None = None


class PointSummaryOut(BaseModel):
    employee_id: str
    as_of: date
    total_points: float
    active_infractions: list[InfractionOut]
    expired_infractions: list[InfractionOut]
    next_expiration_date: date | None = None


class EmployeePointsOut(BaseModel):
    employee_id: str
    full_name: str
    primary_location: str
    status: str
    system_role: str | None = None
    total_points: float
    active_infraction_count: int
    next_expiration_date: date | None = None
    highest_points_ever: float


class EditLogOut(BaseModel):
    log_id: str
    timestamp: datetime
    action_type: str
    actor_identity: str
    target_type: str
    target_id: str
    employee_id: str
    employee_name: str
    field_changed: str
    original_value: str | None = None
    new_value: str | None = None
    reason: str


class TerminationOut(BaseModel):
    employee_id: str
    final_points: float
    archived_count: int
    terminated_by: str
    terminated_at: datetime


class EmployeeOut(BaseModel):
    employee_id: str
    full_name: str
    primary_location: str
    status: str
    system_role: str | None = None
    email: str | None = None


class EmployeeDetailOut(BaseModel):
    employee: EmployeeOut
    points: PointSummaryOut
    highest_points_ever: float
    infractions: list[InfractionOut]
    edit_history: list[EditLogOut]
    termination: TerminationOut | None = None


class ResultOut(BaseModel):
    success: bool
    message: str
    infraction_id: str | None = None
    duplicate_warning: bool = False
    old_points: float | None = None
    new_points: float | None = None
    log_ids: list[str] = Field(default_factory=list)


class ProcessResultOut(BaseModel):
    success: bool
    message: str
    infraction_id: str | None = None
    old_points: float | None = None
    new_points: float | None = None
    thresholds_crossed: list[float] = Field(default_factory=list)
    email_sent: bool = False
    email_status: str
    duplicate_warning: bool = False


class ThresholdOut(BaseModel):
    threshold: float
    consequence: str


class BucketOut(BaseModel):
    name: str
    points: float
    examples: list[str]


def get_store(db: Session = Depends(get_db)) -> RecordStore:
    return RecordStore(db)


def get_policy(store: RecordStore = Depends(get_store)) -> PointsPolicy:
    return load_policy(store)


def get_settings() -> ServiceSettings:
    return get_service_settings()


def get_channel(settings: ServiceSettings = Depends(get_settings)) -> NotificationChannel:
    return SmtpChannel(settings)


def get_retry_policy(settings: ServiceSettings = Depends(get_settings)) -> RetryPolicy:
    return RetryPolicy(max_attempts=2, backoff_seconds=settings.retry_backoff_seconds)


def get_request_context(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    role: str | None = Header(default=None, alias="X-User-Role"),
    can_see_directors: str | None = Header(default=None, alias="X-Can-See-Directors"),
) -> RequestContext:
    if not user_id or not role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    normalized = normalize_role(role)
    if normalized is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unrecognized role")
    flag = (can_see_directors or "").strip().lower() in ("1", "true", "yes")
    return RequestContext(role=normalized, user_id=user_id.strip(), can_see_directors=flag)


def get_operator_context(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    if context.role != ROLE_OPERATOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator access required")
    return context


def employee_not_found() -> HTTPException:
    # Hidden and missing employees get the same answer.
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=EMPLOYEE_NOT_FOUND)


def require_visible_employee(store: RecordStore, context: RequestContext, employee_id: str) -> EmployeeRecord:
    employee = store.find_employee(employee_id)
    if employee is None or not check_view_permission(context, employee.system_role):
        raise employee_not_found()
    return employee


def require_visible_infraction(store: RecordStore, context: RequestContext, infraction_id: str) -> Infraction:
    record = store.get_infraction(infraction_id)
    employee = store.find_employee(record.employee_id) if record is not None else None
    if employee is None or not check_view_permission(context, employee.system_role):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=INFRACTION_NOT_FOUND)
    return record


def raise_for_result(result: Result | ProcessResult) -> None:
    if result.success:
        return
    if result.error == NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.message)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)


def serialize_infraction(record: Infraction) -> InfractionOut:
    return InfractionOut(
        infraction_id=record.infraction_id,
        employee_id=record.employee_id,
        full_name=record.full_name,
        date=record.date,
        infraction_type=record.infraction_type,
        points=record.points,
        description=record.description,
        location=record.location,
        entered_by=record.entered_by,
        entry_timestamp=record.entry_timestamp,
        expiration_date=record.expiration_date,
        status=record.status,
        modified_by=record.modified_by,
        modified_date=record.modified_date,
        modification_reason=record.modification_reason,
    )


def serialize_summary(employee_id: str, as_of: date, summary: PointSummary) -> PointSummaryOut:
    return PointSummaryOut(
        employee_id=employee_id,
        as_of=as_of,
        total_points=summary.total_points,
        active_infractions=[serialize_infraction(i) for i in summary.active_infractions],
        expired_infractions=[serialize_infraction(i) for i in summary.expired_infractions],
        next_expiration_date=summary.next_expiration_date,
    )


def serialize_edit_log(entry: EditLogEntry) -> EditLogOut:
    return EditLogOut(
        log_id=entry.log_id,
        timestamp=entry.timestamp,
        action_type=entry.action_type,
        actor_identity=entry.actor_identity,
        target_type=entry.target_type,
        target_id=entry.target_id,
        employee_id=entry.employee_id,
        employee_name=entry.employee_name,
        field_changed=entry.field_changed,
        original_value=entry.original_value,
        new_value=entry.new_value,
        reason=entry.reason,
    )


def serialize_employee(record: EmployeeRecord) -> EmployeeOut:
    return EmployeeOut(
        employee_id=record.employee_id,
        full_name=record.full_name,
        primary_location=record.primary_location,
        status=record.status,
        system_role=record.system_role,
        email=record.email,
    )


def serialize_termination(record: TerminationRecord | None) -> TerminationOut | None:
    if record is None:
        return None
    return TerminationOut(
        employee_id=record.employee_id,
        final_points=record.final_points,
        archived_count=record.archived_count,
        terminated_by=record.terminated_by,
        terminated_at=record.terminated_at,
    )


def serialize_employee_points(row: EmployeePoints) -> EmployeePointsOut:
    return EmployeePointsOut(
        employee_id=row.employee_id,
        full_name=row.full_name,
        primary_location=row.primary_location,
        status=row.status,
        system_role=row.system_role,
        total_points=row.total_points,
        active_infraction_count=row.active_infraction_count,
        next_expiration_date=row.next_expiration_date,
        highest_points_ever=row.highest_points_ever,
    )


def serialize_result(result: Result) -> ResultOut:
    return ResultOut(
        success=result.success,
        message=result.message,
        infraction_id=result.infraction_id,
        duplicate_warning=result.duplicate_warning,
        old_points=result.old_points,
        new_points=result.new_points,
        log_ids=result.log_ids,
    )


@app.post("/api/infractions", response_model=ProcessResultOut, status_code=status.HTTP_201_CREATED)
def submit_infraction(
    payload: InfractionPayload,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
    channel: NotificationChannel = Depends(get_channel),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    settings: ServiceSettings = Depends(get_settings),
) -> ProcessResultOut:
    if payload.employee_id:
        target = store.find_employee(payload.employee_id.strip())
        if target is None or not check_view_permission(context, target.system_role):
            raise employee_not_found()
    result = process_infraction_with_notifications(
        store,
        payload.model_dump(),
        entered_by=context.user_id,
        channel=channel,
        settings=settings,
        retry_policy=retry_policy,
        policy=policy,
    )
    raise_for_result(result)
    return ProcessResultOut(
        success=result.success,
        message=result.message,
        infraction_id=result.infraction_id,
        old_points=result.old_points,
        new_points=result.new_points,
        thresholds_crossed=result.thresholds_crossed,
        email_sent=result.email_sent,
        email_status=result.email_status,
        duplicate_warning=result.duplicate_warning,
    )


@app.get("/api/infractions/{infraction_id}", response_model=InfractionOut)
def get_infraction(
    infraction_id: str,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
) -> InfractionOut:
    return serialize_infraction(require_visible_infraction(store, context, infraction_id))


@app.patch("/api/infractions/{infraction_id}", response_model=ResultOut)
def edit_infraction(
    infraction_id: str,
    payload: InfractionEditPayload,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> ResultOut:
    require_visible_infraction(store, context, infraction_id)
    result = InfractionService(store, policy).edit_infraction(infraction_id, payload.changes, payload.reason, context.user_id)
    raise_for_result(result)
    return serialize_result(result)


@app.delete("/api/infractions/{infraction_id}", response_model=ResultOut)
def delete_infraction(
    infraction_id: str,
    payload: ReasonPayload = Body(...),
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> ResultOut:
    require_visible_infraction(store, context, infraction_id)
    result = InfractionService(store, policy).delete_infraction(infraction_id, payload.reason, context.user_id)
    raise_for_result(result)
    return serialize_result(result)


@app.post("/api/employees/{employee_id}/credits", response_model=ResultOut, status_code=status.HTTP_201_CREATED)
def add_positive_credit(
    employee_id: str,
    payload: AdjustmentPayload,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> ResultOut:
    require_visible_employee(store, context, employee_id)
    result = InfractionService(store, policy).add_positive_credit(
        {"employee_id": employee_id, "points": payload.points, "reason": payload.reason}, context.user_id
    )
    raise_for_result(result)
    return serialize_result(result)


@app.post("/api/employees/{employee_id}/point-removals", response_model=ResultOut, status_code=status.HTTP_201_CREATED)
def remove_points(
    employee_id: str,
    payload: AdjustmentPayload,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> ResultOut:
    require_visible_employee(store, context, employee_id)
    result = InfractionService(store, policy).remove_points(
        {"employee_id": employee_id, "points": payload.points, "reason": payload.reason}, context.user_id
    )
    raise_for_result(result)
    return serialize_result(result)


@app.post("/api/employees/{employee_id}/termination", response_model=ResultOut)
def terminate_employee(
    employee_id: str,
    payload: ReasonPayload,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> ResultOut:
    require_visible_employee(store, context, employee_id)
    result = InfractionService(store, policy).terminate_employee(employee_id, payload.reason, context.user_id)
    raise_for_result(result)
    return serialize_result(result)


@app.get("/api/employees/{employee_id}/points", response_model=PointSummaryOut)
def employee_points(
    employee_id: str,
    as_of: date | None = None,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> PointSummaryOut:
    require_visible_employee(store, context, employee_id)
    as_of = as_of or date.today()
    return serialize_summary(employee_id, as_of, calculate_points(store, employee_id, as_of, policy))


@app.get("/api/employees", response_model=list[EmployeePointsOut])
def list_employees_with_points(
    as_of: date | None = None,
    include_inactive: bool = False,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> list[EmployeePointsOut]:
    rows = get_employees_with_points(store, context, as_of, policy, include_inactive=include_inactive)
    return [serialize_employee_points(row) for row in rows]


@app.get("/api/employees/{employee_id}", response_model=EmployeeDetailOut)
def employee_detail(
    employee_id: str,
    as_of: date | None = None,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
    policy: PointsPolicy = Depends(get_policy),
) -> EmployeeDetailOut:
    as_of = as_of or date.today()
    detail = get_employee_detail(store, employee_id, context, as_of, policy)
    if isinstance(detail, (NotFound, PermissionDenied)):
        raise employee_not_found()
    return EmployeeDetailOut(
        employee=serialize_employee(detail.employee),
        points=serialize_summary(employee_id, as_of, detail.points),
        highest_points_ever=detail.highest_points_ever,
        infractions=[serialize_infraction(i) for i in detail.infractions],
        edit_history=[serialize_edit_log(e) for e in detail.edit_history],
        termination=serialize_termination(detail.termination),
    )


@app.get("/api/employees/{employee_id}/history", response_model=list[EditLogOut])
def employee_history(
    employee_id: str,
    context: RequestContext = Depends(get_request_context),
    store: RecordStore = Depends(get_store),
) -> list[EditLogOut]:
    require_visible_employee(store, context, employee_id)
    return [serialize_edit_log(entry) for entry in get_edit_history(store, employee_id)]


@app.put("/api/employees", response_model=list[EmployeeOut])
def sync_employees(
    employees: list[EmployeeIn] = Body(...),
    _: RequestContext = Depends(get_operator_context),
    store: RecordStore = Depends(get_store),
) -> list[EmployeeOut]:
    employee_ids = [employee.employee_id for employee in employees]
    if len(employee_ids) != len(set(employee_ids)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Employee ids must be unique")
    records = store.upsert_employees([employee.model_dump() for employee in employees])
    logger.info("Roster synchronized", extra={"employees": len(employees)})
    return [serialize_employee(record) for record in records]


@app.get("/api/settings/thresholds", response_model=list[ThresholdOut])
def list_thresholds(
    _: RequestContext = Depends(get_request_context),
    policy: PointsPolicy = Depends(get_policy),
) -> list[ThresholdOut]:
    return [ThresholdOut(threshold=t.threshold, consequence=t.consequence) for t in policy.thresholds]


@app.get("/api/settings/buckets", response_model=list[BucketOut])
def list_buckets(
    _: RequestContext = Depends(get_request_context),
    policy: PointsPolicy = Depends(get_policy),
) -> list[BucketOut]:
    return [BucketOut(name=b.name, points=b.points, examples=list(b.examples)) for b in policy.buckets]


@app.get("/health")
def health() -> dict[str, bool | str]:
    return {"ok": True}
