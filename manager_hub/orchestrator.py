from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from manager_hub.config import ServiceSettings
from manager_hub.exceptions import StoreError
from manager_hub.infractions import InfractionService, format_points
from manager_hub.logging_config import get_logger
from manager_hub.models import Infraction
from manager_hub.notifications import NotificationChannel, RetryPolicy, build_threshold_email, send_threshold_email
from manager_hub.points import calculate_points
from manager_hub.policy import PointsPolicy, load_policy
from manager_hub.store import RecordStore
from manager_hub.thresholds import detect_thresholds, termination_tier

logger = get_logger("orchestrator")

EMAIL_NOT_REQUIRED = "Not Required"
EMAIL_NOT_SENT = "Not Sent"


@dataclass
class ProcessResult:
    success: bool
    message: str
    infraction_id: str | None = None
    old_points: float | None = None
    new_points: float | None = None
    thresholds_crossed: list[float] = field(default_factory=list)
    email_sent: bool = False
    email_status: str = EMAIL_NOT_SENT
    duplicate_warning: bool = False
    error: str | None = None


def infraction_to_dict(infraction: Infraction) -> dict[str, Any]:
    return {
        "infraction_id": infraction.infraction_id,
        "date": infraction.date,
        "infraction_type": infraction.infraction_type,
        "points": infraction.points,
        "description": infraction.description,
        "location": infraction.location,
        "expiration_date": infraction.expiration_date,
        "status": infraction.status,
    }


def select_recipients(thresholds_crossed: list[float], policy: PointsPolicy, settings: ServiceSettings) -> list[str]:
    if termination_tier(thresholds_crossed, policy.termination_threshold):
        return list(settings.escalation_emails)
    return [settings.operations_email] if settings.operations_email else []


def process_infraction_with_notifications(
    store: RecordStore,
    data: Mapping[str, Any],
    *,
    entered_by: str,
    channel: NotificationChannel,
    settings: ServiceSettings,
    retry_policy: RetryPolicy | None = None,
    policy: PointsPolicy | None = None,
    today: Callable[[], date] | None = None,
) -> ProcessResult:
    policy = policy or load_policy(store)
    service = InfractionService(store, policy=policy, today=today)
    employee_id = str(data.get("employee_id") or "").strip()

    with store.employee_lock(employee_id):
        old_points = calculate_points(store, employee_id, service.today(), policy).total_points
        created = service.add_infraction(data, entered_by)
        if not created.success:
            return ProcessResult(success=False, message=created.message, old_points=old_points, error=created.error)
        summary = calculate_points(store, employee_id, service.today(), policy)

    new_points = summary.total_points
    crossed = detect_thresholds(old_points, new_points, policy.thresholds)
    result = ProcessResult(
        success=True,
        message=created.message,
        infraction_id=created.infraction_id,
        old_points=old_points,
        new_points=new_points,
        thresholds_crossed=crossed,
        duplicate_warning=created.duplicate_warning,
    )
    if not crossed:
        result.email_status = EMAIL_NOT_REQUIRED
        return result

    employee = store.find_employee(employee_id)
    employee_name = employee.full_name if employee is not None else employee_id
    email = build_threshold_email(
        {
            "employee_name": employee_name,
            "employee_id": employee_id,
            "current_points": new_points,
            "thresholds_crossed": crossed,
            "infractions_list": [infraction_to_dict(i) for i in summary.active_infractions],
            "next_expiration_date": summary.next_expiration_date,
        },
        policy.thresholds,
        final_warning_threshold=policy.final_warning_threshold,
        termination_threshold=policy.termination_threshold,
        today=service.today(),
    )
    recipients = select_recipients(crossed, policy, settings)
    try:
        sent = send_threshold_email(
            store,
            channel,
            recipients,
            email.subject,
            email.body_html,
            email.body_text,
            {
                "employee_id": employee_id,
                "employee_name": employee_name,
                "thresholds": crossed,
                "priority": email.priority,
            },
            retry_policy=retry_policy,
            admin_email=settings.admin_email,
        )
    except StoreError:
        logger.exception("Notification log write failed", extra={"infraction_id": created.infraction_id})
        result.email_status = "Failed"
        result.message = f"{created.message} The threshold notification could not be logged or sent."
        return result

    result.email_sent = sent.success
    result.email_status = sent.status
    if sent.success:
        result.message = (
            f"{created.message} {employee_name} moved from {format_points(old_points)} to "
            f"{format_points(new_points)} points; notification sent."
        )
    else:
        result.message = f"{created.message} Threshold notification failed: {sent.message}"
    logger.info(
        "Infraction processed",
        extra={
            "infraction_id": created.infraction_id,
            "old_points": old_points,
            "new_points": new_points,
            "thresholds_crossed": crossed,
            "email_status": result.email_status,
        },
    )
    return result
