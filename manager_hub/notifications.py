from __future__ import annotations

import smtplib
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from manager_hub.config import ServiceSettings
from manager_hub.exceptions import NotificationError, ThresholdEmailInputError
from manager_hub.infractions import format_points, parse_incident_date
from manager_hub.logging_config import get_logger
from manager_hub.policy import FINAL_WARNING_THRESHOLD, TERMINATION_THRESHOLD, Threshold
from manager_hub.store import RecordStore

logger = get_logger("notifications")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
templates = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

REQUIRED_EMAIL_FIELDS = ("employee_name", "current_points", "thresholds_crossed", "infractions_list", "employee_id")
RECENT_INFRACTION_LIMIT = 5
DEFAULT_CONSEQUENCE = "See the employee handbook for the consequence at this level."

TIER_TERMINATION = "termination"
TIER_FINAL_WARNING = "final_warning"
TIER_INFORMATIONAL = "informational"

SUBJECT_TEMPLATES = {
    TIER_TERMINATION: "[TERMINATION REVIEW] {name} has reached {points} accountability points",
    TIER_FINAL_WARNING: "[FINAL WARNING] {name} has reached {points} accountability points",
    TIER_INFORMATIONAL: "Accountability points update: {name} is at {points} points",
}
HEADLINES = {
    TIER_TERMINATION: "Termination threshold reached",
    TIER_FINAL_WARNING: "Final warning threshold reached",
    TIER_INFORMATIONAL: "Accountability threshold reached",
}


@dataclass
class ThresholdEmail:
    subject: str
    body_html: str
    body_text: str
    priority: str
    tier: str


@dataclass
class SendResult:
    success: bool
    log_id: str | None
    status: str
    message: str
    attempts: int = 0


class NotificationChannel(Protocol):
    def send(self, recipients: list[str], subject: str, html_body: str, text_body: str, priority: str = "normal") -> None: ...


@dataclass
class RetryPolicy:
    """Fixed-backoff attempt schedule; the default allows one retry."""

    max_attempts: int = 2
    backoff_seconds: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            sleep=self.sleep,
            retry=retry_if_exception_type(NotificationError),
            reraise=True,
            before_sleep=lambda retry_state: logger.info(
                "Retrying threshold notification", extra={"attempt": retry_state.attempt_number}
            ),
        )


class SmtpChannel:
    def __init__(self, settings: ServiceSettings):
        self.settings = settings

    def send(self, recipients: list[str], subject: str, html_body: str, text_body: str, priority: str = "normal") -> None:
        if not self.settings.smtp_configured:
            raise NotificationError("SMTP delivery is not configured (SMTP_HOST is empty)")
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from
        msg["To"] = ", ".join(recipients)
        if priority == "high":
            msg["X-Priority"] = "1"
            msg["Importance"] = "High"
        if text_body:
            msg.set_content(text_body)
            if html_body:
                msg.add_alternative(html_body, subtype="html")
        else:
            msg.set_content(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=10) as smtp:
                if self.settings.smtp_use_tls:
                    smtp.starttls()
                if self.settings.smtp_user:
                    smtp.login(self.settings.smtp_user, self.settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(str(exc)[:400]) from exc


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _missing(params: Mapping[str, Any]) -> list[str]:
    missing = []
    for name in REQUIRED_EMAIL_FIELDS:
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def severity_tier(
    thresholds_crossed: Sequence[float],
    final_warning_threshold: float = FINAL_WARNING_THRESHOLD,
    termination_threshold: float = TERMINATION_THRESHOLD,
) -> str:
    if any(value >= termination_threshold for value in thresholds_crossed):
        return TIER_TERMINATION
    if any(value >= final_warning_threshold for value in thresholds_crossed):
        return TIER_FINAL_WARNING
    return TIER_INFORMATIONAL


def _recent_rows(infractions: Sequence[Any]) -> list[dict[str, str]]:
    dated = []
    for item in infractions:
        incident = parse_incident_date(_field(item, "date"))
        dated.append((incident or date.min, item))
    dated.sort(key=lambda pair: pair[0], reverse=True)
    rows = []
    for incident, item in dated[:RECENT_INFRACTION_LIMIT]:
        description = str(_field(item, "description") or "")
        if len(description) > 200:
            description = description[:197].rstrip() + "..."
        points = _field(item, "points")
        rows.append(
            {
                "date": incident.isoformat() if incident != date.min else "",
                "infraction_type": str(_field(item, "infraction_type") or ""),
                "points": format_points(points) if points is not None else "",
                "description": description,
            }
        )
    return rows


def _soonest_expiration(infractions: Sequence[Any], today: date) -> date | None:
    upcoming = [
        parsed
        for parsed in (parse_incident_date(_field(item, "expiration_date")) for item in infractions)
        if parsed is not None and parsed >= today
    ]
    return min(upcoming) if upcoming else None


def build_threshold_email(
    params: Mapping[str, Any],
    thresholds: Sequence[Threshold] = (),
    *,
    final_warning_threshold: float = FINAL_WARNING_THRESHOLD,
    termination_threshold: float = TERMINATION_THRESHOLD,
    today: date | None = None,
) -> ThresholdEmail:
    missing = _missing(params)
    if missing:
        raise ThresholdEmailInputError(missing)

    crossed = sorted(float(value) for value in params["thresholds_crossed"])
    tier = severity_tier(crossed, final_warning_threshold, termination_threshold)
    priority = "normal" if tier == TIER_INFORMATIONAL else "high"
    consequences = {item.threshold: item.consequence for item in thresholds}
    points_text = format_points(params["current_points"])
    infractions = list(params["infractions_list"])

    next_expiration = parse_incident_date(params.get("next_expiration_date")) or _soonest_expiration(
        infractions, today or date.today()
    )
    context = {
        "headline": HEADLINES[tier],
        "priority": priority,
        "employee_name": params["employee_name"],
        "employee_id": params["employee_id"],
        "current_points": points_text,
        "thresholds": [
            {"threshold": format_points(value), "consequence": consequences.get(value) or DEFAULT_CONSEQUENCE}
            for value in crossed
        ],
        "infractions": _recent_rows(infractions),
        "next_expiration": next_expiration.isoformat() if next_expiration else None,
    }
    return ThresholdEmail(
        subject=SUBJECT_TEMPLATES[tier].format(name=params["employee_name"], points=points_text),
        body_html=templates.get_template("email/threshold_alert.html").render(context),
        body_text=templates.get_template("email/threshold_alert.txt").render(context),
        priority=priority,
        tier=tier,
    )


def normalize_recipients(recipients: str | Sequence[str] | None) -> list[str]:
    if recipients is None:
        return []
    if isinstance(recipients, str):
        recipients = recipients.replace(";", ",").split(",")
    return [address.strip() for address in recipients if address and address.strip()]


def _alert_admin(
    channel: NotificationChannel,
    admin_email: str,
    *,
    recipients: list[str],
    subject: str,
    metadata: Mapping[str, Any],
    attempts: int,
    error: str,
) -> None:
    if not admin_email:
        logger.warning("Notification failed and no admin address is configured", extra={"subject": subject})
        return
    body = templates.get_template("email/delivery_failure.txt").render(
        attempts=attempts,
        employee_name=metadata.get("employee_name"),
        employee_id=metadata.get("employee_id"),
        thresholds=[format_points(t) for t in metadata.get("thresholds") or []],
        recipients=recipients,
        subject=subject,
        error=error,
    )
    try:
        channel.send([admin_email], f"[Manager Hub] Notification delivery failed: {subject}", "", body, "high")
    except Exception:
        logger.exception("Admin failure alert could not be delivered", extra={"admin_email": admin_email})


def send_threshold_email(
    store: RecordStore,
    channel: NotificationChannel,
    recipients: str | Sequence[str] | None,
    subject: str,
    body_html: str,
    body_text: str,
    metadata: Mapping[str, Any] | None = None,
    *,
    retry_policy: RetryPolicy | None = None,
    admin_email: str = "",
) -> SendResult:
    metadata = dict(metadata or {})
    addresses = normalize_recipients(recipients)
    if not addresses:
        return SendResult(success=False, log_id=None, status="Failed", message="At least one recipient is required.")
    if not subject or not subject.strip():
        return SendResult(success=False, log_id=None, status="Failed", message="A subject is required.")
    if not (body_html and body_html.strip()) and not (body_text and body_text.strip()):
        return SendResult(success=False, log_id=None, status="Failed", message="An email body is required.")

    policy = retry_policy or RetryPolicy()
    priority = metadata.get("priority", "normal")
    thresholds = [float(t) for t in metadata.get("thresholds") or []]
    log_id: str | None = None
    last_error = ""
    attempt_number = 0

    try:
        for attempt in policy.retrying():
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                error: str | None = None
                try:
                    channel.send(addresses, subject, body_html, body_text, priority)
                except Exception as exc:
                    error = str(exc) or type(exc).__name__
                log_id = store.append_notification_log(
                    {
                        "employee_id": metadata.get("employee_id"),
                        "employee_name": metadata.get("employee_name"),
                        "recipients": ", ".join(addresses),
                        "subject": subject,
                        "thresholds": thresholds,
                        "attempt": attempt_number,
                        "retry_count": attempt_number - 1,
                        "status": "Failed" if error else "Sent",
                        "error_message": error,
                    }
                )
                if error is not None:
                    last_error = error
                    logger.warning(
                        "Threshold notification attempt failed",
                        extra={
                            "log_id": log_id,
                            "attempt": attempt_number,
                            "employee_id": metadata.get("employee_id"),
                            "error": error,
                        },
                    )
                    raise NotificationError(error)
    except NotificationError:
        _alert_admin(
            channel,
            admin_email,
            recipients=addresses,
            subject=subject,
            metadata=metadata,
            attempts=attempt_number,
            error=last_error,
        )
        return SendResult(
            success=False,
            log_id=log_id,
            status="Failed",
            message=f"Notification could not be delivered after {attempt_number} attempts: {last_error}",
            attempts=attempt_number,
        )

    logger.info(
        "Threshold notification sent",
        extra={"log_id": log_id, "attempt": attempt_number, "employee_id": metadata.get("employee_id")},
    )
    message = "Notification sent." if attempt_number == 1 else f"Notification sent on attempt {attempt_number}."
    return SendResult(success=True, log_id=log_id, status="Sent", message=message, attempts=attempt_number)
