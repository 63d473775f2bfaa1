"""Infraction lifecycle: entry, audited edits, soft deletes, point adjustments and termination.

Every mutating operation writes its edit-log entries before touching the
infraction rows, so a failed write can leave an audit entry without a change
but never a change without an audit entry. Input problems come back as a
failed ``Result`` with a plain-language message; store failures propagate as
``StoreError``.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from manager_hub.logging_config import get_logger
from manager_hub.models import (
    COUNTING_STATUSES,
    STATUS_ACTIVE,
    STATUS_ARCHIVED,
    STATUS_DELETED,
    STATUS_MODIFIED,
    EmployeeRecord,
    Infraction,
    utcnow,
)
from manager_hub.points import as_day, expiration_for, summarize_points
from manager_hub.policy import (
    MAX_POSITIVE_CREDIT,
    POINT_REMOVAL_TYPE,
    POSITIVE_CREDIT_TYPE,
    PointsPolicy,
    load_policy,
)
from manager_hub.store import RecordStore

logger = get_logger("infractions")

VALIDATION = "validation"
NOT_FOUND = "not_found"

REQUIRED_FIELDS = ("employee_id", "date", "infraction_type", "description", "location")
EDITABLE_FIELDS = ("description", "points", "date", "infraction_type", "location")
FIELD_LABELS = {
    "employee_id": "Employee",
    "date": "Incident date",
    "infraction_type": "Infraction type",
    "description": "Description",
    "location": "Location",
    "points": "Points",
}


@dataclass
class Result:
    success: bool
    message: str
    error: str | None = None
    infraction_id: str | None = None
    duplicate_warning: bool = False
    old_points: float | None = None
    new_points: float | None = None
    log_ids: list[str] = field(default_factory=list)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_incident_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_points(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def format_points(value: float) -> str:
    return f"{float(value):g}"


def _value_text(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, float):
        return format_points(value)
    return str(value)


class InfractionService:
    def __init__(
        self,
        store: RecordStore,
        policy: PointsPolicy | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.store = store
        self.policy = policy or load_policy(store)
        self._today = today or date.today

    def today(self) -> date:
        return as_day(self._today())

    def _invalid(self, message: str) -> Result:
        logger.info("Infraction request rejected", extra={"reason": message})
        return Result(success=False, message=message, error=VALIDATION)

    def _not_found(self, message: str) -> Result:
        logger.info("Infraction request target missing", extra={"reason": message})
        return Result(success=False, message=message, error=NOT_FOUND)

    def _reason_error(self, reason: Any, what: str) -> str | None:
        text = "" if reason is None else str(reason).strip()
        minimum = self.policy.min_reason_length
        if len(text) < minimum:
            return f"{what} must be at least {minimum} characters (currently {len(text)})."
        return None

    def _new_infraction_id(self, entry_day: date) -> str:
        while True:
            candidate = f"INF-{entry_day:%Y%m%d}-{secrets.randbelow(10000):04d}"
            if self.store.get_infraction(candidate) is None:
                return candidate

    def _summary(self, infractions: list[Infraction]):
        return summarize_points(
            infractions,
            self.today(),
            expiration_days=self.policy.expiration_days,
            point_floor=self.policy.point_floor,
        )

    def add_infraction(self, data: Mapping[str, Any], entered_by: str) -> Result:
        missing = [FIELD_LABELS[name] for name in REQUIRED_FIELDS if _blank(data.get(name))]
        if missing:
            return self._invalid(f"Missing required fields: {', '.join(missing)}.")

        incident = parse_incident_date(data["date"])
        if incident is None:
            return self._invalid("Incident date must be a valid date (YYYY-MM-DD).")
        today = self.today()
        if incident > today:
            return self._invalid("Incident date cannot be in the future.")
        limit = self.policy.backdate_limit_days
        if (today - incident).days > limit:
            return self._invalid(f"Incident date cannot be more than {limit} days in the past.")

        description = str(data["description"]).strip()
        minimum = self.policy.min_reason_length
        if len(description) < minimum:
            return self._invalid(f"Description must be at least {minimum} characters (currently {len(description)}).")

        employee_id = str(data["employee_id"]).strip()
        employee = self.store.find_employee(employee_id)
        if employee is None:
            return self._invalid(f"Employee {employee_id} was not found.")
        if employee.status != "Active":
            return self._invalid(f"{employee.full_name} is not an active employee.")

        location = str(data["location"]).strip()
        if not self.policy.location_allowed(location):
            return self._invalid(f"{location} is not a valid location.")

        supplied_points = None
        if not _blank(data.get("points")):
            supplied_points = parse_points(data.get("points"))
            if supplied_points is None:
                return self._invalid("Points must be a number.")

        infraction_type = str(data["infraction_type"]).strip()
        bucket = self.policy.bucket_named(infraction_type)
        if bucket is not None:
            infraction_type = bucket.name
            points = float(bucket.points)
        elif supplied_points is not None:
            points = supplied_points
        else:
            return self._invalid(f"Unknown infraction type: {infraction_type}.")

        with self.store.employee_lock(employee_id):
            existing = self.store.list_infractions_by_employee(employee_id, statuses=COUNTING_STATUSES)
            duplicate = any(
                as_day(other.date) == incident and other.infraction_type.lower() == infraction_type.lower()
                for other in existing
            )
            record = Infraction(
                infraction_id=self._new_infraction_id(today),
                employee_id=employee.employee_id,
                full_name=employee.full_name,
                date=incident,
                infraction_type=infraction_type,
                points=points,
                description=description,
                location=location,
                entered_by=entered_by,
                entry_timestamp=utcnow(),
                expiration_date=expiration_for(incident, self.policy.expiration_days),
                status=STATUS_ACTIVE,
            )
            self.store.append_infraction(record)

        logger.info(
            "Infraction recorded",
            extra={
                "infraction_id": record.infraction_id,
                "employee_id": employee_id,
                "points": points,
                "duplicate_warning": duplicate,
            },
        )
        message = "Infraction recorded."
        if duplicate:
            logger.warning(
                "Possible duplicate infraction",
                extra={"infraction_id": record.infraction_id, "employee_id": employee_id, "date": incident},
            )
            message = (
                f"Infraction recorded. Note: {employee.full_name} already has a {infraction_type} "
                f"infraction on {incident.isoformat()}."
            )
        return Result(success=True, message=message, infraction_id=record.infraction_id, duplicate_warning=duplicate)

    def _normalize_changes(self, changes: Mapping[str, Any]) -> tuple[dict[str, Any], str | None]:
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            return {}, f"These fields cannot be edited: {', '.join(unknown)}."
        normalized: dict[str, Any] = {}
        for name, raw in changes.items():
            if name == "date":
                parsed = parse_incident_date(raw)
                if parsed is None:
                    return {}, "Incident date must be a valid date (YYYY-MM-DD)."
                if parsed > self.today():
                    return {}, "Incident date cannot be in the future."
                normalized[name] = parsed
            elif name == "points":
                parsed_points = parse_points(raw)
                if parsed_points is None:
                    return {}, "Points must be a number."
                normalized[name] = parsed_points
            elif name == "description":
                text = "" if raw is None else str(raw).strip()
                minimum = self.policy.min_reason_length
                if len(text) < minimum:
                    return {}, f"Description must be at least {minimum} characters (currently {len(text)})."
                normalized[name] = text
            else:
                text = "" if raw is None else str(raw).strip()
                if not text:
                    return {}, f"{FIELD_LABELS[name]} cannot be blank."
                if name == "location" and not self.policy.location_allowed(text):
                    return {}, f"{text} is not a valid location."
                normalized[name] = text
        return normalized, None

    @staticmethod
    def _current_value(record: Infraction, name: str) -> Any:
        value = getattr(record, name)
        if name == "date":
            return as_day(value)
        if name == "points":
            return float(value)
        return value

    def edit_infraction(self, infraction_id: str, changes: Mapping[str, Any], reason: str, modified_by: str) -> Result:
        reason_error = self._reason_error(reason, "Modification reason")
        if reason_error:
            return self._invalid(reason_error)
        normalized, error = self._normalize_changes(changes)
        if error:
            return self._invalid(error)
        located = self.store.get_infraction(infraction_id)
        if located is None:
            return self._not_found(f"Infraction {infraction_id} was not found.")

        with self.store.employee_lock(located.employee_id):
            # Re-read under the lock; a concurrent writer may have changed the row.
            record = self.store.get_infraction(infraction_id)
            if record is None:
                return self._not_found(f"Infraction {infraction_id} was not found.")
            if record.status not in COUNTING_STATUSES:
                return self._invalid(f"Infraction {infraction_id} is {record.status.lower()} and cannot be edited.")
            diffs = [
                (name, self._current_value(record, name), normalized[name])
                for name in EDITABLE_FIELDS
                if name in normalized and normalized[name] != self._current_value(record, name)
            ]
            if not diffs:
                return self._invalid("No changes were detected, so the infraction was not modified.")

            reason_text = str(reason).strip()
            log_ids = [
                self.store.append_audit_log_entry(
                    {
                        "action_type": "edit_infraction",
                        "actor_identity": modified_by,
                        "target_type": "infraction",
                        "target_id": record.infraction_id,
                        "employee_id": record.employee_id,
                        "employee_name": record.full_name,
                        "field_changed": name,
                        "original_value": _value_text(old),
                        "new_value": _value_text(new),
                        "reason": reason_text,
                    }
                )
                for name, old, new in diffs
            ]

            fields: dict[str, Any] = {name: new for name, _, new in diffs}
            if "date" in fields:
                fields["expiration_date"] = expiration_for(fields["date"], self.policy.expiration_days)
            fields.update(
                status=STATUS_MODIFIED,
                modified_by=modified_by,
                modified_date=utcnow(),
                modification_reason=reason_text,
            )
            self.store.update_infraction_fields(record.infraction_id, fields)

        logger.info(
            "Infraction edited",
            extra={"infraction_id": infraction_id, "fields": [name for name, _, _ in diffs], "modified_by": modified_by},
        )
        return Result(
            success=True,
            message=f"Infraction updated ({len(diffs)} field{'s' if len(diffs) != 1 else ''} changed).",
            infraction_id=infraction_id,
            log_ids=log_ids,
        )

    def delete_infraction(self, infraction_id: str, reason: str, deleted_by: str) -> Result:
        reason_error = self._reason_error(reason, "Deletion reason")
        if reason_error:
            return self._invalid(reason_error)
        located = self.store.get_infraction(infraction_id)
        if located is None:
            return self._not_found(f"Infraction {infraction_id} was not found.")

        reason_text = str(reason).strip()
        with self.store.employee_lock(located.employee_id):
            record = self.store.get_infraction(infraction_id)
            if record is None:
                return self._not_found(f"Infraction {infraction_id} was not found.")
            if record.status == STATUS_DELETED:
                return self._invalid(f"Infraction {infraction_id} has already been deleted.")
            if record.status == STATUS_ARCHIVED:
                return self._invalid(f"Infraction {infraction_id} is archived and cannot be deleted.")
            log_id = self.store.append_audit_log_entry(
                {
                    "action_type": "delete_infraction",
                    "actor_identity": deleted_by,
                    "target_type": "infraction",
                    "target_id": record.infraction_id,
                    "employee_id": record.employee_id,
                    "employee_name": record.full_name,
                    "field_changed": "status",
                    "original_value": (
                        f"{record.status}: {record.infraction_type}, {format_points(record.points)} points "
                        f"on {as_day(record.date).isoformat()}"
                    ),
                    "new_value": STATUS_DELETED,
                    "reason": reason_text,
                }
            )
            self.store.update_infraction_fields(
                record.infraction_id,
                {
                    "status": STATUS_DELETED,
                    "modified_by": deleted_by,
                    "modified_date": utcnow(),
                    "modification_reason": reason_text,
                },
            )
        logger.info("Infraction deleted", extra={"infraction_id": infraction_id, "deleted_by": deleted_by})
        return Result(success=True, message="Infraction deleted.", infraction_id=infraction_id, log_ids=[log_id])

    def _active_employee(self, employee_id: str) -> tuple[EmployeeRecord | None, Result | None]:
        if _blank(employee_id):
            return None, self._invalid("Missing required fields: Employee.")
        employee = self.store.find_employee(str(employee_id).strip())
        if employee is None:
            return None, self._not_found(f"Employee {employee_id} was not found.")
        if employee.status != "Active":
            return None, self._invalid(f"{employee.full_name} is not an active employee.")
        return employee, None

    def _record_adjustment(
        self,
        employee: EmployeeRecord,
        amount: float,
        infraction_type: str,
        action_type: str,
        reason: str,
        entered_by: str,
    ) -> Result:
        today = self.today()
        with self.store.employee_lock(employee.employee_id):
            current = self.store.list_infractions_by_employee(employee.employee_id, statuses=COUNTING_STATUSES)
            before = self._summary(current).total_points
            record = Infraction(
                infraction_id=self._new_infraction_id(today),
                employee_id=employee.employee_id,
                full_name=employee.full_name,
                date=today,
                infraction_type=infraction_type,
                points=-abs(amount),
                description=reason,
                location=employee.primary_location or "",
                entered_by=entered_by,
                entry_timestamp=utcnow(),
                expiration_date=expiration_for(today, self.policy.expiration_days),
                status=STATUS_ACTIVE,
            )
            after = self._summary([*current, record]).total_points
            log_id = self.store.append_audit_log_entry(
                {
                    "action_type": action_type,
                    "actor_identity": entered_by,
                    "target_type": "employee",
                    "target_id": record.infraction_id,
                    "employee_id": employee.employee_id,
                    "employee_name": employee.full_name,
                    "field_changed": "total_points",
                    "original_value": format_points(before),
                    "new_value": format_points(after),
                    "reason": reason,
                }
            )
            self.store.append_infraction(record)

        logger.info(
            "Point adjustment recorded",
            extra={"employee_id": employee.employee_id, "action_type": action_type, "old_points": before, "new_points": after},
        )
        return Result(
            success=True,
            message=f"{employee.full_name} now has {format_points(after)} points (was {format_points(before)}).",
            infraction_id=record.infraction_id,
            old_points=before,
            new_points=after,
            log_ids=[log_id],
        )

    def add_positive_credit(self, data: Mapping[str, Any], entered_by: str) -> Result:
        employee, failure = self._active_employee(data.get("employee_id"))
        if failure:
            return failure
        amount = parse_points(data.get("points"))
        if amount is None or not 1 <= amount <= MAX_POSITIVE_CREDIT:
            return self._invalid(f"Positive credit must be between 1 and {MAX_POSITIVE_CREDIT} points.")
        reason = data.get("reason")
        reason_error = self._reason_error(reason, "Reason for the credit")
        if reason_error:
            return self._invalid(reason_error)
        return self._record_adjustment(employee, amount, POSITIVE_CREDIT_TYPE, "add_credit", str(reason).strip(), entered_by)

    def remove_points(self, data: Mapping[str, Any], entered_by: str) -> Result:
        employee, failure = self._active_employee(data.get("employee_id"))
        if failure:
            return failure
        amount = parse_points(data.get("points"))
        if amount is None or amount <= 0:
            return self._invalid("Points to remove must be a positive number.")
        reason = data.get("reason")
        reason_error = self._reason_error(reason, "Reason for removing points")
        if reason_error:
            return self._invalid(reason_error)
        return self._record_adjustment(employee, amount, POINT_REMOVAL_TYPE, "remove_points", str(reason).strip(), entered_by)

    def terminate_employee(self, employee_id: str, reason: str, terminated_by: str) -> Result:
        reason_error = self._reason_error(reason, "Termination reason")
        if reason_error:
            return self._invalid(reason_error)
        employee = self.store.find_employee(employee_id)
        if employee is None:
            return self._not_found(f"Employee {employee_id} was not found.")

        reason_text = str(reason).strip()
        with self.store.employee_lock(employee_id):
            counting = self.store.list_infractions_by_employee(employee_id, statuses=COUNTING_STATUSES)
            prior = self.store.find_termination_record(employee_id)
            if prior is not None and not counting:
                return Result(
                    success=True,
                    message=f"{employee.full_name} was already terminated; there were no active infractions to archive.",
                    new_points=prior.final_points,
                )

            final_points = self._summary(counting).total_points
            log_id = self.store.append_audit_log_entry(
                {
                    "action_type": "terminate",
                    "actor_identity": terminated_by,
                    "target_type": "employee",
                    "target_id": employee.employee_id,
                    "employee_id": employee.employee_id,
                    "employee_name": employee.full_name,
                    "field_changed": "infraction_status",
                    "original_value": f"{len(counting)} active infractions, {format_points(final_points)} points",
                    "new_value": STATUS_ARCHIVED,
                    "reason": reason_text,
                }
            )
            stamp = utcnow()
            for infraction in counting:
                self.store.update_infraction_fields(
                    infraction.infraction_id,
                    {
                        "status": STATUS_ARCHIVED,
                        "modified_by": terminated_by,
                        "modified_date": stamp,
                        "modification_reason": reason_text,
                    },
                )
            self.store.append_termination_record(
                {
                    "employee_id": employee.employee_id,
                    "employee_name": employee.full_name,
                    "final_points": final_points,
                    "archived_count": len(counting),
                    "terminated_by": terminated_by,
                    "terminated_at": stamp,
                    "reason": reason_text,
                }
            )

        logger.info(
            "Employee terminated",
            extra={"employee_id": employee_id, "final_points": final_points, "archived": len(counting)},
        )
        return Result(
            success=True,
            message=f"{employee.full_name} terminated with {format_points(final_points)} points; {len(counting)} infractions archived.",
            old_points=final_points,
            new_points=final_points,
            log_ids=[log_id],
        )
