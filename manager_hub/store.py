from __future__ import annotations

import threading
import uuid
import weakref
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from manager_hub.exceptions import StoreError
from manager_hub.logging_config import get_logger
from manager_hub.models import (
    AppSetting,
    EditLogEntry,
    EmployeeRecord,
    Infraction,
    InfractionBucket,
    NotificationLogEntry,
    TerminationRecord,
    ThresholdSetting,
    utcnow,
)
from manager_hub.policy import DEFAULT_BACKDATE_LIMIT_DAYS, Bucket, Threshold

logger = get_logger("store")

DEFAULT_THRESHOLDS: list[tuple[float, str]] = [
    (2, "Verbal coaching conversation with a manager."),
    (3, "Documented verbal warning."),
    (5, "First written warning."),
    (6, "Second written warning and schedule review."),
    (9, "Final written warning."),
    (12, "Suspension review with the director."),
    (15, "Termination review."),
]

DEFAULT_BUCKETS: list[tuple[str, float, list[str]]] = [
    ("Minor", 1, ["Late clock-in under 15 minutes", "Uniform out of standard", "Missed side work"]),
    ("Moderate", 3, ["Late clock-in over 15 minutes", "Leaving shift early without approval", "Cash drawer variance"]),
    ("Serious", 5, ["No-call late arrival", "Food safety violation", "Insubordination"]),
    ("Severe", 8, ["No-call no-show", "Harassment", "Theft or falsifying time records"]),
]

# Entries drop out once no caller holds a reference to the lock.
_employee_locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def employee_lock(employee_id: str) -> threading.RLock:
    with _registry_lock:
        lock = _employee_locks.get(employee_id)
        if lock is None:
            lock = threading.RLock()
            _employee_locks[employee_id] = lock
    return lock


def new_log_id(prefix: str = "LOG") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16].upper()}"


class RecordStore:
    """Employee, infraction, audit and settings persistence over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Record store operation failed", extra={"operation": operation, "error": str(exc)})
            raise StoreError(operation, str(exc)) from exc

    def employee_lock(self, employee_id: str) -> threading.RLock:
        return employee_lock(employee_id)

    # employees

    def find_employee(self, employee_id: str) -> EmployeeRecord | None:
        with self._guard("find_employee"):
            return self.db.scalar(select(EmployeeRecord).where(EmployeeRecord.employee_id == employee_id))

    def list_employees(self, include_inactive: bool = True) -> list[EmployeeRecord]:
        stmt = select(EmployeeRecord).order_by(EmployeeRecord.full_name, EmployeeRecord.employee_id)
        if not include_inactive:
            stmt = stmt.where(EmployeeRecord.status == "Active")
        with self._guard("list_employees"):
            return list(self.db.scalars(stmt).all())

    def upsert_employees(self, rows: Iterable[dict[str, Any]], deactivate_missing: bool = True) -> list[EmployeeRecord]:
        with self._guard("upsert_employees"):
            existing = {e.employee_id: e for e in self.db.scalars(select(EmployeeRecord)).all()}
            seen: set[str] = set()
            for row in rows:
                record = existing.get(row["employee_id"])
                if record is None:
                    record = EmployeeRecord(employee_id=row["employee_id"])
                    self.db.add(record)
                    existing[record.employee_id] = record
                record.full_name = row["full_name"]
                record.primary_location = row.get("primary_location") or ""
                record.status = row.get("status") or "Active"
                record.system_role = row.get("system_role") or None
                record.email = row.get("email") or None
                seen.add(record.employee_id)
            if deactivate_missing:
                for employee_id, record in existing.items():
                    if employee_id not in seen and record.status != "Inactive":
                        record.status = "Inactive"
            self.db.commit()
            return sorted(existing.values(), key=lambda e: (e.full_name, e.employee_id))

    # infractions

    def get_infraction(self, infraction_id: str) -> Infraction | None:
        with self._guard("get_infraction"):
            return self.db.get(Infraction, infraction_id, populate_existing=True)

    def list_infractions_by_employee(self, employee_id: str, statuses: Iterable[str] | None = None) -> list[Infraction]:
        stmt = select(Infraction).where(Infraction.employee_id == employee_id)
        if statuses is not None:
            stmt = stmt.where(Infraction.status.in_(list(statuses)))
        stmt = stmt.order_by(Infraction.date, Infraction.infraction_id).execution_options(populate_existing=True)
        with self._guard("list_infractions_by_employee"):
            return list(self.db.scalars(stmt).all())

    def list_infractions(self, statuses: Iterable[str] | None = None) -> list[Infraction]:
        stmt = select(Infraction)
        if statuses is not None:
            stmt = stmt.where(Infraction.status.in_(list(statuses)))
        stmt = stmt.order_by(Infraction.employee_id, Infraction.date, Infraction.infraction_id)
        with self._guard("list_infractions"):
            return list(self.db.scalars(stmt).all())

    def append_infraction(self, record: Infraction) -> str:
        with self._guard("append_infraction"):
            self.db.add(record)
            self.db.commit()
        return record.infraction_id

    def update_infraction_fields(self, infraction_id: str, fields: dict[str, Any]) -> None:
        with self._guard("update_infraction_fields"):
            record = self.db.get(Infraction, infraction_id)
            if record is None:
                raise StoreError("update_infraction_fields", f"Infraction {infraction_id} does not exist")
            for name, value in fields.items():
                setattr(record, name, value)
            self.db.commit()

    # audit trail

    def append_audit_log_entry(self, entry: dict[str, Any]) -> str:
        if not str(entry.get("reason") or "").strip():
            raise ValueError("Audit log entries require a reason")
        log_id = new_log_id("LOG")
        values = dict(entry)
        values.setdefault("timestamp", utcnow())
        with self._guard("append_audit_log_entry"):
            self.db.add(EditLogEntry(log_id=log_id, **values))
            self.db.commit()
        return log_id

    def list_audit_log_by_employee(self, employee_id: str) -> list[EditLogEntry]:
        stmt = (
            select(EditLogEntry)
            .where(EditLogEntry.employee_id == employee_id)
            .order_by(EditLogEntry.timestamp.desc(), EditLogEntry.log_id.desc())
        )
        with self._guard("list_audit_log_by_employee"):
            return list(self.db.scalars(stmt).all())

    def append_notification_log(self, entry: dict[str, Any]) -> str:
        log_id = new_log_id("SEND")
        with self._guard("append_notification_log"):
            self.db.add(NotificationLogEntry(log_id=log_id, **entry))
            self.db.commit()
        return log_id

    def list_notification_log(self, employee_id: str | None = None) -> list[NotificationLogEntry]:
        stmt = select(NotificationLogEntry).order_by(NotificationLogEntry.timestamp, NotificationLogEntry.attempt)
        if employee_id is not None:
            stmt = stmt.where(NotificationLogEntry.employee_id == employee_id)
        with self._guard("list_notification_log"):
            return list(self.db.scalars(stmt).all())

    def append_termination_record(self, entry: dict[str, Any]) -> int:
        with self._guard("append_termination_record"):
            record = TerminationRecord(**entry)
            self.db.add(record)
            self.db.commit()
            return record.id

    def find_termination_record(self, employee_id: str) -> TerminationRecord | None:
        stmt = (
            select(TerminationRecord)
            .where(TerminationRecord.employee_id == employee_id)
            .order_by(TerminationRecord.terminated_at.desc(), TerminationRecord.id.desc())
            .execution_options(populate_existing=True)
        )
        with self._guard("find_termination_record"):
            return self.db.scalars(stmt).first()

    # settings

    def get_threshold_table(self) -> list[Threshold]:
        with self._guard("get_threshold_table"):
            rows = self.db.scalars(select(ThresholdSetting).order_by(ThresholdSetting.threshold)).all()
        return [Threshold(threshold=row.threshold, consequence=row.consequence or "") for row in rows]

    def get_bucket_table(self) -> list[Bucket]:
        with self._guard("get_bucket_table"):
            rows = self.db.scalars(select(InfractionBucket).order_by(InfractionBucket.sort_order, InfractionBucket.id)).all()
        return [Bucket(name=row.name, points=row.points, examples=tuple(row.examples or ())) for row in rows]

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._guard("get_setting"):
            row = self.db.get(AppSetting, key)
        if row is None or row.value is None:
            return default
        return row.value

    def put_setting(self, key: str, value: Any) -> None:
        with self._guard("put_setting"):
            row = self.db.get(AppSetting, key)
            if row is None:
                self.db.add(AppSetting(key=key, value=value))
            else:
                row.value = value
            self.db.commit()


def seed_default_settings(db: Session, valid_locations: list[str] | None = None) -> None:
    """Insert the stock threshold table, buckets and limits when they are missing."""
    if db.scalar(select(ThresholdSetting.id).limit(1)) is None:
        db.add_all([ThresholdSetting(threshold=value, consequence=text) for value, text in DEFAULT_THRESHOLDS])
    if db.scalar(select(InfractionBucket.id).limit(1)) is None:
        db.add_all(
            [
                InfractionBucket(name=name, points=points, examples=examples, sort_order=index)
                for index, (name, points, examples) in enumerate(DEFAULT_BUCKETS)
            ]
        )
    if db.get(AppSetting, "backdate_limit_days") is None:
        db.add(AppSetting(key="backdate_limit_days", value=DEFAULT_BACKDATE_LIMIT_DAYS))
    if db.get(AppSetting, "valid_locations") is None:
        db.add(AppSetting(key="valid_locations", value=list(valid_locations or [])))
    db.commit()
