from __future__ import annotations

import datetime as dt
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import CheckConstraint, Date, DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from manager_hub.db import Base

STATUS_ACTIVE = "Active"
STATUS_MODIFIED = "Modified"
STATUS_DELETED = "Deleted"
STATUS_ARCHIVED = "Archived-Terminated"
COUNTING_STATUSES = (STATUS_ACTIVE, STATUS_MODIFIED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmployeeRecord(Base):
    __tablename__ = "employees"
    __table_args__ = (
        CheckConstraint("status IN ('Active', 'Inactive')", name="ck_employees_status"),
        CheckConstraint(
            "system_role IS NULL OR system_role IN ('Manager', 'Director', 'Operator')",
            name="ck_employees_system_role",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    primary_location: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Active")
    system_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Infraction(Base):
    __tablename__ = "infractions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('Active', 'Modified', 'Deleted', 'Archived-Terminated')",
            name="ck_infractions_status",
        ),
        Index("ix_infractions_employee_date", "employee_id", "date"),
    )

    infraction_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    infraction_type: Mapped[str] = mapped_column(String(120), nullable=False)
    points: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    entered_by: Mapped[str] = mapped_column(String(255), nullable=False)
    entry_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expiration_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default=STATUS_ACTIVE, index=True)
    modified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    modified_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    modification_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class EditLogEntry(Base):
    __tablename__ = "edit_log"
    __table_args__ = (
        CheckConstraint(
            "action_type IN ('edit_infraction', 'delete_infraction', 'remove_points', 'add_credit', 'terminate')",
            name="ck_edit_log_action_type",
        ),
    )

    log_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    action_type: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_identity: Mapped[str] = mapped_column(String(255), nullable=False)
    target_type: Mapped[str] = mapped_column(String(40), nullable=False)
    target_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    employee_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    employee_name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_changed: Mapped[str] = mapped_column(String(60), nullable=False)
    original_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)


class NotificationLogEntry(Base):
    __tablename__ = "notification_log"
    __table_args__ = (
        CheckConstraint("status IN ('Sent', 'Failed')", name="ck_notification_log_status"),
    )

    log_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    employee_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    employee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipients: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    thresholds: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class TerminationRecord(Base):
    __tablename__ = "terminations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    employee_name: Mapped[str] = mapped_column(String(255), nullable=False)
    final_points: Mapped[float] = mapped_column(Float, nullable=False)
    archived_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    terminated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    terminated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    reason: Mapped[str] = mapped_column(Text, nullable=False)


class ThresholdSetting(Base):
    __tablename__ = "point_thresholds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    threshold: Mapped[float] = mapped_column(Float, nullable=False, unique=True)
    consequence: Mapped[str] = mapped_column(Text, nullable=False, default="")


class InfractionBucket(Base):
    __tablename__ = "infraction_buckets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    points: Mapped[float] = mapped_column(Float, nullable=False)
    examples: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
