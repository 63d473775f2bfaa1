from __future__ import annotations

import os
from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

import manager_hub.db as app_db
from manager_hub.exceptions import NotificationError
from manager_hub.models import STATUS_ACTIVE, Infraction, utcnow
from manager_hub.points import expiration_for
from manager_hub.store import RecordStore, seed_default_settings

os.environ.setdefault("OPERATIONS_EMAIL", "ops@example.com")
os.environ.setdefault("ESCALATION_EMAILS", "director@example.com, hr@example.com")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")

LONG_TEXT = (
    "Employee arrived forty minutes after the scheduled start of the opening shift without calling ahead. "
    "The shift lead covered the register during the rush and documented the conversation held afterwards. "
    "The employee acknowledged the schedule and agreed to set an earlier alarm going forward."
)


@pytest.fixture(autouse=True)
def reset_database(tmp_path, monkeypatch):
    db_file = tmp_path / "test_manager_hub.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")

    # Rebuild DB bindings per test so every test gets its own writable SQLite file.
    app_db.engine.dispose()
    app_db.DATABASE_URL = app_db.get_database_url()
    app_db.engine = app_db.build_engine(app_db.DATABASE_URL)
    app_db.SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=app_db.engine,
        expire_on_commit=False,
    )

    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.Base.metadata.create_all(bind=app_db.engine)
    db = app_db.SessionLocal()
    seed_default_settings(db)
    db.close()
    yield
    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.engine.dispose()


@pytest.fixture
def db():
    session = app_db.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return RecordStore(db)


@pytest.fixture
def today() -> date:
    return date.today()


@pytest.fixture
def roster(store):
    store.upsert_employees(
        [
            {"employee_id": "E100", "full_name": "Avery Hourly", "primary_location": "Downtown", "status": "Active"},
            {"employee_id": "E200", "full_name": "Blake Manager", "primary_location": "Downtown", "system_role": "Manager"},
            {"employee_id": "E300", "full_name": "Casey Director", "primary_location": "Uptown", "system_role": "Director"},
            {"employee_id": "E400", "full_name": "Drew Operator", "primary_location": "Uptown", "system_role": "Operator"},
            {"employee_id": "E500", "full_name": "Emery Former", "primary_location": "Uptown", "status": "Inactive"},
        ]
    )
    return store


def days_ago(days: int) -> date:
    return date.today() - timedelta(days=days)


_seq = {"n": 0}


def seed_infraction(store: RecordStore, employee_id: str, incident: date, points: float, **overrides) -> Infraction:
    """Write an infraction row directly, bypassing entry validation, for historical fixtures."""
    _seq["n"] += 1
    employee = store.find_employee(employee_id)
    values = {
        "infraction_id": f"INF-SEED-{_seq['n']:05d}",
        "employee_id": employee_id,
        "full_name": employee.full_name if employee is not None else employee_id,
        "date": incident,
        "infraction_type": "Moderate",
        "points": float(points),
        "description": LONG_TEXT,
        "location": "Downtown",
        "entered_by": "seed",
        "entry_timestamp": utcnow(),
        "expiration_date": expiration_for(incident),
        "status": STATUS_ACTIVE,
    }
    values.update(overrides)
    record = Infraction(**values)
    store.append_infraction(record)
    return record


class FakeChannel:
    def __init__(self, failures: int = 0, admin_fails: bool = False):
        self.failures = failures
        self.admin_fails = admin_fails
        self.sent: list[dict] = []

    def send(self, recipients, subject, html_body, text_body, priority="normal"):
        self.sent.append({"recipients": list(recipients), "subject": subject, "text": text_body, "priority": priority})
        if subject.startswith("[Manager Hub] Notification delivery failed"):
            if self.admin_fails:
                raise NotificationError("admin relay down")
            return
        if self.failures > 0:
            self.failures -= 1
            raise NotificationError("connection refused")


def no_sleep(seconds: float) -> None:
    return None
