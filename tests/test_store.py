from __future__ import annotations

import gc
import io
import json
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

import manager_hub.db as app_db
import manager_hub.store as store_module
from manager_hub.exceptions import StoreError
from manager_hub.logging_config import configure_logging, get_logger, reset_logging
from manager_hub.main import app
from manager_hub.policy import load_policy
from manager_hub.store import employee_lock, seed_default_settings


def test_roster_sync_upserts_and_deactivates_missing(store):
    store.upsert_employees([{"employee_id": "E1", "full_name": "One"}, {"employee_id": "E2", "full_name": "Two"}])

    store.upsert_employees([{"employee_id": "E2", "full_name": "Two Renamed", "system_role": "Manager"}])

    one = store.find_employee("E1")
    two = store.find_employee("E2")
    assert one.status == "Inactive"
    assert two.full_name == "Two Renamed"
    assert two.system_role == "Manager"
    assert [e.employee_id for e in store.list_employees(include_inactive=False)] == ["E2"]


def test_seeded_policy_defaults(store, db):
    seed_default_settings(db)
    policy = load_policy(store)

    assert policy.threshold_values == [2, 3, 5, 6, 9, 12, 15]
    assert policy.consequence_for(15) == "Termination review."
    assert [b.name for b in policy.buckets] == ["Minor", "Moderate", "Serious", "Severe"]
    assert policy.bucket_named("SEVERE").points == 8
    assert policy.backdate_limit_days == 7
    assert policy.valid_locations == ()


def test_settings_round_trip(store):
    store.put_setting("backdate_limit_days", 3)

    assert store.get_setting("backdate_limit_days") == 3
    assert store.get_setting("missing", "fallback") == "fallback"
    assert load_policy(store).backdate_limit_days == 3


def test_audit_entries_require_a_reason(store):
    with pytest.raises(ValueError):
        store.append_audit_log_entry({"action_type": "terminate", "reason": "  "})


def test_employee_lock_is_shared_per_employee():
    assert employee_lock("E1") is employee_lock("E1")
    assert employee_lock("E1") is not employee_lock("E2")


def test_employee_lock_is_released_from_the_registry_when_unused():
    held = employee_lock("E-TEMP")
    assert "E-TEMP" in store_module._employee_locks
    assert employee_lock("E-TEMP") is held

    del held
    gc.collect()

    assert "E-TEMP" not in store_module._employee_locks


def test_update_of_missing_infraction_raises(store):
    with pytest.raises(StoreError) as excinfo:
        store.update_infraction_fields("INF-00000000-0000", {"status": "Deleted"})

    assert excinfo.value.code == "STORE_ERROR"


def test_database_failures_surface_as_store_error(store, db):
    db.execute(text("DROP TABLE infractions"))
    db.commit()

    with pytest.raises(StoreError) as excinfo:
        store.list_infractions_by_employee("E1")

    assert excinfo.value.operation == "list_infractions_by_employee"


def test_store_failure_maps_to_503(store):
    store.upsert_employees([{"employee_id": "E1", "full_name": "One"}])
    with app_db.engine.begin() as conn:
        conn.execute(text("DROP TABLE infractions"))

    response = TestClient(app).get("/api/employees/E1/points", headers={"X-User-Id": "op", "X-User-Role": "Operator"})

    assert response.status_code == 503


def test_structured_log_lines_are_json():
    buffer = io.StringIO()
    reset_logging()
    try:
        configure_logging(level="DEBUG", stream=buffer)
        get_logger("tests").info("Infraction recorded", extra={"employee_id": "E1", "incident": date(2026, 1, 2)})
        payload = json.loads(buffer.getvalue().splitlines()[-1])
    finally:
        reset_logging()

    assert payload["logger"] == "manager_hub.tests"
    assert payload["message"] == "Infraction recorded"
    assert payload["employee_id"] == "E1"
    assert payload["incident"] == "2026-01-02"
