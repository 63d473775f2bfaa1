from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import FakeChannel, no_sleep
from manager_hub.config import ServiceSettings
from manager_hub.exceptions import NotificationError, StoreError, ThresholdEmailInputError
from manager_hub.notifications import (
    DEFAULT_CONSEQUENCE,
    RetryPolicy,
    SmtpChannel,
    build_threshold_email,
    normalize_recipients,
    send_threshold_email,
    severity_tier,
)
from manager_hub.policy import Threshold


def params(**overrides):
    today = date.today()
    data = {
        "employee_name": "Avery Hourly",
        "employee_id": "E100",
        "current_points": 7.0,
        "thresholds_crossed": [5, 6],
        "infractions_list": [
            {"date": today - timedelta(days=days), "infraction_type": "Minor", "points": 1, "description": f"row {days}",
             "expiration_date": today - timedelta(days=days) + timedelta(days=90)}
            for days in range(1, 8)
        ],
    }
    data.update(overrides)
    return data


THRESHOLDS = [Threshold(5, "First written warning."), Threshold(6, "Second written warning and schedule review.")]


def test_severity_tiers():
    assert severity_tier([5, 6]) == "informational"
    assert severity_tier([9]) == "final_warning"
    assert severity_tier([9, 12, 15]) == "termination"


def test_informational_email_has_normal_priority_and_consequences():
    email = build_threshold_email(params(), THRESHOLDS)

    assert email.priority == "normal"
    assert email.subject == "Accountability points update: Avery Hourly is at 7 points"
    assert "First written warning." in email.body_text
    assert "Second written warning and schedule review." in email.body_html


def test_only_five_most_recent_infractions_are_listed():
    email = build_threshold_email(params(), THRESHOLDS)

    assert "row 1" in email.body_text
    assert "row 5" in email.body_text
    assert "row 6" not in email.body_text
    assert email.body_text.index("row 1") < email.body_text.index("row 5")


def test_next_expiration_falls_back_to_soonest_upcoming_date():
    today = date.today()
    email = build_threshold_email(params(), THRESHOLDS, today=today)

    assert (today + timedelta(days=83)).isoformat() in email.body_text


def test_termination_email_is_high_priority_with_marker():
    email = build_threshold_email(params(current_points=16, thresholds_crossed=[9, 12, 15]), THRESHOLDS)

    assert email.priority == "high"
    assert email.tier == "termination"
    assert "TERMINATION" in email.subject
    assert DEFAULT_CONSEQUENCE in email.body_text


def test_final_warning_email_is_high_priority():
    email = build_threshold_email(params(current_points=9.5, thresholds_crossed=[9]), THRESHOLDS)

    assert email.priority == "high"
    assert email.subject.startswith("[FINAL WARNING] Avery Hourly has reached 9.5")


def test_html_body_escapes_employee_name():
    email = build_threshold_email(params(employee_name="<b>Avery</b>"), THRESHOLDS)

    assert "&lt;b&gt;Avery&lt;/b&gt;" in email.body_html


def test_missing_fields_raise():
    with pytest.raises(ThresholdEmailInputError) as excinfo:
        build_threshold_email(params(employee_name="", infractions_list=None), THRESHOLDS)

    assert excinfo.value.missing_fields == ["employee_name", "infractions_list"]


def test_normalize_recipients():
    assert normalize_recipients("a@example.com; b@example.com,, ") == ["a@example.com", "b@example.com"]
    assert normalize_recipients(None) == []


def test_send_succeeds_first_try_and_logs_one_attempt(store):
    channel = FakeChannel()

    result = send_threshold_email(
        store, channel, ["ops@example.com"], "Subject", "<p>hi</p>", "hi",
        {"employee_id": "E100", "employee_name": "Avery", "thresholds": [5], "priority": "normal"},
        retry_policy=RetryPolicy(sleep=no_sleep),
    )

    assert result.success
    assert result.status == "Sent"
    assert result.attempts == 1
    [log] = store.list_notification_log("E100")
    assert log.status == "Sent"
    assert log.retry_count == 0
    assert log.thresholds == [5.0]


def test_send_retries_once_after_backoff(store):
    channel = FakeChannel(failures=1)
    sleeps: list[float] = []

    result = send_threshold_email(
        store, channel, "ops@example.com", "Subject", "<p>hi</p>", "hi", {"employee_id": "E100"},
        retry_policy=RetryPolicy(backoff_seconds=2.0, sleep=sleeps.append),
    )

    assert result.success
    assert result.attempts == 2
    assert result.message == "Notification sent on attempt 2."
    assert sleeps == [2.0]
    logs = store.list_notification_log("E100")
    assert [(log.attempt, log.retry_count, log.status) for log in logs] == [(1, 0, "Failed"), (2, 1, "Sent")]
    assert logs[0].error_message == "connection refused"


def test_final_failure_alerts_admin(store):
    channel = FakeChannel(failures=5)

    result = send_threshold_email(
        store, channel, ["ops@example.com"], "Subject", "", "body", {"employee_id": "E100", "employee_name": "Avery"},
        retry_policy=RetryPolicy(sleep=no_sleep),
        admin_email="admin@example.com",
    )

    assert not result.success
    assert result.status == "Failed"
    assert result.attempts == 2
    assert len(store.list_notification_log("E100")) == 2
    admin = channel.sent[-1]
    assert admin["recipients"] == ["admin@example.com"]
    assert admin["priority"] == "high"
    assert "connection refused" in admin["text"]


def test_each_retry_waits_the_configured_backoff(store):
    channel = FakeChannel(failures=5)
    sleeps: list[float] = []

    result = send_threshold_email(
        store, channel, ["ops@example.com"], "Subject", "", "body", {"employee_id": "E100"},
        retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=1.5, sleep=sleeps.append),
    )

    assert not result.success
    assert result.attempts == 3
    assert sleeps == [1.5, 1.5]
    assert result.message == "Notification could not be delivered after 3 attempts: connection refused"
    assert [log.attempt for log in store.list_notification_log("E100")] == [1, 2, 3]


def test_send_log_failure_is_not_retried(store):
    class BrokenLogStore(type(store)):
        def append_notification_log(self, entry):
            raise StoreError("append_notification_log", "disk full")

    channel = FakeChannel()
    sleeps: list[float] = []

    with pytest.raises(StoreError):
        send_threshold_email(
            BrokenLogStore(store.db), channel, ["ops@example.com"], "Subject", "", "body", {"employee_id": "E100"},
            retry_policy=RetryPolicy(sleep=sleeps.append),
        )

    assert len(channel.sent) == 1
    assert sleeps == []


def test_admin_alert_failure_is_swallowed(store):
    channel = FakeChannel(failures=5, admin_fails=True)

    result = send_threshold_email(
        store, channel, ["ops@example.com"], "Subject", "", "body", {"employee_id": "E100"},
        retry_policy=RetryPolicy(sleep=no_sleep),
        admin_email="admin@example.com",
    )

    assert not result.success


def test_send_rejects_missing_inputs_without_logging(store):
    channel = FakeChannel()

    no_recipients = send_threshold_email(store, channel, [], "Subject", "", "body")
    no_subject = send_threshold_email(store, channel, ["ops@example.com"], " ", "", "body")
    no_body = send_threshold_email(store, channel, ["ops@example.com"], "Subject", "", "")

    assert not no_recipients.success and not no_subject.success and not no_body.success
    assert channel.sent == []
    assert store.list_notification_log() == []


def test_smtp_channel_requires_host():
    with pytest.raises(NotificationError):
        SmtpChannel(ServiceSettings()).send(["ops@example.com"], "Subject", "", "body")
