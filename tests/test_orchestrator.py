from __future__ import annotations

from conftest import LONG_TEXT, FakeChannel, days_ago, no_sleep, seed_infraction
from manager_hub.config import ServiceSettings
from manager_hub.notifications import RetryPolicy
from manager_hub.orchestrator import process_infraction_with_notifications
from manager_hub.points import calculate_points

SETTINGS = ServiceSettings(
    operations_email="ops@example.com",
    escalation_emails=["director@example.com", "hr@example.com"],
    admin_email="admin@example.com",
)


def submit(store, channel, **overrides):
    data = {
        "employee_id": "E100",
        "date": days_ago(1).isoformat(),
        "infraction_type": "Moderate",
        "description": LONG_TEXT,
        "location": "Downtown",
    }
    data.update(overrides)
    return process_infraction_with_notifications(
        store,
        data,
        entered_by="mgr-1",
        channel=channel,
        settings=SETTINGS,
        retry_policy=RetryPolicy(sleep=no_sleep),
    )


def test_crossing_mid_table_sends_normal_priority_to_operations(roster):
    seed_infraction(roster, "E100", days_ago(20), 1)
    seed_infraction(roster, "E100", days_ago(10), 3)
    channel = FakeChannel()

    result = submit(roster, channel)

    assert result.success
    assert result.old_points == 4
    assert result.new_points == 7
    assert result.thresholds_crossed == [5, 6]
    assert result.email_sent
    assert result.email_status == "Sent"
    [sent] = channel.sent
    assert sent["recipients"] == ["ops@example.com"]
    assert sent["priority"] == "normal"


def test_termination_crossing_escalates_with_high_priority(roster):
    seed_infraction(roster, "E100", days_ago(15), 8)
    channel = FakeChannel()

    result = submit(roster, channel, infraction_type="Severe")

    assert result.old_points == 8
    assert result.new_points == 16
    assert result.thresholds_crossed == [9, 12, 15]
    [sent] = channel.sent
    assert sent["priority"] == "high"
    assert "TERMINATION" in sent["subject"]
    assert sent["recipients"] == ["director@example.com", "hr@example.com"]
    [log] = roster.list_notification_log("E100")
    assert log.thresholds == [9, 12, 15]


def test_no_crossing_means_no_email(roster):
    channel = FakeChannel()

    result = submit(roster, channel, infraction_type="Minor")

    assert result.success
    assert result.thresholds_crossed == []
    assert result.email_status == "Not Required"
    assert not result.email_sent
    assert channel.sent == []


def test_notification_failure_keeps_the_infraction(roster, today):
    channel = FakeChannel(failures=10)

    result = submit(roster, channel, infraction_type="Serious")

    assert result.success
    assert result.thresholds_crossed == [2, 3, 5]
    assert result.email_status == "Failed"
    assert not result.email_sent
    assert "Threshold notification failed" in result.message
    assert roster.get_infraction(result.infraction_id) is not None
    assert calculate_points(roster, "E100", today).total_points == 5
    assert len(roster.list_notification_log("E100")) == 2
    assert channel.sent[-1]["recipients"] == ["admin@example.com"]


def test_rejected_entry_reports_message_and_sends_nothing(roster):
    channel = FakeChannel()

    result = submit(roster, channel, description="too short")

    assert not result.success
    assert result.error == "validation"
    assert "240" in result.message
    assert result.infraction_id is None
    assert result.email_status == "Not Sent"
    assert channel.sent == []
    assert roster.list_infractions_by_employee("E100") == []
