from __future__ import annotations

from datetime import timedelta

from conftest import days_ago, seed_infraction
from manager_hub.models import STATUS_ARCHIVED, STATUS_DELETED, STATUS_MODIFIED
from manager_hub.points import calculate_points, expiration_for, highest_points_ever, summarize_points


def test_unknown_employee_has_zero_points(store, today):
    summary = calculate_points(store, "NOPE", today)

    assert summary.total_points == 0
    assert summary.active_infractions == []
    assert summary.expired_infractions == []
    assert summary.next_expiration_date is None


def test_rolling_window_partitions_active_and_expired(roster, today):
    recent = seed_infraction(roster, "E100", days_ago(10), 3)
    boundary = seed_infraction(roster, "E100", days_ago(90), 1)
    old = seed_infraction(roster, "E100", days_ago(91), 5)

    summary = calculate_points(roster, "E100", today)

    active_ids = {i.infraction_id for i in summary.active_infractions}
    assert active_ids == {recent.infraction_id, boundary.infraction_id}
    assert [i.infraction_id for i in summary.expired_infractions] == [old.infraction_id]
    assert summary.total_points == 4


def test_deleted_and_archived_rows_never_count(roster, today):
    seed_infraction(roster, "E100", days_ago(3), 3)
    seed_infraction(roster, "E100", days_ago(4), 5, status=STATUS_DELETED)
    seed_infraction(roster, "E100", days_ago(5), 8, status=STATUS_ARCHIVED)
    seed_infraction(roster, "E100", days_ago(6), 1, status=STATUS_MODIFIED)

    summary = calculate_points(roster, "E100", today)

    assert summary.total_points == 4
    assert len(summary.active_infractions) == 2
    assert summary.expired_infractions == []


def test_total_is_floored_at_minus_six(roster, today):
    seed_infraction(roster, "E100", days_ago(2), -6, infraction_type="Positive Credit")
    seed_infraction(roster, "E100", days_ago(1), -5, infraction_type="Positive Credit")

    assert calculate_points(roster, "E100", today).total_points == -6


def test_active_sorted_by_expiration_and_next_expiration_is_soonest(roster, today):
    later = seed_infraction(roster, "E100", days_ago(2), 1)
    sooner = seed_infraction(roster, "E100", days_ago(40), 3)

    summary = calculate_points(roster, "E100", today)

    assert [i.infraction_id for i in summary.active_infractions] == [sooner.infraction_id, later.infraction_id]
    assert summary.next_expiration_date == expiration_for(days_ago(40))
    assert summary.next_expiration_date == today + timedelta(days=50)


def test_infractions_dated_after_as_of_still_count(roster, today):
    after_as_of = seed_infraction(roster, "E100", days_ago(1), 3)

    summary = calculate_points(roster, "E100", today - timedelta(days=30))

    assert [i.infraction_id for i in summary.active_infractions] == [after_as_of.infraction_id]
    assert summary.total_points == 3


def test_summarize_points_ignores_non_counting_statuses(roster, today):
    rows = [
        seed_infraction(roster, "E100", days_ago(1), 2),
        seed_infraction(roster, "E100", days_ago(1), 9, status=STATUS_DELETED),
    ]

    assert summarize_points(rows, today).total_points == 2


def test_highest_points_ever_is_forward_running_peak(roster):
    rows = [
        seed_infraction(roster, "E100", days_ago(200), 5),
        seed_infraction(roster, "E100", days_ago(150), 4),
        seed_infraction(roster, "E100", days_ago(20), -3, infraction_type="Point Removal"),
        seed_infraction(roster, "E100", days_ago(10), 1),
        seed_infraction(roster, "E100", days_ago(5), 20, status=STATUS_DELETED),
    ]

    assert highest_points_ever(rows) == 9
    assert highest_points_ever([]) == 0
