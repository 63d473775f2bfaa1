from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from manager_hub.models import COUNTING_STATUSES, Infraction
from manager_hub.policy import EXPIRATION_DAYS, POINT_FLOOR, PointsPolicy

if TYPE_CHECKING:
    from manager_hub.store import RecordStore


@dataclass
class PointSummary:
    total_points: float = 0.0
    active_infractions: list[Infraction] = field(default_factory=list)
    expired_infractions: list[Infraction] = field(default_factory=list)
    next_expiration_date: date | None = None


def as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def expiration_for(incident_date: date, expiration_days: int = EXPIRATION_DAYS) -> date:
    return as_day(incident_date) + timedelta(days=expiration_days)


def counts_toward_total(infraction: Infraction) -> bool:
    return infraction.status in COUNTING_STATUSES


def summarize_points(
    infractions: Iterable[Infraction],
    as_of: date | datetime,
    *,
    expiration_days: int = EXPIRATION_DAYS,
    point_floor: float = POINT_FLOOR,
) -> PointSummary:
    as_of_day = as_day(as_of)
    cutoff = as_of_day - timedelta(days=expiration_days)
    active: list[Infraction] = []
    expired: list[Infraction] = []
    for infraction in infractions:
        if not counts_toward_total(infraction):
            continue
        if as_day(infraction.date) >= cutoff:
            active.append(infraction)
        else:
            expired.append(infraction)

    # Soonest-to-expire first; next_expiration_date depends on this order.
    active.sort(key=lambda i: (as_day(i.expiration_date), as_day(i.date), i.infraction_id))
    expired.sort(key=lambda i: (as_day(i.date), i.infraction_id))

    total = sum(float(i.points) for i in active)
    return PointSummary(
        total_points=max(total, point_floor),
        active_infractions=active,
        expired_infractions=expired,
        next_expiration_date=as_day(active[0].expiration_date) if active else None,
    )


def calculate_points(
    store: RecordStore,
    employee_id: str,
    as_of: date | datetime | None = None,
    policy: PointsPolicy | None = None,
) -> PointSummary:
    policy = policy or PointsPolicy()
    infractions = store.list_infractions_by_employee(employee_id, statuses=COUNTING_STATUSES)
    return summarize_points(
        infractions,
        as_of or date.today(),
        expiration_days=policy.expiration_days,
        point_floor=policy.point_floor,
    )


def highest_points_ever(infractions: Iterable[Infraction]) -> float:
    """Peak of a forward running total in incident-date order.

    Expirations are not replayed, so an employee whose points aged out between
    incidents reports a higher peak than they ever actually held.
    """
    ordered = sorted(
        (i for i in infractions if counts_toward_total(i)),
        key=lambda i: (as_day(i.date), i.infraction_id),
    )
    running = 0.0
    peak = 0.0
    for infraction in ordered:
        running += float(infraction.points)
        peak = max(peak, running)
    return peak
