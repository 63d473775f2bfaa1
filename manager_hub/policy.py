from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from manager_hub.store import RecordStore

EXPIRATION_DAYS = 90
POINT_FLOOR = -6.0
MIN_REASON_LENGTH = 240
DEFAULT_BACKDATE_LIMIT_DAYS = 7
FINAL_WARNING_THRESHOLD = 9.0
TERMINATION_THRESHOLD = 15.0
MAX_POSITIVE_CREDIT = 6

POSITIVE_CREDIT_TYPE = "Positive Credit"
POINT_REMOVAL_TYPE = "Point Removal"


@dataclass(frozen=True)
class Threshold:
    threshold: float
    consequence: str = ""


@dataclass(frozen=True)
class Bucket:
    name: str
    points: float
    examples: tuple[str, ...] = ()


@dataclass(frozen=True)
class PointsPolicy:
    """Settings snapshot shared by every calculation inside one request."""

    thresholds: tuple[Threshold, ...] = ()
    buckets: tuple[Bucket, ...] = ()
    backdate_limit_days: int = DEFAULT_BACKDATE_LIMIT_DAYS
    valid_locations: tuple[str, ...] = ()
    expiration_days: int = EXPIRATION_DAYS
    point_floor: float = POINT_FLOOR
    min_reason_length: int = MIN_REASON_LENGTH
    final_warning_threshold: float = FINAL_WARNING_THRESHOLD
    termination_threshold: float = TERMINATION_THRESHOLD

    @property
    def threshold_values(self) -> list[float]:
        return sorted(t.threshold for t in self.thresholds)

    def bucket_named(self, name: str) -> Bucket | None:
        wanted = name.strip().lower()
        for bucket in self.buckets:
            if bucket.name.strip().lower() == wanted:
                return bucket
        return None

    def consequence_for(self, threshold: float) -> str:
        for item in self.thresholds:
            if item.threshold == threshold:
                return item.consequence
        return ""

    def location_allowed(self, location: str) -> bool:
        if not self.valid_locations:
            return True
        wanted = location.strip().lower()
        return any(loc.strip().lower() == wanted for loc in self.valid_locations)


def load_policy(store: RecordStore) -> PointsPolicy:
    thresholds = tuple(sorted(store.get_threshold_table(), key=lambda t: t.threshold))
    buckets = tuple(store.get_bucket_table())
    backdate = store.get_setting("backdate_limit_days", DEFAULT_BACKDATE_LIMIT_DAYS)
    locations = store.get_setting("valid_locations", []) or []
    return PointsPolicy(
        thresholds=thresholds,
        buckets=buckets,
        backdate_limit_days=int(backdate),
        valid_locations=tuple(str(loc) for loc in locations),
    )
