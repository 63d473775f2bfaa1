from __future__ import annotations

from collections.abc import Iterable

from manager_hub.policy import Threshold


def detect_thresholds(old_points: float, new_points: float, thresholds: Iterable[Threshold | float]) -> list[float]:
    """Return the thresholds T with old_points < T <= new_points, ascending.

    Falling or unchanged totals never cross anything.
    """
    if new_points <= old_points:
        return []
    values = sorted(t.threshold if isinstance(t, Threshold) else float(t) for t in thresholds)
    return [value for value in values if old_points < value <= new_points]


def termination_tier(crossed: Iterable[float], termination_threshold: float) -> bool:
    return any(value >= termination_threshold for value in crossed)
