"""Availability computation over the local mirror."""

from calsync.availability.resolver import (
    busy_intervals_for_day,
    busy_intervals_in_window,
    find_free_slots,
    find_gaps,
    is_interval_busy,
)
from calsync.availability.suggestions import (
    find_alternative_slots,
    find_conflicts,
    suggest_time_slots,
)

__all__ = [
    "busy_intervals_for_day",
    "busy_intervals_in_window",
    "find_free_slots",
    "find_gaps",
    "is_interval_busy",
    "find_alternative_slots",
    "find_conflicts",
    "suggest_time_slots",
]
