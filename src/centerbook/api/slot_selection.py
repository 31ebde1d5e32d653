"""
Slot ordering and selection.

Shared by the reservation flow (which presents slots in a fixed order) and
the CLI (which can pick a slot automatically from a preferred start time).
"""

from datetime import datetime, time
from typing import Optional

from .base import ScheduleSlot


def order_slots(slots: list[ScheduleSlot]) -> list[ScheduleSlot]:
    """Sort slots by start time; ties are broken by id so the order is deterministic."""
    return sorted(slots, key=lambda s: (s.start_time, s.id))


def selectable_slots(slots: list[ScheduleSlot]) -> list[ScheduleSlot]:
    return [s for s in order_slots(slots) if s.is_open]


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def parse_time(value: str) -> time:
    """Parse '19:00', '7:30' or '19:00:00'."""
    value = value.strip()
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time '{value}'. Use HH:MM.")


def select_best_slot(
    slots: list[ScheduleSlot],
    best: time,
    earliest: Optional[time] = None,
    latest: Optional[time] = None,
) -> Optional[ScheduleSlot]:
    """
    Select the open slot whose start time is closest to the preferred time.

    Args:
        slots: Slots of one section on one date
        best: Ideal start time
        earliest: Optional lower bound on the start time (inclusive)
        latest: Optional upper bound on the start time (inclusive)

    Returns:
        The best matching open ScheduleSlot, or None if no open slot fits the window
    """
    candidates = [
        s for s in selectable_slots(slots)
        if (earliest is None or s.start_time >= earliest)
        and (latest is None or s.start_time <= latest)
    ]
    if not candidates:
        return None

    # Equal distance: the earlier slot wins, then the lower id
    return min(
        candidates,
        key=lambda s: (abs(_minutes(s.start_time) - _minutes(best)), s.start_time, s.id),
    )
