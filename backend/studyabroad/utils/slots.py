"""Consultant availability and slot generation.

Working hours are stored per weekday as `HH:MM` strings. Everything is
converted to minutes past midnight, slots are emitted at a fixed step
and filtered against breaks and existing appointments with a linear
interval-overlap check.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_DAY = {
    "available": True,
    "start_time": "09:00",
    "end_time": "17:00",
    "breaks": [{"start": "12:00", "end": "13:00"}],
}


def time_to_minutes(value: str) -> int:
    """`"09:30"` -> 570. Raises ValueError for malformed input."""
    try:
        hours, minutes = value.split(":")
        h, m = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValueError(f"invalid time: {value!r}")
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"invalid time: {value!r}")
    return h * 60 + m


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def day_schedule(availability: Optional[dict], day: date) -> dict:
    """Working-hours entry for `day`; weekdays missing from the map use the default."""
    weekday = WEEKDAYS[day.weekday()]
    entry = (availability or {}).get(weekday)
    if entry is None:
        return DEFAULT_DAY
    return entry


def _break_ranges(breaks: Iterable[dict]) -> List[tuple]:
    return [(time_to_minutes(b["start"]), time_to_minutes(b["end"])) for b in breaks or []]


def generate_time_slots(start_time: str, end_time: str, slot_minutes: int = 60,
                        breaks: Sequence[dict] = ()) -> List[str]:
    """Slot start times between `start_time` and `end_time`.

    A slot is kept when it ends by `end_time` and its start does not lie
    inside a break.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    start = time_to_minutes(start_time)
    end = time_to_minutes(end_time)
    pauses = _break_ranges(breaks)
    slots = []
    current = start
    while current + slot_minutes <= end:
        if not any(b_start <= current < b_end for b_start, b_end in pauses):
            slots.append(minutes_to_time(current))
        current += slot_minutes
    return slots


def overlaps(start_a: datetime, minutes_a: int, start_b: datetime, minutes_b: int) -> bool:
    end_a = start_a + timedelta(minutes=minutes_a)
    end_b = start_b + timedelta(minutes=minutes_b)
    return start_a < end_b and start_b < end_a


def is_slot_booked(slot_start: datetime, slot_minutes: int, appointments: Iterable) -> bool:
    """True when any appointment (`scheduled_at`, `duration`) overlaps the slot."""
    return any(overlaps(slot_start, slot_minutes, a.scheduled_at, a.duration) for a in appointments)


def within_working_hours(schedule: dict, start_minutes: int, duration: int) -> bool:
    """True when `[start, start+duration)` fits the day and does not start in a break."""
    if not schedule.get("available", True):
        return False
    day_start = time_to_minutes(schedule.get("start_time", DEFAULT_DAY["start_time"]))
    day_end = time_to_minutes(schedule.get("end_time", DEFAULT_DAY["end_time"]))
    if start_minutes < day_start or start_minutes + duration > day_end:
        return False
    return not any(b_start <= start_minutes < b_end for b_start, b_end in _break_ranges(schedule.get("breaks")))


def available_days(availability: Optional[dict], start_day: date, days: int, appointments: Sequence,
                   now: datetime, slot_minutes: int = 60) -> List[dict]:
    """Per-day free slots for `[start_day, start_day + days)`."""
    out = []
    for offset in range(days):
        day = start_day + timedelta(days=offset)
        schedule = day_schedule(availability, day)
        entry = {"date": day.isoformat(), "weekday": WEEKDAYS[day.weekday()], "slots": []}
        if schedule.get("available", True):
            candidates = generate_time_slots(
                schedule.get("start_time", DEFAULT_DAY["start_time"]),
                schedule.get("end_time", DEFAULT_DAY["end_time"]),
                slot_minutes,
                schedule.get("breaks") or [],
            )
            for slot in candidates:
                slot_start = datetime.combine(day, datetime.min.time()) + timedelta(minutes=time_to_minutes(slot))
                if slot_start <= now:
                    continue
                if is_slot_booked(slot_start, slot_minutes, appointments):
                    continue
                entry["slots"].append(slot)
        entry["available"] = bool(entry["slots"])
        out.append(entry)
    return out
