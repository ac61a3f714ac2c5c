from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from bookerbot.application.utils.date_parser import WEEKDAYS
from bookerbot.domain.entities.appointment import BusyPeriod
from bookerbot.domain.entities.booking_state import TimeSlot
from bookerbot.domain.entities.contact import BusinessHours, DayHours

SLOT_STEP_MINUTES = 30

DEFAULT_BUSINESS_HOURS: BusinessHours = {
    "monday": DayHours(start=time(9, 0), end=time(17, 0)),
    "tuesday": DayHours(start=time(9, 0), end=time(17, 0)),
    "wednesday": DayHours(start=time(9, 0), end=time(17, 0)),
    "thursday": DayHours(start=time(9, 0), end=time(17, 0)),
    "friday": DayHours(start=time(9, 0), end=time(17, 0)),
    "saturday": None,
    "sunday": None,
}


def safe_timezone(name: str | None, fallback: str = "Europe/London") -> ZoneInfo:
    try:
        return ZoneInfo(name or fallback)
    except Exception:
        return ZoneInfo(fallback)


def generate_available_slots(
    busy: Sequence[BusyPeriod],
    timezone: ZoneInfo,
    now: datetime,
    duration_minutes: int = 30,
    business_hours: BusinessHours | None = None,
    days_ahead: int = 14,
    min_lead_time_hours: int = 2,
) -> list[TimeSlot]:
    """Walk business hours in 30-minute steps and keep every slot clear of busy periods."""
    hours = business_hours or DEFAULT_BUSINESS_HOURS
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=SLOT_STEP_MINUTES)
    earliest = now + timedelta(hours=min_lead_time_hours)
    horizon = now + timedelta(days=days_ahead)
    today = now.astimezone(timezone).date()

    slots: list[TimeSlot] = []
    for offset in range(days_ahead + 1):
        day = today + timedelta(days=offset)
        window = hours.get(WEEKDAYS[day.weekday()])
        if window is None:
            continue

        cursor = datetime.combine(day, window.start, tzinfo=timezone)
        close = datetime.combine(day, window.end, tzinfo=timezone)
        while cursor + duration <= close:
            end = cursor + duration
            if earliest <= cursor <= horizon and not _overlaps_busy(cursor, end, busy):
                slots.append(TimeSlot(start=cursor, end=end, formatted=format_slot(cursor, timezone)))
            cursor += step

    return slots


def select_diverse_slots(slots: Sequence[TimeSlot], max_slots: int = 4) -> list[TimeSlot]:
    """
    Spread offers across days and times of day.

    Walks days chronologically taking the middle morning slot (hour < 12)
    and the middle afternoon slot of each day until `max_slots` are chosen.
    """
    if len(slots) <= max_slots:
        return list(slots)

    by_day: dict[date, list[TimeSlot]] = {}
    for slot in sorted(slots, key=lambda s: s.start):
        by_day.setdefault(slot.start.date(), []).append(slot)

    selected: list[TimeSlot] = []
    for day_slots in by_day.values():
        morning = [s for s in day_slots if s.start.hour < 12]
        afternoon = [s for s in day_slots if s.start.hour >= 12]
        for bucket in (morning, afternoon):
            if bucket and len(selected) < max_slots:
                selected.append(bucket[len(bucket) // 2])
        if len(selected) >= max_slots:
            break

    return selected


def format_clock(moment: datetime) -> str:
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{(moment.hour % 12) or 12}:{moment.minute:02d} {suffix}"


def format_day(moment: datetime) -> str:
    return f"{moment:%A}, {moment.day} {moment:%b}"


def format_slot(start: datetime, timezone: ZoneInfo) -> str:
    local = start.astimezone(timezone)
    return f"{format_day(local)} at {format_clock(local)}"


def format_slot_list(slots: Sequence[TimeSlot]) -> str:
    return "\n".join(f"{index}. {slot.formatted}" for index, slot in enumerate(slots, start=1))


def _overlaps_busy(start: datetime, end: datetime, busy: Sequence[BusyPeriod]) -> bool:
    return any(start < period.end and end > period.start for period in busy)
