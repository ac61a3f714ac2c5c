from __future__ import annotations

from datetime import datetime, time, timedelta

from bookerbot.application.utils.availability import (
    format_slot,
    format_slot_list,
    generate_available_slots,
    safe_timezone,
    select_diverse_slots,
)
from bookerbot.domain.entities.appointment import BusyPeriod
from bookerbot.domain.entities.contact import DayHours
from tests.conftest import FIXED_NOW, LONDON, slot


def test_slots_respect_lead_time_and_weekends():
    slots = generate_available_slots([], timezone=LONDON, now=FIXED_NOW, days_ahead=3)

    assert slots[0].start == datetime(2025, 1, 17, 11, 0, tzinfo=LONDON)
    assert all(s.start.weekday() < 5 for s in slots)
    assert all(s.end - s.start == timedelta(minutes=30) for s in slots)
    assert slots[-1].start == datetime(2025, 1, 20, 9, 0, tzinfo=LONDON)


def test_busy_periods_are_skipped():
    busy = [BusyPeriod(start=datetime(2025, 1, 20, 10, 0, tzinfo=LONDON), end=datetime(2025, 1, 20, 11, 0, tzinfo=LONDON))]

    slots = generate_available_slots(busy, timezone=LONDON, now=FIXED_NOW, days_ahead=4)
    monday = [s.start.time() for s in slots if s.start.day == 20]

    assert time(9, 30) in monday
    assert time(10, 0) not in monday
    assert time(10, 30) not in monday
    assert time(11, 0) in monday


def test_custom_business_hours():
    hours = {"monday": DayHours(start=time(13, 0), end=time(14, 0))}

    slots = generate_available_slots([], timezone=LONDON, now=FIXED_NOW, business_hours=hours, days_ahead=7)

    assert [s.start for s in slots] == [
        datetime(2025, 1, 20, 13, 0, tzinfo=LONDON),
        datetime(2025, 1, 20, 13, 30, tzinfo=LONDON),
    ]


def test_diverse_selection_spreads_across_days_and_halves():
    slots = generate_available_slots([], timezone=LONDON, now=FIXED_NOW)

    chosen = select_diverse_slots(slots, 4)

    assert [s.start for s in chosen] == [
        datetime(2025, 1, 17, 11, 30, tzinfo=LONDON),
        datetime(2025, 1, 17, 14, 30, tzinfo=LONDON),
        datetime(2025, 1, 20, 10, 30, tzinfo=LONDON),
        datetime(2025, 1, 20, 14, 30, tzinfo=LONDON),
    ]


def test_diverse_selection_returns_short_lists_unchanged():
    few = [slot(20, 10), slot(21, 10)]

    assert select_diverse_slots(few, 4) == few


def test_formatting():
    assert format_slot(datetime(2025, 1, 20, 14, 0, tzinfo=LONDON), LONDON) == "Monday, 20 Jan at 2:00 PM"
    assert format_slot_list([slot(20, 10), slot(21, 9, 30)]) == (
        "1. Monday, 20 Jan at 10:00 AM\n2. Tuesday, 21 Jan at 9:30 AM"
    )


def test_unknown_timezone_falls_back():
    assert safe_timezone("Mars/Olympus").key == "Europe/London"
    assert safe_timezone(None, "America/New_York").key == "America/New_York"
