from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DAY_VARIATIONS = {
    "monday": "monday",
    "mon": "monday",
    "tuesday": "tuesday",
    "tue": "tuesday",
    "tues": "tuesday",
    "wednesday": "wednesday",
    "wed": "wednesday",
    "weds": "wednesday",
    "wednes": "wednesday",
    "thursday": "thursday",
    "thu": "thursday",
    "thur": "thursday",
    "thurs": "thursday",
    "friday": "friday",
    "fri": "friday",
    "saturday": "saturday",
    "sat": "saturday",
    "sunday": "sunday",
    "sun": "sunday",
}

# longest first so "wednesday" wins over "wed"
_DAY_PATTERNS = tuple(
    (re.compile(rf"\b{variation}\b"), DAY_VARIATIONS[variation])
    for variation in sorted(DAY_VARIATIONS, key=len, reverse=True)
)

VAGUE_TIME_RANGES = {
    "morning": (9, 12),
    "afternoon": (12, 17),
    "evening": (17, 20),
}

_TIME_PATTERNS = (
    re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b"),
    re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?(?:\s*(am|pm))?\b"),
    re.compile(r"\b(\d{1,2}):(\d{2})\b()"),
)

ORDINALS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "1st": 1,
    "2nd": 2,
    "3rd": 3,
    "4th": 4,
}

_SELECTION_TAIL = r"(?:\s+(?:works|please|is good|is fine|sounds good|works for me))?[.!]*"

_SLOT_REFERENCE_PATTERNS = (
    re.compile(rf"^(?:option|number|#|slot)\s*(\d){_SELECTION_TAIL}$"),
    re.compile(r"^(\d)[.!]*$"),
    re.compile(
        rf"^(?:the\s+)?(first|second|third|fourth|fifth|sixth|1st|2nd|3rd|4th)"
        rf"(?:\s+(?:one|option|slot|time))?{_SELECTION_TAIL}$"
    ),
)


@dataclass(frozen=True)
class DayReference:
    """A day mentioned in a message: either a weekday or a concrete relative date."""

    label: str
    weekday: int | None = None
    on_date: date | None = None

    def matches(self, moment: datetime) -> bool:
        if self.on_date is not None:
            return moment.date() == self.on_date
        return moment.weekday() == self.weekday

    @property
    def display(self) -> str:
        return self.label.capitalize()


@dataclass(frozen=True)
class ParsedTime:
    hour: int
    minute: int = 0
    has_meridiem: bool = False

    def candidate_hours(self) -> tuple[int, ...]:
        if self.has_meridiem or self.hour >= 12:
            return (self.hour,)
        return (self.hour, (self.hour + 12) % 24)

    def matches(self, moment: datetime) -> bool:
        return moment.minute == self.minute and moment.hour in self.candidate_hours()

    def distance_minutes(self, moment: datetime) -> int:
        slot_minutes = moment.hour * 60 + moment.minute
        return min(abs(slot_minutes - (hour * 60 + self.minute)) for hour in self.candidate_hours())

    @property
    def display(self) -> str:
        hour = self.candidate_hours()[-1]
        suffix = "PM" if hour >= 12 else "AM"
        return f"{(hour % 12) or 12}:{self.minute:02d} {suffix}"


def extract_weekday(text: str) -> str | None:
    """Return the canonical weekday named in `text`, if any."""
    normalized = text.lower()
    for pattern, canonical in _DAY_PATTERNS:
        if pattern.search(normalized):
            return canonical
    return None


def extract_day_reference(text: str, today: date) -> DayReference | None:
    normalized = text.lower()
    if re.search(r"\btoday\b", normalized):
        return DayReference(label="today", on_date=today)
    if re.search(r"\btomorrow\b", normalized):
        return DayReference(label="tomorrow", on_date=today + timedelta(days=1))

    weekday = extract_weekday(normalized)
    if weekday is None:
        return None
    return DayReference(label=weekday, weekday=WEEKDAYS.index(weekday))


def day_reference_for(name: str) -> DayReference | None:
    canonical = DAY_VARIATIONS.get(name.strip().lower())
    if canonical is None:
        return None
    return DayReference(label=canonical, weekday=WEEKDAYS.index(canonical))


def parse_time(text: str) -> ParsedTime | None:
    """Parse "2pm", "2:30 pm", "at 2", "at 14:30" or "14:30"."""
    normalized = text.lower()
    for pattern in _TIME_PATTERNS:
        match = pattern.search(normalized)
        if not match:
            continue
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else 0
        meridiem = match.group(3) or None
        if minute > 59:
            continue
        if meridiem:
            if not 1 <= hour <= 12:
                continue
            if meridiem == "pm" and hour < 12:
                hour += 12
            elif meridiem == "am" and hour == 12:
                hour = 0
            return ParsedTime(hour=hour, minute=minute, has_meridiem=True)
        if hour > 23:
            continue
        return ParsedTime(hour=hour, minute=minute, has_meridiem=hour >= 13)
    return None


def parse_time_24h(value: str) -> ParsedTime | None:
    match = re.fullmatch(r"\s*(\d{1,2}):(\d{2})\s*", value or "")
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return ParsedTime(hour=hour, minute=minute, has_meridiem=True)


def parse_slot_reference(text: str) -> int | None:
    """Return the 1-based option number for "option 2", "#3", "2", "the first one"."""
    normalized = re.sub(r"\s+", " ", text.lower()).strip()
    for pattern in _SLOT_REFERENCE_PATTERNS:
        match = pattern.match(normalized)
        if not match:
            continue
        token = match.group(1)
        if token.isdigit():
            return int(token)
        return ORDINALS.get(token)
    return None


def extract_time_of_day(text: str) -> str | None:
    normalized = text.lower()
    for label in VAGUE_TIME_RANGES:
        if label in normalized:
            return label
    return None


def extract_relative_date(text: str) -> str | None:
    normalized = text.lower()
    for label in ("tomorrow", "today", "next week", "this week"):
        if label in normalized:
            return label
    return None
