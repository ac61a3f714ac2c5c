from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from bookerbot.application.ports.calendar import CalendarPort
from bookerbot.application.ports.contact_store import ContactStorePort
from bookerbot.application.utils.availability import (
    format_clock,
    format_day,
    format_slot,
    format_slot_list,
    generate_available_slots,
    safe_timezone,
    select_diverse_slots,
)
from bookerbot.application.utils.date_parser import (
    DayReference,
    ParsedTime,
    day_reference_for,
    extract_day_reference,
    parse_slot_reference,
    parse_time,
    parse_time_24h,
)
from bookerbot.application.utils.message_rules import is_affirmative, normalize_text
from bookerbot.application.utils.phrasing import PhraseVariation
from bookerbot.domain.entities.appointment import Appointment, CalendarEventInput, NewAppointment
from bookerbot.domain.entities.booking_state import BookingState, TimeSlot
from bookerbot.domain.entities.contact import CalendarConnection, Contact
from bookerbot.domain.entities.generation import ToolCall, ToolSpec

MAX_OFFER_ATTEMPTS = 2

OFFER_OPENERS = (
    "{first}, here's what I've got available:",
    "Let me check the calendar... Here's what works:",
    "{first}, I've got these times open:",
)

CONFIRMATIONS = (
    "Done - you're booked for {slot}. Calendar invite coming your way.",
    "Locked in for {slot}, {first}. You'll get a calendar invite shortly.",
    "{slot} it is. I'll send over a calendar invite now.",
)

RESCHEDULE_CONFIRMATIONS = (
    "All set - I've moved you to {slot}. An updated invite is on its way.",
    "Done, {first}. You're now booked for {slot}. Updated invite coming shortly.",
)

NO_AVAILABILITY_MESSAGE = (
    "Calendar's pretty packed for the next couple weeks. "
    "Want me to have someone reach out to find a time that works?"
)
OUT_OF_OPTIONS_MESSAGE = (
    "I haven't managed to find a time that suits you. "
    "Want me to have someone from the team reach out to sort one out?"
)
NO_APPOINTMENT_MESSAGE = (
    "I couldn't find an upcoming appointment for you. Would you like to book a new time instead?"
)

DEFAULT_HANDOFF_REASON = "Contact requested human assistance"

_WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

BOOKING_TOOLS = (
    ToolSpec(
        name="select_time_slot",
        description="The contact picked one of the offered times.",
        parameters={
            "type": "object",
            "properties": {
                "slot_index": {"type": "integer", "description": "1-based position in the offered list"},
                "day_preference": {"type": "string", "enum": _WEEKDAY_NAMES},
                "time_24h": {"type": "string", "description": "Requested time as HH:mm"},
            },
        },
    ),
    ToolSpec(
        name="confirm_booking",
        description="The contact agreed to the single most recently suggested time.",
        parameters={"type": "object", "properties": {}},
    ),
    ToolSpec(
        name="request_different_times",
        description="None of the offered times work for the contact.",
        parameters={"type": "object", "properties": {"reason": {"type": "string"}}},
    ),
    ToolSpec(
        name="request_human_help",
        description="The contact needs a person to help with scheduling.",
        parameters={"type": "object", "properties": {"reason": {"type": "string"}}},
    ),
)


@dataclass(frozen=True)
class BookingResult:
    booking_state: BookingState
    message: str = ""
    continue_with_ai: bool = False
    appointment: Appointment | None = None
    rescheduled: bool = False
    escalation_reason: str | None = None

    @property
    def appointment_created(self) -> bool:
        return self.appointment is not None and not self.rescheduled


class BookingUseCase:
    def __init__(
        self,
        store: ContactStorePort,
        calendar_factory: Callable[[CalendarConnection], CalendarPort],
        phrases: PhraseVariation | None = None,
        clock: Callable[[], datetime] | None = None,
        lookahead_days: int = 14,
        max_offered_slots: int = 4,
        min_lead_time_hours: int = 2,
        default_timezone: str = "Europe/London",
    ) -> None:
        self._store = store
        self._calendar_factory = calendar_factory
        self._phrases = phrases or PhraseVariation()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lookahead_days = lookahead_days
        self._max_offered_slots = max_offered_slots
        self._min_lead_time_hours = min_lead_time_hours
        self._default_timezone = default_timezone
        self._logger = logging.getLogger(__name__)

    async def is_calendar_connected(self, contact: Contact) -> bool:
        return await self._store.get_calendar_connection(contact.client.id) is not None

    async def offer_time_slots(
        self,
        contact: Contact,
        state: BookingState,
        day: DayReference | None = None,
        exclude: Sequence[TimeSlot] = (),
    ) -> BookingResult:
        connection = await self._store.get_calendar_connection(contact.client.id)
        if connection is None:
            return BookingResult(booking_state=state, continue_with_ai=True)

        slots = await self._available_slots(contact, connection)
        if slots is None:
            return BookingResult(booking_state=state, continue_with_ai=True)

        slots = [s for s in slots if s not in exclude]
        slots, missed_day = self._filter_by_day(contact, slots, day)
        if not slots:
            self._logger.info("No availability to offer", extra={"contact_id": contact.id})
            return BookingResult(
                booking_state=replace(state, offer_attempts=state.offer_attempts + 1),
                message=NO_AVAILABILITY_MESSAGE,
            )

        offered = tuple(select_diverse_slots(slots, self._max_offered_slots))
        if missed_day is not None:
            opener = f"I don't have anything on {missed_day.display}, but here's what I've got:"
        else:
            opener = self._phrases.choose(OFFER_OPENERS).format(first=contact.first_name or "Great")
        message = f"{opener}\n\n{format_slot_list(offered)}\n\nWhich works for you?"
        self._logger.info("Offering slots", extra={"contact_id": contact.id, "slots": len(offered)})
        return BookingResult(
            booking_state=replace(
                state,
                is_active=True,
                offered_slots=offered,
                slots_offered_at=self._clock(),
                selected_slot=None,
                offer_attempts=state.offer_attempts + 1,
                last_offered_slot=None,
            ),
            message=message,
        )

    async def start_reschedule(
        self,
        contact: Contact,
        state: BookingState,
        message: str | None = None,
    ) -> BookingResult:
        appointment = await self._store.get_latest_confirmed_appointment(contact.id)
        if appointment is None:
            return BookingResult(booking_state=state, message=NO_APPOINTMENT_MESSAGE)

        connection = await self._store.get_calendar_connection(contact.client.id)
        if connection is None:
            return BookingResult(booking_state=state, continue_with_ai=True)

        slots = await self._available_slots(contact, connection)
        if slots is None:
            return BookingResult(booking_state=state, continue_with_ai=True)

        slots = [s for s in slots if s.start != appointment.start_time]
        tz = self._timezone_for(contact)
        day = extract_day_reference(normalize_text(message), self._clock().astimezone(tz).date()) if message else None
        slots, missed_day = self._filter_by_day(contact, slots, day)
        if not slots:
            return BookingResult(
                booking_state=replace(state, offer_attempts=state.offer_attempts + 1),
                message=NO_AVAILABILITY_MESSAGE,
            )

        offered = tuple(select_diverse_slots(slots, self._max_offered_slots))
        current = format_slot(appointment.start_time, tz)
        lead_in = (
            f"I don't have anything on {missed_day.display}, but here's what I have"
            if missed_day is not None
            else "Here's what I have"
        )
        reply = (
            f"No problem, let's find a new time. You're currently booked for {current}. "
            f"{lead_in}:\n\n{format_slot_list(offered)}\n\nWhich works for you?"
        )
        self._logger.info("Offering reschedule slots", extra={"contact_id": contact.id, "slots": len(offered)})
        return BookingResult(
            booking_state=BookingState(
                is_active=True,
                offered_slots=offered,
                slots_offered_at=self._clock(),
                offer_attempts=state.offer_attempts + 1,
                is_rescheduling=True,
                existing_appointment_id=appointment.id,
                existing_calendar_event_id=appointment.calendar_event_id,
            ),
            message=reply,
        )

    async def handle_time_selection(self, contact: Contact, message: str, state: BookingState) -> BookingResult:
        """
        Resolve a reply to offered slots.

        An affirmative that agrees with the last suggested slot books it. After
        that, explicit references win: an option number, then a clock time (with
        an optional day), then a day on its own. A bare affirmative falls back to
        the only slot offered. Anything else goes to the conversational reply
        with booking still pending.
        """
        if not state.awaiting_selection:
            return BookingResult(booking_state=state, continue_with_ai=True)

        tz = self._timezone_for(contact)
        normalized = normalize_text(message)
        day = extract_day_reference(normalized, self._clock().astimezone(tz).date())
        parsed = parse_time(normalized)
        reference = parse_slot_reference(normalized)

        affirmative = is_affirmative(normalized)
        suggested = state.last_offered_slot
        if affirmative and suggested is not None:
            if self._agrees_with(contact, state, suggested, reference, parsed, day):
                return await self._book(contact, suggested, state)

        if reference is not None:
            if 1 <= reference <= len(state.offered_slots):
                return await self._book(contact, state.offered_slots[reference - 1], state)
            return self._clarify(state)

        if parsed is not None:
            return await self._resolve_time(contact, state, parsed, day)

        if day is not None:
            return self._resolve_day(contact, state, day)

        if affirmative:
            slot = self._implied_slot(state)
            if slot is not None:
                return await self._book(contact, slot, state)
            return self._clarify(state)

        return BookingResult(booking_state=state, continue_with_ai=True)

    async def handle_tool_call(self, contact: Contact, call: ToolCall, state: BookingState) -> BookingResult:
        args = call.arguments or {}
        self._logger.info("Booking tool call", extra={"contact_id": contact.id, "tool": call.name})

        if call.name == "select_time_slot":
            index = _as_int(args.get("slot_index"))
            if index is not None and 1 <= index <= len(state.offered_slots):
                return await self._book(contact, state.offered_slots[index - 1], state)
            day_name = args.get("day_preference")
            day = day_reference_for(day_name) if isinstance(day_name, str) else None
            time_value = args.get("time_24h")
            parsed = parse_time_24h(time_value) if isinstance(time_value, str) else None
            if parsed is not None:
                return await self._resolve_time(contact, state, parsed, day)
            if day is not None:
                return self._resolve_day(contact, state, day)
            return self._clarify(state)

        if call.name == "confirm_booking":
            slot = self._implied_slot(state)
            if slot is not None:
                return await self._book(contact, slot, state)
            return self._clarify(state)

        if call.name == "request_different_times":
            if state.offer_attempts >= MAX_OFFER_ATTEMPTS:
                return BookingResult(booking_state=state, message=OUT_OF_OPTIONS_MESSAGE)
            return await self.offer_time_slots(contact, state, exclude=state.offered_slots)

        if call.name == "request_human_help":
            reason = args.get("reason")
            return BookingResult(
                booking_state=state,
                escalation_reason=reason if isinstance(reason, str) and reason.strip() else DEFAULT_HANDOFF_REASON,
            )

        return BookingResult(booking_state=state, continue_with_ai=True)

    async def create_appointment(self, contact: Contact, slot: TimeSlot) -> Appointment:
        """Create the calendar event if possible, then always record the appointment."""
        event_id: str | None = None
        connection = await self._store.get_calendar_connection(contact.client.id)
        if connection is not None:
            try:
                calendar = self._calendar_factory(connection)
                event = await calendar.create_event(connection.calendar_id, self._event_input(contact, slot))
                event_id = event.id
            except Exception as e:
                self._logger.warning(
                    "Calendar event creation failed, saving appointment without it",
                    extra={"contact_id": contact.id, "error": str(e)},
                )

        appointment = await self._store.create_appointment(
            NewAppointment(
                contact_id=contact.id,
                workflow_id=contact.workflow.id,
                client_id=contact.client.id,
                start_time=slot.start,
                end_time=slot.end,
                calendar_event_id=event_id,
                status="confirmed",
                notes="Booked automatically via conversation",
            )
        )
        self._logger.info(
            "Appointment created",
            extra={"contact_id": contact.id, "slot": slot.formatted, "event_id": event_id},
        )
        return appointment

    async def _reschedule_appointment(self, contact: Contact, slot: TimeSlot, state: BookingState) -> Appointment:
        event_id: str | None = None
        connection = await self._store.get_calendar_connection(contact.client.id)
        if connection is not None:
            try:
                calendar = self._calendar_factory(connection)
                event_input = self._event_input(contact, slot)
                if state.existing_calendar_event_id:
                    event = await calendar.update_event(
                        connection.calendar_id, state.existing_calendar_event_id, event_input
                    )
                else:
                    event = await calendar.create_event(connection.calendar_id, event_input)
                event_id = event.id
            except Exception as e:
                self._logger.warning(
                    "Calendar event update failed, saving appointment without it",
                    extra={"contact_id": contact.id, "error": str(e)},
                )

        appointment = await self._store.update_appointment(
            state.existing_appointment_id or "",
            start_time=slot.start,
            end_time=slot.end,
            calendar_event_id=event_id,
        )
        self._logger.info("Appointment rescheduled", extra={"contact_id": contact.id, "slot": slot.formatted})
        return appointment

    async def _book(self, contact: Contact, slot: TimeSlot, state: BookingState) -> BookingResult:
        first = contact.first_name or "there"
        if state.is_rescheduling and state.existing_appointment_id:
            appointment = await self._reschedule_appointment(contact, slot, state)
            message = self._phrases.choose(RESCHEDULE_CONFIRMATIONS).format(slot=slot.formatted, first=first)
            rescheduled = True
        else:
            appointment = await self.create_appointment(contact, slot)
            message = self._phrases.choose(CONFIRMATIONS).format(slot=slot.formatted, first=first)
            rescheduled = False

        return BookingResult(
            booking_state=BookingState(
                is_active=False,
                selected_slot=slot,
                offer_attempts=state.offer_attempts,
            ),
            message=message,
            appointment=appointment,
            rescheduled=rescheduled,
        )

    async def _resolve_time(
        self,
        contact: Contact,
        state: BookingState,
        parsed: ParsedTime,
        day: DayReference | None,
    ) -> BookingResult:
        tz = self._timezone_for(contact)
        candidates = [s for s in state.offered_slots if day is None or day.matches(s.start.astimezone(tz))]
        if not candidates:
            return self._nothing_on_day(contact, state, day)

        exact = [s for s in candidates if parsed.matches(s.start.astimezone(tz))]
        if day is None and len({s.start.astimezone(tz).date() for s in exact}) > 1:
            clock = format_clock(exact[0].start.astimezone(tz))
            days = " or ".join(format_day(s.start.astimezone(tz)) for s in sorted(exact, key=lambda s: s.start))
            return BookingResult(
                booking_state=replace(state, last_offered_slot=None),
                message=f"I have {clock} on {days}. Which day works better?",
            )
        if exact:
            return await self._book(contact, min(exact, key=lambda s: s.start), state)

        closest = min(candidates, key=lambda s: (parsed.distance_minutes(s.start.astimezone(tz)), s.start))
        requested = parsed.display if day is None else f"{parsed.display} on {day.display}"
        return BookingResult(
            booking_state=replace(state, last_offered_slot=closest),
            message=f"I don't have {requested}, but I could do {closest.formatted}. Would that work?",
        )

    def _resolve_day(self, contact: Contact, state: BookingState, day: DayReference) -> BookingResult:
        tz = self._timezone_for(contact)
        day_slots = [s for s in state.offered_slots if day.matches(s.start.astimezone(tz))]
        if not day_slots:
            return self._nothing_on_day(contact, state, day)

        if len(day_slots) == 1:
            slot = day_slots[0]
            return BookingResult(
                booking_state=replace(state, last_offered_slot=slot),
                message=f"On {day.display} I have {format_clock(slot.start.astimezone(tz))}. Does that work?",
            )

        times = [format_clock(s.start.astimezone(tz)) for s in day_slots]
        listed = ", ".join(times[:-1]) + f" or {times[-1]}"
        return BookingResult(
            booking_state=replace(state, last_offered_slot=None),
            message=f"On {day.display} I have {listed}. Which time works better?",
        )

    def _nothing_on_day(self, contact: Contact, state: BookingState, day: DayReference | None) -> BookingResult:
        tz = self._timezone_for(contact)
        others = [s for s in state.offered_slots if day is None or not day.matches(s.start.astimezone(tz))]
        if not others:
            return self._clarify(state)
        label = day.display if day else "then"
        return BookingResult(
            booking_state=replace(state, last_offered_slot=others[0] if len(others) == 1 else None),
            message=(
                f"I don't have anything on {label}. I do have:\n\n{format_slot_list(others)}\n\n"
                "Would any of those work?"
            ),
        )

    def _clarify(self, state: BookingState) -> BookingResult:
        return BookingResult(
            booking_state=state,
            message=f"Which of these works best for you?\n\n{format_slot_list(state.offered_slots)}",
        )

    def _agrees_with(
        self,
        contact: Contact,
        state: BookingState,
        slot: TimeSlot,
        reference: int | None,
        parsed: ParsedTime | None,
        day: DayReference | None,
    ) -> bool:
        """True when every day, time or option number in the reply points at `slot`."""
        local = slot.start.astimezone(self._timezone_for(contact))
        if reference is not None:
            if not 1 <= reference <= len(state.offered_slots) or state.offered_slots[reference - 1] != slot:
                return False
        if parsed is not None and not parsed.matches(local):
            return False
        return day is None or day.matches(local)

    def _implied_slot(self, state: BookingState) -> TimeSlot | None:
        if state.last_offered_slot is not None:
            return state.last_offered_slot
        if len(state.offered_slots) == 1:
            return state.offered_slots[0]
        return None

    async def _available_slots(self, contact: Contact, connection: CalendarConnection) -> list[TimeSlot] | None:
        tz = self._timezone_for(contact)
        now = self._clock()
        try:
            calendar = self._calendar_factory(connection)
            busy = await calendar.get_free_busy(
                connection.calendar_id, now, now + timedelta(days=self._lookahead_days)
            )
        except Exception as e:
            self._logger.warning(
                "Could not load calendar availability",
                extra={"contact_id": contact.id, "error": str(e)},
            )
            return None

        return generate_available_slots(
            busy,
            timezone=tz,
            now=now,
            duration_minutes=contact.workflow.appointment_duration_minutes,
            business_hours=contact.client.business_hours,
            days_ahead=self._lookahead_days,
            min_lead_time_hours=self._min_lead_time_hours,
        )

    def _filter_by_day(
        self, contact: Contact, slots: list[TimeSlot], day: DayReference | None
    ) -> tuple[list[TimeSlot], DayReference | None]:
        """Narrow to the requested day. When that day is empty, keep every slot and return the missed day."""
        if day is None:
            return slots, None
        tz = self._timezone_for(contact)
        filtered = [s for s in slots if day.matches(s.start.astimezone(tz))]
        if filtered:
            return filtered, None
        return slots, day

    def _event_input(self, contact: Contact, slot: TimeSlot) -> CalendarEventInput:
        name = " ".join(p for p in (contact.first_name, contact.last_name) if p)
        lines = ["Booked via conversation", f"Contact: {contact.display_name}", f"Phone: {contact.phone}"]
        if contact.email:
            lines.append(f"Email: {contact.email}")
        return CalendarEventInput(
            summary=f"{contact.workflow.name} - {name}".strip(" -"),
            description="\n".join(lines),
            start=slot.start,
            end=slot.end,
            attendee_email=contact.email,
            attendee_name=name or None,
            time_zone=self._timezone_for(contact).key,
        )

    def _timezone_for(self, contact: Contact) -> ZoneInfo:
        return safe_timezone(contact.client.timezone, self._default_timezone)


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
