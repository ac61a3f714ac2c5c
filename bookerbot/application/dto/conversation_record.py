"""
Versioned schema for the per-contact conversation blob.

The blob is stored as JSON on the contact row. Every section is validated
independently and any invalid field falls back to its default, so loading
never raises. Blobs written before versioning (no "version" key) are
upgraded through the migration table before validation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, ValidationError
from pydantic.alias_generators import to_camel

from bookerbot.domain.entities.booking_state import BookingState, TimeSlot
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    ConversationGoal,
    ExtractedInfo,
    QualificationState,
    QualificationStatus,
    TurnState,
)
from bookerbot.domain.entities.intent import Intent

CURRENT_VERSION = 1

logger = logging.getLogger(__name__)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ExtractedInfoRecord(_Record):
    is_decision_maker: StrictBool | None = None
    has_active_need: StrictBool | None = None
    budget: StrictStr | None = None
    timeline: StrictStr | None = None
    company_size: StrictStr | None = None
    objections: list[StrictStr] = Field(default_factory=list)
    preferred_contact_method: StrictStr | None = None
    preferred_times: list[StrictStr] = Field(default_factory=list)
    additional_notes: list[StrictStr] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, info: ExtractedInfo) -> ExtractedInfoRecord:
        return cls(
            is_decision_maker=info.is_decision_maker,
            has_active_need=info.has_active_need,
            budget=info.budget,
            timeline=info.timeline,
            company_size=info.company_size,
            objections=list(info.objections),
            preferred_contact_method=info.preferred_contact_method,
            preferred_times=list(info.preferred_times),
            additional_notes=list(info.additional_notes),
        )

    def to_domain(self) -> ExtractedInfo:
        return ExtractedInfo(
            is_decision_maker=self.is_decision_maker,
            has_active_need=self.has_active_need,
            budget=self.budget,
            timeline=self.timeline,
            company_size=self.company_size,
            objections=tuple(self.objections),
            preferred_contact_method=self.preferred_contact_method,
            preferred_times=tuple(self.preferred_times),
            additional_notes=tuple(self.additional_notes),
        )


class QualificationRecord(_Record):
    status: QualificationStatus = QualificationStatus.UNKNOWN
    criteria_matched: list[StrictStr] = Field(default_factory=list)
    criteria_unknown: list[StrictStr] = Field(default_factory=list)
    criteria_missed: list[StrictStr] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, qualification: QualificationState) -> QualificationRecord:
        return cls(
            status=qualification.status,
            criteria_matched=list(qualification.criteria_matched),
            criteria_unknown=list(qualification.criteria_unknown),
            criteria_missed=list(qualification.criteria_missed),
        )

    def to_domain(self) -> QualificationState:
        return QualificationState(
            status=self.status,
            criteria_matched=tuple(self.criteria_matched),
            criteria_unknown=tuple(self.criteria_unknown),
            criteria_missed=tuple(self.criteria_missed),
        )


class TurnStateRecord(_Record):
    current_goal: ConversationGoal = ConversationGoal.INITIAL_ENGAGEMENT
    turn_count: StrictInt = Field(default=0, ge=0)
    last_intent: Intent = Intent.UNCLEAR
    escalation_attempts: StrictInt = Field(default=0, ge=0)
    follow_ups_sent: StrictInt = Field(default=0, ge=0)
    last_message_at: datetime | None = None

    @classmethod
    def from_domain(cls, state: TurnState) -> TurnStateRecord:
        return cls(
            current_goal=state.current_goal,
            turn_count=state.turn_count,
            last_intent=state.last_intent,
            escalation_attempts=state.escalation_attempts,
            follow_ups_sent=state.follow_ups_sent,
            last_message_at=state.last_message_at,
        )

    def to_domain(self) -> TurnState:
        return TurnState(
            current_goal=self.current_goal,
            turn_count=self.turn_count,
            last_intent=self.last_intent,
            escalation_attempts=self.escalation_attempts,
            follow_ups_sent=self.follow_ups_sent,
            last_message_at=self.last_message_at,
        )


class TimeSlotRecord(_Record):
    start: datetime
    end: datetime
    formatted: StrictStr = ""

    @classmethod
    def from_domain(cls, slot: TimeSlot) -> TimeSlotRecord:
        return cls(start=slot.start, end=slot.end, formatted=slot.formatted)

    def to_domain(self) -> TimeSlot:
        return TimeSlot(start=self.start, end=self.end, formatted=self.formatted)


class BookingStateRecord(_Record):
    is_active: StrictBool = False
    offered_slots: list[TimeSlotRecord] = Field(default_factory=list)
    slots_offered_at: datetime | None = None
    selected_slot: TimeSlotRecord | None = None
    offer_attempts: StrictInt = Field(default=0, ge=0)
    last_offered_slot: TimeSlotRecord | None = None
    is_rescheduling: StrictBool = False
    existing_appointment_id: StrictStr | None = None
    existing_calendar_event_id: StrictStr | None = None

    @classmethod
    def from_domain(cls, booking: BookingState) -> BookingStateRecord:
        return cls(
            is_active=booking.is_active,
            offered_slots=[TimeSlotRecord.from_domain(s) for s in booking.offered_slots],
            slots_offered_at=booking.slots_offered_at,
            selected_slot=_slot_record(booking.selected_slot),
            offer_attempts=booking.offer_attempts,
            last_offered_slot=_slot_record(booking.last_offered_slot),
            is_rescheduling=booking.is_rescheduling,
            existing_appointment_id=booking.existing_appointment_id,
            existing_calendar_event_id=booking.existing_calendar_event_id,
        )

    def to_domain(self) -> BookingState:
        return BookingState(
            is_active=self.is_active,
            offered_slots=tuple(s.to_domain() for s in self.offered_slots),
            slots_offered_at=self.slots_offered_at,
            selected_slot=self.selected_slot.to_domain() if self.selected_slot else None,
            offer_attempts=self.offer_attempts,
            last_offered_slot=self.last_offered_slot.to_domain() if self.last_offered_slot else None,
            is_rescheduling=self.is_rescheduling,
            existing_appointment_id=self.existing_appointment_id,
            existing_calendar_event_id=self.existing_calendar_event_id,
        )


class _RecordHeader(_Record):
    revision: StrictInt = Field(default=0, ge=0)
    summary: StrictStr = ""
    message_count: StrictInt = Field(default=0, ge=0)


class ConversationRecord(_Record):
    version: Literal[1] = CURRENT_VERSION
    revision: int = 0
    extracted_info: ExtractedInfoRecord = Field(default_factory=ExtractedInfoRecord)
    qualification: QualificationRecord = Field(default_factory=QualificationRecord)
    state: TurnStateRecord = Field(default_factory=TurnStateRecord)
    summary: str = ""
    message_count: int = 0
    booking_state: BookingStateRecord = Field(default_factory=BookingStateRecord)

    @classmethod
    def from_domain(
        cls,
        context: ConversationContext,
        booking: BookingState | None = None,
        revision: int = 0,
    ) -> ConversationRecord:
        return cls(
            revision=revision,
            extracted_info=ExtractedInfoRecord.from_domain(context.extracted_info),
            qualification=QualificationRecord.from_domain(context.qualification),
            state=TurnStateRecord.from_domain(context.state),
            summary=context.summary,
            message_count=context.message_count,
            booking_state=BookingStateRecord.from_domain(booking or BookingState()),
        )

    def to_context(self) -> ConversationContext:
        return ConversationContext(
            extracted_info=self.extracted_info.to_domain(),
            qualification=self.qualification.to_domain(),
            state=self.state.to_domain(),
            summary=self.summary,
            message_count=self.message_count,
        )

    def to_booking_state(self) -> BookingState:
        return self.booking_state.to_domain()

    def dump(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def load_record(raw: Any) -> ConversationRecord:
    """Build a record from a stored blob. Never raises."""
    if not isinstance(raw, dict):
        return ConversationRecord()

    data = _migrate(raw)
    header = _validate_leniently(_RecordHeader, data)
    return ConversationRecord(
        revision=header.revision,
        extracted_info=_validate_leniently(ExtractedInfoRecord, data.get("extractedInfo")),
        qualification=_validate_leniently(QualificationRecord, data.get("qualification")),
        state=_validate_leniently(TurnStateRecord, data.get("state")),
        summary=header.summary,
        message_count=header.message_count,
        booking_state=_validate_leniently(BookingStateRecord, data.get("bookingState")),
    )


def parse_extracted_info(raw: Any) -> ExtractedInfo:
    """Lenient parse of a camelCase extractedInfo object, e.g. from a model response."""
    return _validate_leniently(ExtractedInfoRecord, raw).to_domain()


def _upgrade_v0(data: dict[str, Any]) -> dict[str, Any]:
    # v0 blobs carried no version and no revision; section shapes are unchanged
    upgraded = dict(data)
    upgraded["version"] = 1
    upgraded.setdefault("revision", 0)
    return upgraded


_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _upgrade_v0,
}


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    data = dict(raw)
    version = data.get("version", 0)
    if not isinstance(version, int) or isinstance(version, bool) or version < 0:
        version = 0
    if version > CURRENT_VERSION:
        logger.warning("Conversation record from a newer version", extra={"version": version})
        return data
    while version < CURRENT_VERSION:
        data = _MIGRATIONS[version](data)
        version += 1
    return data


_M = TypeVar("_M", bound=_Record)


def _validate_leniently(model: type[_M], raw: Any) -> _M:
    """Validate `raw`, dropping whichever top-level fields fail so they take their defaults."""
    if not isinstance(raw, dict):
        return model()

    payload = dict(raw)
    while True:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            invalid = {err["loc"][0] for err in exc.errors() if err["loc"]}
            dropped = [key for key in payload if key in invalid or _alias_of(model, key) in invalid]
            if not dropped:
                return model()
            for key in dropped:
                payload.pop(key)


def _alias_of(model: type[_Record], key: str) -> str | None:
    info = model.model_fields.get(key)
    return info.alias if info else None


def _slot_record(slot: TimeSlot | None) -> TimeSlotRecord | None:
    return TimeSlotRecord.from_domain(slot) if slot else None
