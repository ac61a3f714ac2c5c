from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from bookerbot.application.exceptions import (
    ContactHandedOffError,
    ContactNotFoundError,
    ContactOptedOutError,
    ErrorKind,
    LLMContractError,
    WorkflowInactiveError,
    classify_error,
    is_recoverable,
)
from bookerbot.application.ports.contact_store import ContactStorePort
from bookerbot.application.ports.llm import LLMPort
from bookerbot.application.use_cases.booking import (
    BOOKING_TOOLS,
    MAX_OFFER_ATTEMPTS,
    BookingResult,
    BookingUseCase,
)
from bookerbot.application.use_cases.context_manager import ContextManager, ContextUpdate, LoadedConversation
from bookerbot.application.use_cases.detect_intent import REASON_HUMAN_REQUESTED, IntentDetector
from bookerbot.application.use_cases.handoff import HandoffHandler
from bookerbot.application.use_cases.qualification import QualificationEngine
from bookerbot.application.utils.date_parser import day_reference_for
from bookerbot.application.utils.knowledge import build_workflow_knowledge
from bookerbot.application.utils.pricing import estimate_cost
from bookerbot.application.utils.prompt_builder import PromptBuilder, PromptParams
from bookerbot.domain.entities.booking_state import BookingState
from bookerbot.domain.entities.contact import Contact, ContactStatus, WorkflowStatus
from bookerbot.domain.entities.conversation_context import (
    ConversationContext,
    QualificationState,
    QualificationStatus,
)
from bookerbot.domain.entities.generation import GenerationResult, TokenUsage
from bookerbot.domain.entities.intent import Intent, IntentClassification
from bookerbot.domain.entities.message import OutboundMessage
from bookerbot.domain.entities.qualification import QualificationAssessment
from bookerbot.domain.entities.reply import ProcessMessageResult, TurnWrite

DEFAULT_OPT_OUT_MESSAGE = "You've been unsubscribed and won't receive any more messages from us. Take care!"

FALLBACK_MESSAGES = {
    ErrorKind.AI_GENERATION_FAILED: (
        "Sorry, I'm having a little trouble right now. Someone from our team will follow up with you shortly."
    ),
    ErrorKind.DATABASE_ERROR: "Thanks for your message! A member of our team will get back to you shortly.",
    ErrorKind.UNKNOWN: "Thanks for reaching out. Someone from our team will be in touch soon.",
}

BOOKING_HANDLER_MODEL = "booking-handler"
HISTORY_FETCH_LIMIT = 50


@dataclass(frozen=True)
class _Reply:
    text: str
    intent_label: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    ai_generated: bool = True
    booking: BookingResult | None = None


class ProcessMessageUseCase:
    def __init__(
        self,
        store: ContactStorePort,
        llm: LLMPort,
        context_manager: ContextManager,
        intent_detector: IntentDetector,
        qualification_engine: QualificationEngine,
        booking: BookingUseCase,
        handoff: HandoffHandler,
        prompt_builder: PromptBuilder,
        reply_model: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._llm = llm
        self._context_manager = context_manager
        self._intent_detector = intent_detector
        self._qualification = qualification_engine
        self._booking = booking
        self._handoff = handoff
        self._prompt_builder = prompt_builder
        self._reply_model = reply_model
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)

    async def handle(self, contact_id: str, message: str) -> ProcessMessageResult:
        """
        Process one inbound message and return the reply that was persisted.

        Contacts that should never have reached the engine (missing, opted out,
        handed off, inactive workflow) raise OrchestrationError subclasses.
        Every other failure produces a fallback reply flagged for escalation.
        """
        try:
            return await self._process(contact_id, message)
        except Exception as e:
            kind = classify_error(e)
            if not is_recoverable(kind):
                raise
            self._logger.exception(
                "Message processing failed, sending fallback",
                extra={"contact_id": contact_id, "error_kind": kind},
            )
            return await self._fallback(contact_id, kind)

    async def _process(self, contact_id: str, message: str) -> ProcessMessageResult:
        contact = await self._store.get_contact(contact_id)
        if contact is None:
            raise ContactNotFoundError(f"Contact {contact_id} not found", contact_id=contact_id)
        _ensure_eligible(contact)

        loaded = self._context_manager.load(contact.conversation_context)
        context = loaded.context
        history = await self._store.get_messages(contact.id, limit=HISTORY_FETCH_LIMIT)

        intent = await self._intent_detector.detect(message, context)
        self._logger.info(
            "Intent detected",
            extra={"contact_id": contact.id, "intent": intent.intent, "confidence": intent.confidence},
        )

        if intent.intent == Intent.OPT_OUT:
            return await self._opt_out(contact, message, intent, loaded)

        escalation = self._intent_detector.check_escalation_triggers(message, context)
        if escalation.required or intent.requires_escalation:
            reason = escalation.reason or intent.escalation_reason or REASON_HUMAN_REQUESTED
            return await self._escalate(contact, message, intent, loaded, reason)

        knowledge = build_workflow_knowledge(contact)
        criteria = knowledge.qualification_criteria

        decision = self._qualification.should_allow_requalification(context, message, contact.last_message_at)
        if decision.allow:
            self._logger.info("Reopening qualification", extra={"contact_id": contact.id})
            context = self._qualification.reset_criteria_for_reassessment(context, decision.reset_criteria)

        assessment = await self._qualification.assess(criteria, context, history, message)

        booking_state = loaded.booking_state
        params = PromptParams(
            knowledge=knowledge,
            contact=contact,
            context=context,
            history=history,
            current_message=message,
            appointment_duration=contact.workflow.appointment_duration_minutes,
            booking_state=booking_state,
        )

        reply = await self._booking_reply(contact, message, intent, assessment, booking_state, params)
        if reply is not None and reply.booking is not None and reply.booking.escalation_reason:
            return await self._escalate(contact, message, intent, loaded, reply.booking.escalation_reason, context)

        if reply is None:
            generation = await self._llm.generate(self._prompt_builder.build(params))
            reply = self._ai_reply(generation, intent)

        next_booking = reply.booking.booking_state if reply.booking else booking_state
        return await self._finish_turn(contact, message, intent, context, loaded, assessment, next_booking, reply)

    async def _booking_reply(
        self,
        contact: Contact,
        message: str,
        intent: IntentClassification,
        assessment: QualificationAssessment,
        booking_state: BookingState,
        params: PromptParams,
    ) -> _Reply | None:
        """Walk the booking branches in order. None means the turn needs a free-form reply."""
        if (
            intent.intent == Intent.RESCHEDULE
            and contact.status == ContactStatus.BOOKED
            and await self._booking.is_calendar_connected(contact)
        ):
            result = await self._booking.start_reschedule(contact, booking_state, message)
            if not result.continue_with_ai and result.message:
                return _booking_reply(result)

        if booking_state.awaiting_selection:
            result = await self._booking.handle_time_selection(contact, message, booking_state)
            if not result.continue_with_ai:
                return _booking_reply(result)

            # nothing deterministic matched; let the model pick a tool or answer in text
            generation = await self._llm.generate(self._prompt_builder.build(params, tools=BOOKING_TOOLS))
            if generation.tool_call is not None:
                result = await self._booking.handle_tool_call(contact, generation.tool_call, booking_state)
                if result.escalation_reason or (not result.continue_with_ai and result.message):
                    return _booking_reply(result, generation)
            if generation.content.strip():
                return self._ai_reply(generation, intent)
            return None

        wants_booking = intent.intent == Intent.BOOKING_INTEREST or assessment.status == QualificationStatus.QUALIFIED
        if (
            wants_booking
            and not booking_state.is_active
            and contact.status != ContactStatus.BOOKED
            and booking_state.offer_attempts < MAX_OFFER_ATTEMPTS
            and await self._booking.is_calendar_connected(contact)
        ):
            preferred_day = intent.entities.get("preferredDay")
            day = day_reference_for(preferred_day) if preferred_day else None
            result = await self._booking.offer_time_slots(contact, booking_state, day=day)
            if not result.continue_with_ai and result.message:
                return _booking_reply(result)

        return None

    def _ai_reply(self, generation: GenerationResult, intent: IntentClassification) -> _Reply:
        text = generation.content.strip()
        if not text:
            raise LLMContractError("Model returned an empty reply")
        return _Reply(
            text=text,
            intent_label=intent.intent,
            model=generation.model or self._reply_model,
            usage=generation.usage,
        )

    async def _finish_turn(
        self,
        contact: Contact,
        message: str,
        intent: IntentClassification,
        context: ConversationContext,
        loaded: LoadedConversation,
        assessment: QualificationAssessment,
        booking_state: BookingState,
        reply: _Reply,
    ) -> ProcessMessageResult:
        knowledge_criteria = build_workflow_knowledge(contact).qualification_criteria
        updated = self._context_manager.update(
            context,
            ContextUpdate(
                intent=intent.intent,
                user_message=message,
                ai_response=reply.text,
                qualification_update=QualificationState(
                    status=assessment.status,
                    criteria_matched=assessment.criteria_matched,
                    criteria_unknown=assessment.criteria_unknown,
                    criteria_missed=assessment.criteria_missed,
                ),
                extracted_info_update=assessment.extracted_info,
                criteria=knowledge_criteria or None,
            ),
        )

        appointment_created = reply.booking is not None and reply.booking.appointment_created
        status_update = _status_transition(contact.status, updated.qualification.status, appointment_created)

        await self._store.save_turn(
            TurnWrite(
                contact_id=contact.id,
                conversation_context=self._context_manager.serialize(updated, booking_state, loaded.revision + 1),
                expected_revision=loaded.revision,
                last_message_at=self._clock(),
                outbound=OutboundMessage(
                    contact_id=contact.id,
                    channel=contact.workflow.channel,
                    content=reply.text,
                    ai_generated=reply.ai_generated,
                    tokens_used=reply.usage.total,
                    input_tokens=reply.usage.input,
                    output_tokens=reply.usage.output,
                    ai_model=reply.model,
                    ai_cost=estimate_cost(reply.model, reply.usage) if reply.usage.total else 0.0,
                    intent_detected=reply.intent_label,
                ),
                status=status_update,
            )
        )
        self._logger.info(
            "Turn saved",
            extra={
                "contact_id": contact.id,
                "intent": intent.intent,
                "status": status_update or contact.status,
                "qualification": updated.qualification.status,
            },
        )

        return ProcessMessageResult(
            response=reply.text,
            intent=intent,
            context_update=updated,
            tokens_used=reply.usage,
            status_update=status_update,
            should_escalate=self._handoff.should_auto_escalate(updated),
            appointment_created=appointment_created,
        )

    async def _opt_out(
        self,
        contact: Contact,
        message: str,
        intent: IntentClassification,
        loaded: LoadedConversation,
    ) -> ProcessMessageResult:
        text = contact.workflow.opt_out_message or DEFAULT_OPT_OUT_MESSAGE
        updated = self._context_manager.update(
            loaded.context, ContextUpdate(intent=intent.intent, user_message=message, ai_response=text)
        )
        now = self._clock()
        await self._store.save_turn(
            TurnWrite(
                contact_id=contact.id,
                conversation_context=self._context_manager.serialize(
                    updated, loaded.booking_state, loaded.revision + 1
                ),
                expected_revision=loaded.revision,
                last_message_at=now,
                outbound=OutboundMessage(
                    contact_id=contact.id,
                    channel=contact.workflow.channel,
                    content=text,
                    ai_generated=False,
                    intent_detected=Intent.OPT_OUT,
                ),
                status=ContactStatus.OPTED_OUT,
                opted_out=True,
                opted_out_at=now,
            )
        )
        self._logger.info("Contact opted out", extra={"contact_id": contact.id})
        return ProcessMessageResult(
            response=text,
            intent=intent,
            context_update=updated,
            status_update=ContactStatus.OPTED_OUT,
        )

    async def _escalate(
        self,
        contact: Contact,
        message: str,
        intent: IntentClassification,
        loaded: LoadedConversation,
        reason: str,
        context: ConversationContext | None = None,
    ) -> ProcessMessageResult:
        text = self._handoff.generate_handoff_message(reason)
        current = self._context_manager.increment_escalation_attempts(context or loaded.context)
        updated = self._context_manager.update(
            current, ContextUpdate(intent=intent.intent, user_message=message, ai_response=text)
        )
        await self._store.save_turn(
            TurnWrite(
                contact_id=contact.id,
                conversation_context=self._context_manager.serialize(
                    updated, loaded.booking_state, loaded.revision + 1
                ),
                expected_revision=loaded.revision,
                last_message_at=self._clock(),
                outbound=OutboundMessage(
                    contact_id=contact.id,
                    channel=contact.workflow.channel,
                    content=text,
                    ai_generated=False,
                    intent_detected=intent.intent,
                ),
                status=ContactStatus.HANDED_OFF,
            )
        )
        self._logger.info("Contact handed off", extra={"contact_id": contact.id, "reason": reason})
        await self._handoff.notify_admin(contact, reason)

        return ProcessMessageResult(
            response=text,
            intent=intent,
            context_update=updated,
            status_update=ContactStatus.HANDED_OFF,
            should_escalate=True,
            escalation_reason=reason,
        )

    async def _fallback(self, contact_id: str, kind: ErrorKind) -> ProcessMessageResult:
        text = FALLBACK_MESSAGES.get(kind, FALLBACK_MESSAGES[ErrorKind.UNKNOWN])
        try:
            await self._store.insert_outbound_message(
                OutboundMessage(contact_id=contact_id, channel="sms", content=text, ai_generated=False)
            )
        except Exception as e:
            self._logger.error(
                "Could not record fallback message",
                extra={"contact_id": contact_id, "error_kind": kind, "error": str(e)},
            )

        return ProcessMessageResult(
            response=text,
            intent=IntentClassification(intent=Intent.UNCLEAR, confidence=0.0),
            context_update=None,
            tokens_used=TokenUsage(),
            should_escalate=True,
            escalation_reason=f"Processing failed: {kind}",
            error_kind=kind,
        )


def _ensure_eligible(contact: Contact) -> None:
    if contact.opted_out or contact.status == ContactStatus.OPTED_OUT:
        raise ContactOptedOutError("Contact has opted out", contact_id=contact.id)
    if contact.status == ContactStatus.HANDED_OFF:
        raise ContactHandedOffError("Contact has been handed off to a human", contact_id=contact.id)
    if contact.workflow.status != WorkflowStatus.ACTIVE:
        raise WorkflowInactiveError(f"Workflow is {contact.workflow.status}", contact_id=contact.id)


def _booking_reply(result: BookingResult, generation: GenerationResult | None = None) -> _Reply:
    if result.appointment_created:
        label = Intent.CONFIRMATION
    elif result.rescheduled or result.booking_state.is_rescheduling:
        label = Intent.RESCHEDULE
    else:
        label = Intent.BOOKING_INTEREST

    # tool-mode replies spent tokens choosing the tool; deterministic ones did not
    if generation is not None:
        return _Reply(
            text=result.message,
            intent_label=label,
            model=generation.model or BOOKING_HANDLER_MODEL,
            usage=generation.usage,
            booking=result,
        )
    return _Reply(text=result.message, intent_label=label, model=BOOKING_HANDLER_MODEL, booking=result)


def _status_transition(
    current: ContactStatus,
    qualification: QualificationStatus,
    appointment_created: bool,
) -> ContactStatus | None:
    if appointment_created:
        return ContactStatus.BOOKED
    if qualification == QualificationStatus.QUALIFIED and current not in (ContactStatus.QUALIFIED, ContactStatus.BOOKED):
        return ContactStatus.QUALIFIED
    if current in (ContactStatus.PENDING, ContactStatus.CONTACTED):
        return ContactStatus.IN_CONVERSATION
    return None
