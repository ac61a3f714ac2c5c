from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from bookerbot.application.utils.availability import format_slot_list
from bookerbot.application.utils.knowledge import WorkflowKnowledge
from bookerbot.domain.entities.booking_state import BookingState
from bookerbot.domain.entities.contact import Channel, Contact
from bookerbot.domain.entities.conversation_context import ConversationContext, QualificationStatus
from bookerbot.domain.entities.generation import ChatMessage, GenerationRequest, ToolSpec
from bookerbot.domain.entities.message import Message

HISTORY_LIMIT = 20

CHANNEL_MAX_TOKENS = {
    Channel.SMS: 150,
    Channel.WHATSAPP: 250,
    Channel.EMAIL: 500,
}

CHANNEL_CONSTRAINTS = {
    Channel.SMS: "Keep replies under 300 characters. No markdown, no emojis unless they use them first.",
    Channel.WHATSAPP: "Keep replies short and conversational. Light formatting is fine, avoid long paragraphs.",
    Channel.EMAIL: "Write a short, friendly email body. Plain text, no subject line.",
}

PHASE_DIRECTIVES = {
    "rapport": (
        "You are in the RAPPORT BUILDING phase.\n"
        "- Acknowledge their response warmly and naturally\n"
        "- Show genuine interest in them and their situation\n"
        "- Start to understand their needs through friendly conversation\n"
        "DO NOT mention booking or appointments yet."
    ),
    "qualifying": (
        "You are in the QUALIFICATION phase.\n"
        "- Keep the conversation friendly while discovering whether they meet the criteria below\n"
        "- Ask ONE thoughtful question at a time, never an interrogation\n"
        "- DO NOT suggest booking until the criteria are confirmed"
    ),
    "qualified": (
        "The contact appears to be QUALIFIED.\n"
        "- If they seem interested, suggest a {duration}-minute call to discuss further\n"
        "- Gauge interest first and never push\n"
        "- If they're not ready to book, keep being helpful"
    ),
    "booking": (
        "You can discuss booking when appropriate.\n"
        "- Have a helpful conversation\n"
        "- Offer a {duration}-minute call if they show interest"
    ),
}


@dataclass(frozen=True)
class PromptParams:
    knowledge: WorkflowKnowledge
    contact: Contact
    context: ConversationContext
    history: Sequence[Message]
    current_message: str
    appointment_duration: int = 30
    booking_state: BookingState | None = None


class PromptBuilder:
    def __init__(self, model: str, temperature: float = 0.7) -> None:
        self._model = model
        self._temperature = temperature

    def build(self, params: PromptParams, tools: Sequence[ToolSpec] = ()) -> GenerationRequest:
        return GenerationRequest(
            model=self._model,
            system_prompt=self.build_system_prompt(params, tool_mode=bool(tools)),
            messages=self.build_messages(params.history, params.current_message),
            max_tokens=CHANNEL_MAX_TOKENS.get(params.knowledge.channel, 150),
            temperature=self._temperature,
            tools=tuple(tools),
        )

    def build_messages(self, history: Sequence[Message], current_message: str) -> tuple[ChatMessage, ...]:
        messages = [
            ChatMessage(role="user" if m.direction == "inbound" else "assistant", content=m.content)
            for m in list(history)[-HISTORY_LIMIT:]
        ]
        # the inbound message is usually already stored by the webhook
        if not messages or messages[-1].role != "user" or messages[-1].content != current_message:
            messages.append(ChatMessage(role="user", content=current_message))
        return tuple(messages)

    def build_system_prompt(self, params: PromptParams, tool_mode: bool = False) -> str:
        knowledge = params.knowledge
        contact = params.contact
        context = params.context
        contact_name = contact.first_name or "there"
        phase = determine_phase(context, knowledge)
        directive = PHASE_DIRECTIVES[phase].format(duration=params.appointment_duration)

        sections = [
            f"You are an AI assistant having a natural conversation via {knowledge.channel.upper()} "
            f"on behalf of {knowledge.company_name}.",
            f"## PRIMARY DIRECTIVE\n{directive}",
            f"## CUSTOM INSTRUCTIONS FROM THE BUSINESS\n{knowledge.instructions or 'No additional instructions provided.'}",
            _about_business(knowledge),
            f"## COMMUNICATION STYLE\nTone: {knowledge.tone}\n{CHANNEL_CONSTRAINTS.get(knowledge.channel, '')}",
            f"## CONTACT\nName: {contact.display_name if contact.first_name else contact_name}",
        ]

        if knowledge.qualification_criteria:
            criteria_lines = "\n".join(f"{i}. {c}" for i, c in enumerate(knowledge.qualification_criteria, start=1))
            sections.append(f"## QUALIFICATION CRITERIA (discover these naturally)\n{criteria_lines}")
            sections.append(f"## CURRENT QUALIFICATION STATUS\n{_qualification_progress(context)}")

        sections.append(
            "## CONVERSATION CONTEXT\n"
            f"{context.summary or 'This is a new conversation - they just replied to your initial outreach.'}\n"
            f"Total messages exchanged: {context.message_count}"
        )

        if knowledge.faqs:
            faqs = "\n\n".join(f"Q: {faq.question}\nA: {faq.answer}" for faq in knowledge.faqs)
            sections.append(f"## FAQS YOU CAN REFERENCE\n{faqs}")

        sections.append(
            "## BEHAVIORAL GUIDELINES\nDO:\n"
            + "\n".join(f"- {d}" for d in knowledge.dos)
            + "\n\nDON'T:\n"
            + "\n".join(f"- {d}" for d in knowledge.donts)
        )

        booking = params.booking_state
        if booking is not None and booking.awaiting_selection:
            sections.append(_booking_section(booking, tool_mode))

        sections.append(
            "## RESPONSE FORMAT\n"
            f"- Address them by name ({contact_name}) occasionally, not every message\n"
            "- Ask ONE question at a time\n"
            "- If they ask for a person, say someone from the team will reach out"
        )
        return "\n\n".join(section for section in sections if section)


def determine_phase(context: ConversationContext, knowledge: WorkflowKnowledge) -> str:
    criteria = knowledge.qualification_criteria
    if not criteria:
        return "rapport" if context.message_count < 2 else "booking"
    if context.message_count < 2:
        return "rapport"
    matched = set(context.qualification.criteria_matched)
    if all(c in matched for c in criteria) or context.qualification.status == QualificationStatus.QUALIFIED:
        return "qualified"
    return "qualifying"


def _about_business(knowledge: WorkflowKnowledge) -> str:
    lines = [f"## ABOUT THE BUSINESS\nCompany: {knowledge.company_name}"]
    if knowledge.company_summary:
        lines.append(f"About: {knowledge.company_summary}")
    if knowledge.services:
        lines.append(f"Services: {', '.join(knowledge.services)}")
    if knowledge.target_audience:
        lines.append(f"Target Audience: {knowledge.target_audience}")
    return "\n".join(lines)


def _qualification_progress(context: ConversationContext) -> str:
    q = context.qualification
    return (
        f"Status: {q.status}\n"
        f"Met: {', '.join(q.criteria_matched) or 'none yet'}\n"
        f"Not met: {', '.join(q.criteria_missed) or 'none'}\n"
        f"Still unknown: {', '.join(q.criteria_unknown) or 'none'}"
    )


def _booking_section(booking: BookingState, tool_mode: bool) -> str:
    lines = [
        "## BOOKING IN PROGRESS",
        "These times were offered and the contact has NOT booked yet:",
        format_slot_list(booking.offered_slots),
        "Never say an appointment is booked or confirmed. Only the booking system can do that.",
    ]
    if booking.last_offered_slot:
        lines.append(f"Most recently suggested: {booking.last_offered_slot.formatted}")
    if tool_mode:
        lines.append(
            "If they pick one of these times, call select_time_slot. If they agree to the most recently "
            "suggested time, call confirm_booking. If none work, call request_different_times. If they "
            "want a person, call request_human_help. Otherwise reply in plain text."
        )
    return "\n".join(lines)
