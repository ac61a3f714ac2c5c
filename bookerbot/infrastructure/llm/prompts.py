from collections.abc import Sequence

from bookerbot.domain.entities.conversation_context import QualificationState
from bookerbot.domain.entities.intent import Intent
from bookerbot.domain.entities.qualification import QualificationCriterion

JSON_ONLY_SYSTEM = "Return only valid JSON. Do not include markdown or extra text."

INTENT_DESCRIPTIONS = {
    Intent.BOOKING_INTEREST: "wants to book, schedule or pick a time",
    Intent.QUESTION: "asks about the product, service, pricing or process",
    Intent.OBJECTION: "raises a concern, hesitation or reason not to proceed",
    Intent.POSITIVE_RESPONSE: "agrees or shows interest without asking to book",
    Intent.NEGATIVE_RESPONSE: "declines or shows disinterest",
    Intent.OPT_OUT: "asks to stop receiving messages",
    Intent.REQUEST_HUMAN: "asks for a real person",
    Intent.CONFIRMATION: "confirms something that was proposed",
    Intent.UNCLEAR: "cannot be determined",
    Intent.GREETING: "just says hello",
    Intent.THANKS: "just says thanks",
    Intent.RESCHEDULE: "wants to move an existing appointment",
}


def build_classify_prompt(message: str, context_summary: str) -> str:
    intents = "\n".join(f"  - {intent.value}: {description}" for intent, description in INTENT_DESCRIPTIONS.items())
    return (
        "You classify inbound SMS replies from sales leads.\n"
        "Return ONLY valid JSON. No markdown. No extra text.\n"
        "Output schema:\n"
        "  {\"intent\": \"...\", \"confidence\": 0.0, \"requiresEscalation\": false, "
        "\"escalationReason\": null, \"entities\": {}}\n"
        "Allowed intents:\n"
        f"{intents}\n"
        "Rules:\n"
        "  - intent MUST be one of the allowed values.\n"
        "  - confidence is a number from 0 to 1.\n"
        "  - requiresEscalation is true only when a human clearly needs to step in.\n"
        "  - entities may contain preferredDay, preferredTime or preferredDate as strings.\n"
        "\n"
        f"Conversation so far: {context_summary or 'New conversation.'}\n"
        f"Message: {message}\n"
    )


def build_qualification_prompt(
    criteria: Sequence[QualificationCriterion],
    transcript: str,
    prior: QualificationState,
) -> str:
    criteria_lines = "\n".join(f"  - {c.id}: {c.text}" for c in criteria)
    return (
        "You assess whether a sales lead meets qualification criteria.\n"
        "Return ONLY valid JSON. No markdown. No extra text.\n"
        "\n"
        "You MUST follow this response schema exactly:\n"
        "{\n"
        "  \"criteria\": [\n"
        "    {\"id\": \"c1\", \"status\": \"matched\", \"evidence\": \"...\"}\n"
        "  ],\n"
        "  \"extractedInfo\": {\n"
        "    \"isDecisionMaker\": null, \"hasActiveNeed\": null, \"budget\": null,\n"
        "    \"timeline\": null, \"companySize\": null, \"objections\": [],\n"
        "    \"preferredContactMethod\": null, \"preferredTimes\": [], \"additionalNotes\": []\n"
        "  }\n"
        "}\n"
        "\n"
        "Rules:\n"
        "  - criteria must contain one entry per criterion id below.\n"
        "  - status is one of matched, missed, unknown.\n"
        "  - Use matched or missed only when the lead said something that clearly settles it.\n"
        "  - Leave extractedInfo fields null when the conversation doesn't say.\n"
        "\n"
        f"Criteria:\n{criteria_lines}\n"
        "\n"
        f"Previously matched: {list(prior.criteria_matched)}\n"
        f"Previously missed: {list(prior.criteria_missed)}\n"
        "\n"
        f"Conversation:\n{transcript}\n"
    )
