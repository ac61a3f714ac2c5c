from __future__ import annotations

import logging

from bookerbot.application.ports.notifier import NotifierPort
from bookerbot.domain.entities.contact import Contact
from bookerbot.domain.entities.conversation_context import ConversationContext

HANDOFF_MESSAGES = {
    "Contact requested human assistance": (
        "I'll have someone from our team reach out to you shortly. They'll be able to help you better!"
    ),
    "Multiple unresolved complex queries": (
        "I want to make sure you get the best help possible. Let me have one of our team members follow up with you."
    ),
    "Conversation exceeded turn limit without resolution": (
        "Thanks for your patience! I'm going to have a team member reach out to assist you directly."
    ),
    "Contact expressed frustration": (
        "I apologize for any frustration. Let me have someone from our team reach out to you right away "
        "to help resolve this."
    ),
    "Complex query requiring human expertise": (
        "That's a great question! I'd like to have one of our specialists get back to you with more details."
    ),
}

GENERIC_HANDOFF_MESSAGE = (
    "I'm connecting you with a team member who can assist you further. You'll hear from them shortly!"
)

AUTO_ESCALATE_ATTEMPTS = 2
AUTO_ESCALATE_TURNS = 20


class HandoffHandler:
    def __init__(self, notifier: NotifierPort | None, admin_phone: str | None, app_url: str) -> None:
        self._notifier = notifier
        self._admin_phone = admin_phone
        self._app_url = app_url.rstrip("/")
        self._logger = logging.getLogger(__name__)

    def generate_handoff_message(self, reason: str | None) -> str:
        needle = (reason or "").lower().strip()
        if needle:
            for key, message in HANDOFF_MESSAGES.items():
                known = key.lower()
                if known in needle or needle in known:
                    return message
        return GENERIC_HANDOFF_MESSAGE

    async def notify_admin(self, contact: Contact, reason: str) -> bool:
        """Best effort. Returns whether the notification went out."""
        if self._notifier is None or not self._admin_phone:
            self._logger.info("Handoff notification skipped, no admin configured", extra={"contact_id": contact.id})
            return False

        text = (
            "Handoff needed\n"
            f"Contact: {contact.display_name}\n"
            f"Phone: {contact.phone}\n"
            f"Workflow: {contact.workflow.name}\n"
            f"Client: {contact.client.name}\n"
            f"Reason: {reason}\n"
            f"{self._app_url}/contacts/{contact.id}"
        )
        try:
            await self._notifier.send_text(self._admin_phone, text)
        except Exception as e:
            self._logger.error(
                "Handoff notification failed",
                extra={"contact_id": contact.id, "reason": reason, "error": str(e)},
            )
            return False
        self._logger.info("Handoff notification sent", extra={"contact_id": contact.id, "reason": reason})
        return True

    def should_auto_escalate(self, context: ConversationContext) -> bool:
        state = context.state
        return state.escalation_attempts >= AUTO_ESCALATE_ATTEMPTS or state.turn_count > AUTO_ESCALATE_TURNS
