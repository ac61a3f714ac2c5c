#!/usr/bin/env python3
"""
Interactive local chat harness (no HTTP, no SMS).

Usage:
  python3 scripts/chat_local.py

What it does:
- Seeds an in-memory store with a demo client, workflow, contact and calendar
- Sends your typed messages through the same ProcessMessageUseCase the API uses
- Prints decision details (intent, qualification, booking state, escalation) and the reply text

Uses OpenAI when OPENAI_API_KEY is set, otherwise the scripted MockLLM.
"""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bookerbot.application.use_cases.booking import BookingUseCase
from bookerbot.application.use_cases.context_manager import ContextManager
from bookerbot.application.use_cases.detect_intent import IntentDetector
from bookerbot.application.use_cases.handoff import HandoffHandler
from bookerbot.application.use_cases.process_message import ProcessMessageUseCase
from bookerbot.application.use_cases.qualification import QualificationEngine
from bookerbot.application.utils.phrasing import PhraseVariation
from bookerbot.application.utils.prompt_builder import PromptBuilder
from bookerbot.core.config import settings
from bookerbot.domain.entities.contact import CalendarConnection, Client, Contact, Workflow
from bookerbot.infrastructure.calendar.mock_calendar import MockCalendar
from bookerbot.infrastructure.notify.logging_notifier import LoggingNotifier
from bookerbot.infrastructure.store.memory_store import MemoryContactStore
from bookerbot.wiring.dependencies import get_llm

DEMO_CRITERIA = "- Owns a business with at least 5 employees\n- Looking to start within 3 months"


def _seed(store: MemoryContactStore, contact_id: str) -> None:
    client = Client(id="client_demo", name="Acme Growth", brand_summary="We help small teams grow with paid ads.")
    workflow = Workflow(
        id="wf_demo",
        name="Discovery Call",
        client=client,
        instructions="Find out whether they run a business and when they'd like to start.",
        qualification_criteria=DEMO_CRITERIA,
    )
    store.add_contact(Contact(id=contact_id, workflow=workflow, phone="+447700900123", first_name="Sam"))
    store.add_connection(CalendarConnection(client_id=client.id, calendar_id="primary", provider="mock"))
    store.add_message(contact_id, "outbound", "Hi Sam, thanks for your interest in Acme Growth! Still looking for help with ads?")


def _build(store: MemoryContactStore, calendar: MockCalendar) -> ProcessMessageUseCase:
    llm = get_llm()
    return ProcessMessageUseCase(
        store=store,
        llm=llm,
        context_manager=ContextManager(),
        intent_detector=IntentDetector(llm=llm),
        qualification_engine=QualificationEngine(llm=llm),
        booking=BookingUseCase(
            store=store,
            calendar_factory=lambda connection: calendar,
            phrases=PhraseVariation(seed=settings.PHRASE_SEED),
        ),
        handoff=HandoffHandler(notifier=LoggingNotifier(), admin_phone="+447700900000", app_url=settings.APP_URL),
        prompt_builder=PromptBuilder(model=settings.OPENAI_MODEL_REPLY, temperature=settings.OPENAI_TEMPERATURE_REPLY),
        reply_model=settings.OPENAI_MODEL_REPLY,
    )


def _print_header(contact_id: str) -> None:
    print("\nLocal Chat Harness")
    print("-" * 60)
    print(f"contact_id: {contact_id}")
    print("Type your message and press Enter.")
    print("Commands: /new (fresh contact), /history, /state, /quit, /help")
    print("-" * 60)


async def main() -> None:
    contact_id = os.getenv("CHAT_CONTACT_ID", "local_contact_1")
    store = MemoryContactStore()
    calendar = MockCalendar()
    _seed(store, contact_id)
    use_case = _build(store, calendar)
    context_manager = ContextManager()
    _print_header(contact_id)

    turn = 0
    while True:
        try:
            user_text = (await asyncio.to_thread(input, "\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            return

        if not user_text:
            continue

        cmd = user_text.lower()
        if cmd in ("/quit", "/exit"):
            print("Bye!")
            return
        if cmd == "/help":
            print("Commands:")
            print("  /new     -> start over with a fresh contact")
            print("  /history -> show last 10 messages")
            print("  /state   -> show conversation and booking state")
            print("  /quit    -> exit")
            continue
        if cmd == "/new":
            turn += 1
            contact_id = f"local_contact_{turn + 1}"
            _seed(store, contact_id)
            print(f"New contact_id: {contact_id}")
            continue
        if cmd == "/history":
            print("\n--- History (last 10) ---")
            for item in (await store.get_messages(contact_id))[-10:]:
                print(f"{item.direction}: {item.content}")
            continue
        if cmd == "/state":
            contact = await store.get_contact(contact_id)
            loaded = context_manager.load(contact.conversation_context if contact else None)
            print(f"status: {contact.status if contact else '-'}")
            print(f"summary: {loaded.context.summary}")
            print(f"qualification: {loaded.context.qualification}")
            print(f"booking: {loaded.booking_state}")
            continue

        store.add_message(contact_id, "inbound", user_text)
        try:
            result = await use_case.handle(contact_id, user_text)
        except Exception as e:
            print(f"ERROR: {e}")
            continue

        print("\n--- Decision ---")
        print(f"intent: {result.intent.intent} ({result.intent.confidence:.2f})")
        if result.context_update is not None:
            print(f"qualification: {result.context_update.qualification.status}")
        if result.status_update:
            print(f"status -> {result.status_update}")
        if result.appointment_created:
            print("appointment created")
        print(f"escalate: {result.should_escalate}")
        if result.escalation_reason:
            print(f"escalation_reason: {result.escalation_reason}")
        print(f"tokens: {result.tokens_used.total}")

        print("\n--- Reply ---")
        print(result.response.strip() or "(empty reply)")
        print("-" * 60)


if __name__ == "__main__":
    asyncio.run(main())
