from functools import lru_cache
import logging

from bookerbot.application.ports.calendar import CalendarPort
from bookerbot.application.ports.contact_store import ContactStorePort
from bookerbot.application.ports.llm import LLMPort
from bookerbot.application.ports.notifier import NotifierPort
from bookerbot.application.use_cases.booking import BookingUseCase
from bookerbot.application.use_cases.context_manager import ContextManager
from bookerbot.application.use_cases.detect_intent import IntentDetector
from bookerbot.application.use_cases.handoff import HandoffHandler
from bookerbot.application.use_cases.process_message import ProcessMessageUseCase
from bookerbot.application.use_cases.qualification import QualificationEngine
from bookerbot.application.utils.phrasing import PhraseVariation
from bookerbot.application.utils.prompt_builder import PromptBuilder
from bookerbot.core.config import settings
from bookerbot.domain.entities.contact import CalendarConnection
from bookerbot.infrastructure.calendar.google_calendar import GoogleCalendar
from bookerbot.infrastructure.calendar.mock_calendar import MockCalendar
from bookerbot.infrastructure.llm.mock_llm import MockLLM
from bookerbot.infrastructure.llm.openai_llm import OpenAILLM
from bookerbot.infrastructure.notify.logging_notifier import LoggingNotifier
from bookerbot.infrastructure.notify.twilio_notifier import TwilioNotifier
from bookerbot.infrastructure.store.memory_store import MemoryContactStore
from bookerbot.infrastructure.store.supabase_store import SupabaseContactStore

logger = logging.getLogger(__name__)

_mock_calendar = MockCalendar()


@lru_cache
def get_llm() -> LLMPort:
    if settings.OPENAI_API_KEY and settings.OPENAI_API_KEY.strip():
        return OpenAILLM()
    return MockLLM()


@lru_cache
def get_contact_store() -> ContactStorePort:
    if settings.STORE_PROVIDER.lower() == "supabase":
        return SupabaseContactStore()
    return MemoryContactStore()


@lru_cache
def get_notifier() -> NotifierPort:
    if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER:
        return TwilioNotifier()
    return LoggingNotifier()


def get_calendar_for(connection: CalendarConnection) -> CalendarPort:
    if connection.provider == "google" and connection.access_token:
        return GoogleCalendar.from_connection(connection)
    if settings.ENV.lower() in {"dev", "local"}:
        return _mock_calendar
    raise ValueError(f"No calendar adapter for provider {connection.provider!r}")


def get_booking_use_case() -> BookingUseCase:
    return BookingUseCase(
        store=get_contact_store(),
        calendar_factory=get_calendar_for,
        phrases=PhraseVariation(seed=settings.PHRASE_SEED),
        lookahead_days=settings.BOOKING_LOOKAHEAD_DAYS,
        max_offered_slots=settings.BOOKING_MAX_OFFERED_SLOTS,
        min_lead_time_hours=settings.BOOKING_MIN_LEAD_TIME_HOURS,
        default_timezone=settings.DEFAULT_TIMEZONE,
    )


def get_process_message_use_case() -> ProcessMessageUseCase:
    llm = get_llm()
    return ProcessMessageUseCase(
        store=get_contact_store(),
        llm=llm,
        context_manager=ContextManager(),
        intent_detector=IntentDetector(llm=llm),
        qualification_engine=QualificationEngine(llm=llm),
        booking=get_booking_use_case(),
        handoff=HandoffHandler(
            notifier=get_notifier(),
            admin_phone=settings.ADMIN_PHONE_NUMBER,
            app_url=settings.APP_URL,
        ),
        prompt_builder=PromptBuilder(
            model=settings.OPENAI_MODEL_REPLY,
            temperature=settings.OPENAI_TEMPERATURE_REPLY,
        ),
        reply_model=settings.OPENAI_MODEL_REPLY,
    )
