from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    OPENAI_API_KEY: str | None = None

    OPENAI_MODEL_REPLY: str = "gpt-4o-mini"
    OPENAI_MODEL_CLASSIFY: str = "gpt-4o-mini"
    OPENAI_MODEL_QUALIFY: str = "gpt-4o-mini"

    OPENAI_TEMPERATURE_REPLY: float = 0.7
    OPENAI_TEMPERATURE_CLASSIFY: float = 0.0
    OPENAI_TIMEOUT_SECONDS: float = 30.0

    LLM_MAX_ATTEMPTS: int = 3
    LLM_RETRY_DELAYS_SECONDS: list[float] = [1.0, 2.0]

    STORE_PROVIDER: str = "memory"
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_KEY: str | None = None

    GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    BOOKING_LOOKAHEAD_DAYS: int = 14
    BOOKING_MAX_OFFERED_SLOTS: int = 4
    BOOKING_MIN_LEAD_TIME_HOURS: int = 2
    DEFAULT_TIMEZONE: str = "Europe/London"
    DEFAULT_APPOINTMENT_MINUTES: int = 30

    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_NUMBER: str | None = None
    TWILIO_BASE_URL: str = "https://api.twilio.com/2010-04-01"
    ADMIN_PHONE_NUMBER: str | None = None
    APP_URL: str = "http://localhost:3000"

    PHRASE_SEED: int | None = None
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"


settings = Settings()
