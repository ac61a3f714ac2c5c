import logging

from fastapi import FastAPI

from bookerbot.api.respond import router as respond_router
from bookerbot.core.config import settings


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for key in (
            "contact_id",
            "intent",
            "reason",
            "status",
            "error_kind",
            "slot",
            "slots",
            "tool",
            "event_id",
            "attempt",
            "error",
        ):
            value = getattr(record, key, None)
            if value not in (None, ""):
                extras.append(f"{key}={value}")
        base = super().format(record)
        if extras:
            return f"{base} | " + " ".join(extras)
        return base


handler = logging.StreamHandler()
handler.setFormatter(ContextFormatter("%(levelname)s:%(name)s:%(message)s"))

root = logging.getLogger()
root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
root.handlers.clear()
root.addHandler(handler)

app = FastAPI(title="Bookerbot Conversation Engine", version="1.0.0")

app.include_router(respond_router, tags=["ai"])


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
