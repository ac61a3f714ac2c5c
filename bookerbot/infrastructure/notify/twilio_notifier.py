from __future__ import annotations

import logging

import httpx

from bookerbot.application.ports.notifier import NotifierPort
from bookerbot.core.config import settings


class TwilioNotifier(NotifierPort):
    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self._auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self._from_number = from_number or settings.TWILIO_FROM_NUMBER
        self._base_url = (base_url or settings.TWILIO_BASE_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._logger = logging.getLogger(__name__)

        if not self._account_sid or not self._auth_token or not self._from_number:
            raise ValueError("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required")

    async def send_text(self, recipient: str, text: str) -> None:
        response = await self._client.post(
            f"{self._base_url}/Accounts/{self._account_sid}/Messages.json",
            data={"To": recipient, "From": self._from_number, "Body": text},
            auth=(self._account_sid, self._auth_token),
        )
        response.raise_for_status()
        self._logger.info("SMS sent", extra={"sid": response.json().get("sid")})
