from __future__ import annotations

import logging
from typing import Any

import httpx

from waitlist.channels.base import NotificationSink
from waitlist.channels.types import EmailMessage

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"


def build_sendgrid_payload(message: EmailMessage, *, email_from: str) -> dict[str, Any]:
    content = [{"type": "text/plain", "value": message.text}]
    if message.html:
        content.append({"type": "text/html", "value": message.html})
    return {
        "personalizations": [{"to": [{"email": message.to}]}],
        "from": {"email": email_from},
        "subject": message.subject,
        "content": content,
    }


class SendGridNotificationSink(NotificationSink):
    def __init__(self, *, api_key: str, email_from: str, http_timeout_seconds: float) -> None:
        self._api_key = api_key
        self._email_from = email_from
        self._timeout = http_timeout_seconds

    async def send(self, message: EmailMessage) -> bool:
        payload = build_sendgrid_payload(message, email_from=self._email_from)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    SENDGRID_API_URL,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                )
            if response.status_code >= 400:
                logger.error("SendGrid API error %d: %s", response.status_code, response.text)
                return False
            logger.info(
                "Email sent to %s (SendGrid ID: %s)",
                message.to,
                response.headers.get("X-Message-Id", "unknown"),
            )
            return True
        except httpx.HTTPError:
            logger.exception("Failed to send email to %s", message.to)
            return False
