from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from waitlist.channels.types import EmailMessage

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Best-effort outbound email. Implementations log failures and return False."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> bool:
        """Send an email. Returns True if accepted by the provider."""
        ...


class CRMSync(ABC):
    """Best-effort contact sync with the marketing CRM."""

    @abstractmethod
    async def upsert_contact(self, email: str, attributes: dict[str, Any]) -> bool:
        """Create or update the contact for ``email``. Returns True on success."""
        ...


class LoggingNotificationSink(NotificationSink):
    async def send(self, message: EmailMessage) -> bool:
        logger.info(
            "Email to %s: %s (email sending disabled, no SENDGRID_API_KEY)",
            message.to,
            message.subject,
        )
        return True


class NullCRMSync(CRMSync):
    async def upsert_contact(self, email: str, attributes: dict[str, Any]) -> bool:
        logger.debug("CRM sync disabled; skipping contact %s", email)
        return True
