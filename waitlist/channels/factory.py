from __future__ import annotations

from waitlist.channels.base import CRMSync, LoggingNotificationSink, NotificationSink, NullCRMSync
from waitlist.channels.hubspot import HubSpotCRMSync
from waitlist.channels.sendgrid import SendGridNotificationSink
from waitlist.config import Settings


def build_notification_sink(settings: Settings) -> NotificationSink:
    if settings.sendgrid_api_key:
        return SendGridNotificationSink(
            api_key=settings.sendgrid_api_key,
            email_from=settings.email_from,
            http_timeout_seconds=settings.email_http_timeout_seconds,
        )
    return LoggingNotificationSink()


def build_crm_sync(settings: Settings) -> CRMSync:
    if settings.hubspot_access_token:
        return HubSpotCRMSync(
            access_token=settings.hubspot_access_token,
            http_timeout_seconds=settings.crm_http_timeout_seconds,
        )
    return NullCRMSync()
