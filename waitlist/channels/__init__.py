from waitlist.channels.base import CRMSync, LoggingNotificationSink, NotificationSink, NullCRMSync
from waitlist.channels.hubspot import HubSpotCRMSync
from waitlist.channels.sendgrid import SendGridNotificationSink
from waitlist.channels.types import EmailMessage

__all__ = [
    "CRMSync",
    "EmailMessage",
    "HubSpotCRMSync",
    "LoggingNotificationSink",
    "NotificationSink",
    "NullCRMSync",
    "SendGridNotificationSink",
]
