"""
SQLAlchemy models for the mail tracker.

This package contains:
- User: Owner of connections and sent messages
- ProviderConnection: OAuth credentials for a linked Gmail/Outlook mailbox
- SentMessage: One logical send and its aggregate outcome
- TrackingEvent: Append-only open/click hits
"""

from app.models.user import User
from app.models.provider_connection import ProviderConnection
from app.models.email import SentMessage, MessageStatus
from app.models.tracking_event import TrackingEvent, EventType

__all__ = [
    "User",
    "ProviderConnection",
    "SentMessage",
    "MessageStatus",
    "TrackingEvent",
    "EventType",
]
