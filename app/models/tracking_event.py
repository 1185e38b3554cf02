"""
TrackingEvent model - one row per genuine open or click.

Append-only. Ordering by (timestamp, id) gives the chronological
replay used for "first open" / "last activity" in analytics.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.timeutils import utcnow


class EventType(str, enum.Enum):
    OPEN = "open"
    CLICK = "click"


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True)
    tracking_id = Column(String(64), nullable=False)
    sent_message_id = Column(
        Integer,
        ForeignKey("sent_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    event_type = Column(String(10), nullable=False, index=True)
    # Server-assigned, never taken from the client
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    recipient_email = Column(String(255), index=True)  # None if unknown
    clicked_url = Column(String(2000))  # click events only

    ip_address = Column(String(64))
    user_agent = Column(String(1000))
    meta = Column("metadata", JSON, default=dict)

    sent_message = relationship("SentMessage", back_populates="events")

    __table_args__ = (
        Index("ix_tracking_events_tracking_time", "tracking_id", "timestamp"),
        Index("ix_tracking_events_tracking_type", "tracking_id", "event_type"),
        Index("ix_tracking_events_message_type", "sent_message_id", "event_type"),
    )

    def to_dict(self) -> dict:
        return {
            "type": self.event_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "recipient_email": self.recipient_email,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "clicked_url": self.clicked_url,
            "metadata": self.meta or {},
        }

    def __repr__(self):
        return f"<TrackingEvent(id={self.id}, tracking_id={self.tracking_id}, type={self.event_type})>"
