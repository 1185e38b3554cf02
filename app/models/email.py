"""
SentMessage model - one row per logical send.

A row is written once, after every recipient of the send has been
attempted, and is never edited afterwards (only deleted).
Tracking events point back to it through tracking_id.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.database import Base
from app.utils.timeutils import utcnow


class MessageStatus(str, enum.Enum):
    """Terminal state of a logical send."""
    SENT = "sent"
    FAILED = "failed"
    DRAFT = "draft"


class SentMessage(Base):
    __tablename__ = "sent_messages"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Shared by every per-recipient copy of this send
    tracking_id = Column(String(64), unique=True, nullable=False, index=True)
    # First provider id that came back, if any recipient succeeded
    provider_message_id = Column(String(255), index=True)

    subject = Column(String(500), nullable=False)
    # {"to": [...], "cc": [...], "bcc": [...]}
    recipients = Column(JSON, nullable=False, default=dict)
    body = Column(Text, nullable=False)
    html_body = Column(Text)

    provider = Column(String(20), nullable=False, index=True)  # gmail, outlook
    status = Column(String(20), nullable=False, default=MessageStatus.DRAFT.value, index=True)
    sent_count = Column(Integer, nullable=False, default=0)
    error = Column(Text)

    sent_at = Column(DateTime, nullable=False, default=utcnow)

    owner = relationship("User", back_populates="sent_messages")
    events = relationship(
        "TrackingEvent",
        back_populates="sent_message",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_sent_messages_user_sent_at", "user_id", "sent_at"),
        Index("ix_sent_messages_status_provider", "status", "provider"),
    )

    @property
    def all_recipients(self) -> list[str]:
        """to + cc + bcc, in that order."""
        recipients = self.recipients or {}
        return [
            *recipients.get("to", []),
            *recipients.get("cc", []),
            *recipients.get("bcc", []),
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tracking_id": self.tracking_id,
            "message_id": self.provider_message_id,
            "subject": self.subject,
            "recipients": self.recipients,
            "body": self.body,
            "html_body": self.html_body,
            "provider": self.provider,
            "status": self.status,
            "sent_count": self.sent_count,
            "error": self.error,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<SentMessage(id={self.id}, tracking_id={self.tracking_id}, status={self.status})>"
