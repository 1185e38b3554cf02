"""
ProviderConnection model - OAuth credentials for one linked mailbox.

At most one row per (user, provider). The token columns are rewritten
in place whenever a transport refreshes the access token.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class ProviderConnection(Base):
    __tablename__ = "provider_connections"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # "google" or "microsoft"
    provider = Column(String(20), nullable=False)
    provider_account_id = Column(String(255))
    email = Column(String(255))

    access_token = Column(Text)
    refresh_token = Column(Text)
    access_token_expires = Column(DateTime)  # naive UTC

    connected_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="connected_providers")

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_connection_user_provider"),
    )

    def to_public_dict(self) -> dict:
        """Connection details safe to return to the browser (no tokens)."""
        return {
            "provider": self.provider,
            "email": self.email,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "access_token_expires": self.access_token_expires.isoformat() if self.access_token_expires else None,
        }

    def __repr__(self):
        return f"<ProviderConnection(user_id={self.user_id}, provider={self.provider}, email={self.email})>"
