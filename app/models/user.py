"""
User model - the owner of provider connections and sent messages.

Login, sessions and profile management live outside this service;
only the identity needed to scope data is stored here.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    created_at = Column(DateTime, server_default=func.now())

    connected_providers = relationship(
        "ProviderConnection",
        back_populates="user",
        cascade="all, delete-orphan"
    )
    sent_messages = relationship(
        "SentMessage",
        back_populates="owner",
        cascade="all, delete-orphan"
    )

    def get_connection(self, provider: str):
        """Return the connection for a provider id ('google' / 'microsoft'), if any."""
        for connection in self.connected_providers:
            if connection.provider == provider:
                return connection
        return None

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
