"""
Provider transport contract.

A transport submits one single-recipient message through a linked
mailbox. Encoding differs completely per provider (raw RFC 2822 for
Gmail, structured JSON for Microsoft Graph) but callers only see
Transport.send().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.models.provider_connection import ProviderConnection


@dataclass(frozen=True)
class OutgoingMessage:
    """A message as handed to a transport."""
    to: list[str]
    subject: str
    text: str
    html: Optional[str] = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TokenSnapshot:
    """Credentials produced by a refresh, to be written back to the connection."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None  # naive UTC


@dataclass(frozen=True)
class TransportResult:
    provider_message_id: str
    token_update: Optional[TokenSnapshot] = None


class Transport(ABC):
    """Base class for Gmail / Outlook transports."""

    #: send-request provider name ("gmail" / "outlook")
    name: str = ""
    #: ProviderConnection.provider this transport uses ("google" / "microsoft")
    connection_provider: str = ""

    @abstractmethod
    def send(self, connection: ProviderConnection, message: OutgoingMessage) -> TransportResult:
        """
        Submit message using connection's access token.

        Raises:
            AuthExpired: the provider rejected the token (after a refresh attempt)
            TransportError: any other submission failure
        """
