"""
Exception hierarchy for the dispatch and tracking pipeline.

- ValidationError: bad send input, raised before any provider call
- AuthExpired: provider rejected the stored token (even after refresh)
- TransportError: any other provider-side or network failure
- MalformedTrackingUrl: undecodable pixel/click path
"""

from typing import Optional


class MailTrackerError(Exception):
    """Base class for errors raised by the mail tracker services."""


class ValidationError(MailTrackerError):
    """Send request rejected before any transport was invoked."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ProviderNotConnected(ValidationError):
    """The user has no linked account for the chosen provider."""

    def __init__(self, provider: str):
        super().__init__(f"No {provider} account connected", field="provider")
        self.provider = provider


class DeliveryError(MailTrackerError):
    """
    Failure sending to a single recipient.

    token_update is set when the transport refreshed the access token
    before the failure, so the caller can still persist it.
    """

    def __init__(self, message: str, token_update=None):
        super().__init__(message)
        self.token_update = token_update


class AuthExpired(DeliveryError):
    """Provider rejected the token; the user must reconnect the account."""


class TransportError(DeliveryError):
    """Network, payload or provider-side rejection for one recipient."""


class MalformedTrackingUrl(MailTrackerError):
    """A pixel or click path is missing segments or cannot be decoded."""
