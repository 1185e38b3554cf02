import secrets
import time
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

import requests

from app.config import settings
from app.models.provider_connection import ProviderConnection
from app.services.errors import AuthExpired, TransportError
from app.services.transport import (
    OutgoingMessage,
    TokenSnapshot,
    Transport,
    TransportResult,
)
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger("outlook_service")

SCOPES = ["offline_access", "User.Read", "Mail.Send"]

AUTH_EXPIRED_MESSAGE = "Outlook authentication expired. Please reconnect your Microsoft account in Settings."

# Refresh slightly before the stated expiry to avoid racing the clock
EXPIRY_SKEW = timedelta(seconds=60)


def _token_endpoint() -> str:
    return f"{settings.MICROSOFT_AUTHORITY}/{settings.MICROSOFT_TENANT_ID}/oauth2/v2.0/token"


def get_authorization_url(state: str) -> str:
    """Microsoft consent screen URL for linking a mailbox."""
    params = {
        "client_id": settings.MICROSOFT_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": settings.MICROSOFT_REDIRECT_URI,
        "response_mode": "query",
        "scope": " ".join(SCOPES),
        "state": state,
        "prompt": "consent",
    }
    return f"{settings.MICROSOFT_AUTHORITY}/{settings.MICROSOFT_TENANT_ID}/oauth2/v2.0/authorize?{urlencode(params)}"


def _token_request(data: dict, session=None) -> dict:
    """
    POST to the Microsoft identity platform token endpoint.

    Raises:
        AuthExpired: the grant was rejected (invalid_grant and friends)
        TransportError: network failure or unexpected response
    """
    http = session or requests
    payload = {
        "client_id": settings.MICROSOFT_CLIENT_ID,
        "client_secret": settings.MICROSOFT_CLIENT_SECRET,
        "scope": " ".join(SCOPES),
        **data,
    }
    try:
        response = http.post(_token_endpoint(), data=payload, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise TransportError(f"Microsoft token request failed: {e}") from e

    if response.status_code in (400, 401):
        error = _error_code(response)
        logger.warning(f"Microsoft token request rejected: {error}")
        raise AuthExpired(AUTH_EXPIRED_MESSAGE)
    if response.status_code >= 300:
        raise TransportError(f"Microsoft token request failed with status {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise TransportError("Microsoft token response was malformed") from e


def _snapshot_from_token_response(body: dict) -> TokenSnapshot:
    try:
        expires_in = body.get("expires_in")
        return TokenSnapshot(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise TransportError("Microsoft token response was malformed") from e


def exchange_code(code: str, session=None) -> TokenSnapshot:
    """Trade an authorization code for the first set of tokens."""
    body = _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.MICROSOFT_REDIRECT_URI,
        },
        session=session
    )
    return _snapshot_from_token_response(body)


def refresh_access_token(refresh_token: str, session=None) -> TokenSnapshot:
    body = _token_request(
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        session=session
    )
    return _snapshot_from_token_response(body)


def get_account_profile(access_token: str, session=None) -> dict:
    """
    Fetch the signed-in Microsoft account.

    Returns:
        Dictionary with 'id' and 'email' keys
    """
    http = session or requests
    response = http.get(
        f"{settings.GRAPH_API_URL}/me",
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=settings.REQUEST_TIMEOUT_SECONDS
    )
    response.raise_for_status()
    me = response.json()
    return {
        "id": me.get("id"),
        "email": me.get("mail") or me.get("userPrincipalName") or "",
    }


def create_outlook_message(message: OutgoingMessage) -> dict:
    """Build the Microsoft Graph message resource for sendMail."""

    def addresses(emails: list[str]) -> list[dict]:
        return [{"emailAddress": {"address": email}} for email in emails]

    graph_message = {
        "subject": message.subject,
        "body": {
            "contentType": "HTML" if message.html else "Text",
            "content": message.html or message.text,
        },
        "toRecipients": addresses(message.to),
    }
    if message.cc:
        graph_message["ccRecipients"] = addresses(message.cc)
    if message.bcc:
        graph_message["bccRecipients"] = addresses(message.bcc)
    return graph_message


def _error_code(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code") or error.get("message") or str(error)
    return error or body.get("error_description") or str(body)[:200]


def _is_expired(connection: ProviderConnection) -> bool:
    expires = connection.access_token_expires
    return expires is not None and utcnow() >= expires - EXPIRY_SKEW


class OutlookTransport(Transport):
    """Sends through Microsoft Graph /me/sendMail with the stored Microsoft token."""

    name = "outlook"
    connection_provider = "microsoft"

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()

    def send(self, connection: ProviderConnection, message: OutgoingMessage) -> TransportResult:
        if not connection.access_token:
            raise AuthExpired("No access token available for Microsoft account")

        payload = {"message": create_outlook_message(message), "saveToSentItems": True}
        access_token = connection.access_token
        token_update = None

        if _is_expired(connection) and connection.refresh_token:
            token_update = self._refresh(connection)
            access_token = token_update.access_token

        response = self._post_send_mail(access_token, payload, token_update)

        # A token can be revoked before its stated expiry; refresh once and retry
        if response.status_code == 401 and connection.refresh_token and token_update is None:
            token_update = self._refresh(connection)
            response = self._post_send_mail(token_update.access_token, payload, token_update)

        if response.status_code == 401:
            logger.warning(f"Graph rejected token for connection {connection.id}")
            raise AuthExpired(AUTH_EXPIRED_MESSAGE, token_update=token_update)
        if response.status_code >= 300:
            raise TransportError(
                f"Failed to send Outlook email: {response.status_code} {_error_code(response)}",
                token_update=token_update
            )

        # sendMail answers 202 with no body; request-id is the only handle Graph gives back
        message_id = response.headers.get("request-id") or (
            f"outlook_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
        )
        logger.info(f"Outlook email sent successfully: {message_id}")
        return TransportResult(provider_message_id=message_id, token_update=token_update)

    def _refresh(self, connection: ProviderConnection) -> TokenSnapshot:
        logger.info(f"Refreshing Microsoft token for connection {connection.id}")
        return refresh_access_token(connection.refresh_token, session=self._session)

    def _post_send_mail(self, access_token: str, payload: dict, token_update: Optional[TokenSnapshot]):
        try:
            return self._session.post(
                f"{settings.GRAPH_API_URL}/me/sendMail",
                json=payload,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                timeout=settings.REQUEST_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            raise TransportError(f"Failed to send Outlook email: {e}", token_update=token_update) from e
