import base64
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional

from google.oauth2.credentials import Credentials
from google.auth.exceptions import RefreshError, TransportError as GoogleTransportError
from google.auth.transport.requests import Request as GoogleRequest
from httplib2 import HttpLib2Error
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

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

logger = get_logger("gmail_service")

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/gmail.send",
]

AUTH_EXPIRED_MESSAGE = "Gmail authentication expired. Please reconnect your Google account in Settings."


def build_credentials(connection: ProviderConnection) -> Credentials:
    """
    Build Google credentials from a stored connection.

    The client id/secret and token URI are included so google-auth can
    refresh the access token on its own when it is expired or rejected.
    """
    return Credentials(
        token=connection.access_token,
        refresh_token=connection.refresh_token,
        token_uri=settings.GOOGLE_TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
        expiry=connection.access_token_expires,
    )


def get_gmail_service(credentials: Credentials):
    """Creates and returns an authenticated Gmail API service instance."""
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


def get_account_profile(credentials: Credentials) -> dict:
    """
    Fetch the Google account behind a freshly issued set of credentials.

    Returns:
        Dictionary with 'id' and 'email' keys
    """
    service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
    info = service.userinfo().get().execute()
    return {"id": info.get("id"), "email": info.get("email", "")}


def create_gmail_message(message: OutgoingMessage) -> str:
    """
    Encode a message as base64url RFC 2822, as users.messages.send expects.

    Text and HTML go into a multipart/alternative body when both are
    present; otherwise a single text/plain part is sent.
    """
    if message.html:
        mime = MIMEMultipart("alternative")
        mime.attach(MIMEText(message.text, "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))
    else:
        mime = MIMEText(message.text, "plain", "utf-8")

    mime["To"] = ", ".join(message.to)
    if message.cc:
        mime["Cc"] = ", ".join(message.cc)
    if message.bcc:
        mime["Bcc"] = ", ".join(message.bcc)
    mime["Subject"] = message.subject

    return base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")


def _rotated_token(credentials: Credentials, original_token: Optional[str], original_refresh: Optional[str]) -> Optional[TokenSnapshot]:
    """Snapshot the credentials if google-auth refreshed them during the call."""
    if not credentials.token or credentials.token == original_token:
        return None
    return TokenSnapshot(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token if credentials.refresh_token != original_refresh else None,
        expires_at=credentials.expiry,
    )


def _is_auth_failure(error: HttpError) -> bool:
    status = getattr(error.resp, "status", None)
    return status == 401 or "invalid_grant" in str(error)


class GmailTransport(Transport):
    """Sends through the Gmail API with the user's stored Google token."""

    name = "gmail"
    connection_provider = "google"

    def __init__(self, service_factory: Optional[Callable[[Credentials], object]] = None):
        self._service_factory = service_factory or get_gmail_service

    def send(self, connection: ProviderConnection, message: OutgoingMessage) -> TransportResult:
        if not connection.access_token:
            raise AuthExpired("No access token available for Google account")

        credentials = build_credentials(connection)
        original_token = credentials.token
        original_refresh = credentials.refresh_token
        raw = create_gmail_message(message)

        try:
            # Refresh up front when we already know the token is stale
            if credentials.expired and credentials.refresh_token:
                logger.info(f"Refreshing Google token for connection {connection.id}")
                credentials.refresh(GoogleRequest())

            service = self._service_factory(credentials)
            response = service.users().messages().send(
                userId="me",
                body={"raw": raw}
            ).execute()

        except RefreshError as e:
            logger.warning(f"Google token refresh rejected for connection {connection.id}: {e}")
            raise AuthExpired(
                AUTH_EXPIRED_MESSAGE,
                token_update=_rotated_token(credentials, original_token, original_refresh)
            ) from e
        except HttpError as e:
            token_update = _rotated_token(credentials, original_token, original_refresh)
            if _is_auth_failure(e):
                logger.warning(f"Gmail rejected token for connection {connection.id}: {e}")
                raise AuthExpired(AUTH_EXPIRED_MESSAGE, token_update=token_update) from e
            raise TransportError(f"Failed to send Gmail email: {e}", token_update=token_update) from e
        except (GoogleTransportError, HttpLib2Error, OSError) as e:
            raise TransportError(
                f"Failed to send Gmail email: {e}",
                token_update=_rotated_token(credentials, original_token, original_refresh)
            ) from e

        token_update = _rotated_token(credentials, original_token, original_refresh)
        message_id = response.get("id")
        if not message_id:
            raise TransportError("Failed to send Gmail email: response had no message id", token_update=token_update)

        logger.info(f"Gmail email sent successfully: {message_id}")
        return TransportResult(provider_message_id=message_id, token_update=token_update)
