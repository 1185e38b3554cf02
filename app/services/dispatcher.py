"""
Dispatch orchestrator: one logical send -> one provider call per recipient.

Flow for dispatch():
1. Validate the request and pick the provider transport
2. Mint a tracking id shared by every recipient copy
3. Flatten to + cc + bcc (in that order, duplicates kept)
4. For each recipient: render tracked content, send, write back any
   refreshed token; failures are recorded and the loop continues
5. Reduce the per-recipient results in input order into a SendOutcome

send_and_record() wraps dispatch() and stores the SentMessage row.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from app.models.email import MessageStatus, SentMessage
from app.models.user import User
from app.services import db_service
from app.services.content_rewriter import render_for_recipient
from app.services.errors import DeliveryError, MailTrackerError, ProviderNotConnected, ValidationError
from app.services.gmail_service import GmailTransport
from app.services.outlook_service import OutlookTransport
from app.services.transport import OutgoingMessage, Transport
from app.utils.logger import get_logger

logger = get_logger("dispatcher")

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_SUBJECT_LENGTH = 500
MAX_BODY_LENGTH = 50_000
MAX_HTML_BODY_LENGTH = 100_000

TRANSPORTS: dict[str, type[Transport]] = {
    GmailTransport.name: GmailTransport,
    OutlookTransport.name: OutlookTransport,
}


@dataclass
class SendRequest:
    """A composed message as submitted by the user (not persisted)."""
    to: list[str]
    subject: str
    body: str
    provider: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    html_body: Optional[str] = None

    def all_recipients(self) -> list[str]:
        """to, then cc, then bcc; duplicates preserved."""
        return [*self.to, *self.cc, *self.bcc]


@dataclass(frozen=True)
class RecipientResult:
    recipient: str
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SendOutcome:
    """Aggregate result of one dispatch."""
    tracking_id: str
    status: str
    sent_count: int
    results: list[RecipientResult]
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def attempted(self) -> int:
        return len(self.results)


def get_transport(provider: str) -> Transport:
    """Return a transport instance for a send provider ('gmail' / 'outlook')."""
    transport_cls = TRANSPORTS.get(provider)
    if transport_cls is None:
        raise ValidationError("Provider must be either gmail or outlook", field="provider")
    return transport_cls()


def new_tracking_id() -> str:
    return uuid.uuid4().hex


def validate_send_request(request: SendRequest) -> None:
    """
    Reject malformed input before any transport is touched.

    Raises:
        ValidationError: naming the first offending field
    """
    if request.provider not in TRANSPORTS:
        raise ValidationError("Provider must be either gmail or outlook", field="provider")

    if not request.all_recipients():
        raise ValidationError("Recipients are required", field="to")

    for kind, label in (("to", ""), ("cc", "CC "), ("bcc", "BCC ")):
        for address in getattr(request, kind):
            if not isinstance(address, str) or not EMAIL_REGEX.match(address):
                raise ValidationError(f"Invalid {label}email address: {address}", field=kind)

    if not request.subject or not request.subject.strip():
        raise ValidationError("Subject is required", field="subject")
    if len(request.subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError(f"Subject must not exceed {MAX_SUBJECT_LENGTH} characters", field="subject")

    if not request.body or not request.body.strip():
        raise ValidationError("Email body is required", field="body")
    if len(request.body) > MAX_BODY_LENGTH:
        raise ValidationError("Email body must not exceed 50,000 characters", field="body")

    if request.html_body and len(request.html_body) > MAX_HTML_BODY_LENGTH:
        raise ValidationError("HTML body must not exceed 100,000 characters", field="html_body")


def aggregate_results(tracking_id: str, results: list[RecipientResult]) -> SendOutcome:
    """
    Reduce per-recipient results, in recipient order, into one outcome.

    The error field is only filled when nothing was delivered.
    """
    successes = [r for r in results if r.ok]
    failures = [r for r in results if not r.ok]

    if successes:
        return SendOutcome(
            tracking_id=tracking_id,
            status=MessageStatus.SENT.value,
            sent_count=len(successes),
            results=results,
            provider_message_id=successes[0].provider_message_id
        )

    return SendOutcome(
        tracking_id=tracking_id,
        status=MessageStatus.FAILED.value,
        sent_count=0,
        results=results,
        error=failures[0].error if failures else "No recipients were attempted"
    )


def _send_to_recipient(
    db: Session,
    transport: Transport,
    connection,
    request: SendRequest,
    tracking_id: str,
    recipient: str
) -> RecipientResult:
    content = render_for_recipient(request.body, request.html_body, tracking_id, recipient)
    message = OutgoingMessage(
        to=[recipient],
        subject=request.subject,
        text=content.text,
        html=content.html
    )

    previous_token = connection.access_token
    token_update = None
    try:
        result = transport.send(connection, message)
        token_update = result.token_update
        outcome = RecipientResult(recipient=recipient, provider_message_id=result.provider_message_id)
    except DeliveryError as e:
        token_update = e.token_update
        logger.error(f"Failed to send email to {recipient}: {e}")
        outcome = RecipientResult(recipient=recipient, error=str(e))
    except MailTrackerError as e:
        logger.error(f"Failed to send email to {recipient}: {e}")
        outcome = RecipientResult(recipient=recipient, error=str(e))

    if token_update:
        db_service.update_connection_tokens(db, connection, token_update, previous_token)

    return outcome


def dispatch(
    db: Session,
    user: User,
    request: SendRequest,
    transport: Optional[Transport] = None,
    tracking_id: Optional[str] = None
) -> SendOutcome:
    """
    Send one composed message to every recipient with per-recipient tracking.

    Raises:
        ValidationError: bad input, unsupported provider, or no linked account
    """
    validate_send_request(request)
    transport = transport or get_transport(request.provider)

    connection = user.get_connection(transport.connection_provider)
    if connection is None:
        raise ProviderNotConnected(transport.connection_provider.capitalize())

    tracking_id = tracking_id or new_tracking_id()
    recipients = request.all_recipients()

    results = []
    for recipient in recipients:
        logger.info(f"Sending email to {recipient} (tracking {tracking_id})")
        results.append(
            _send_to_recipient(db, transport, connection, request, tracking_id, recipient)
        )

    outcome = aggregate_results(tracking_id, results)
    logger.info(
        f"Email sending complete. Sent: {outcome.sent_count}/{len(recipients)} emails "
        f"(tracking {tracking_id})"
    )
    return outcome


def send_and_record(
    db: Session,
    user: User,
    request: SendRequest,
    transport: Optional[Transport] = None
) -> tuple[SentMessage, SendOutcome]:
    """Dispatch a send and persist its single SentMessage record."""
    outcome = dispatch(db, user, request, transport=transport)

    message = db_service.create_sent_message(
        db=db,
        user_id=user.id,
        tracking_id=outcome.tracking_id,
        subject=request.subject,
        recipients={"to": request.to, "cc": request.cc, "bcc": request.bcc},
        body=request.body,
        html_body=request.html_body,
        provider=request.provider,
        status=outcome.status,
        sent_count=outcome.sent_count,
        provider_message_id=outcome.provider_message_id,
        error=outcome.error
    )
    return message, outcome
