"""
Database service layer for the mail tracker.

This module provides CRUD operations for:
- Users and their provider connections (including token write-back)
- Sent messages (one row per logical send)
- Tracking events (append-only open/click rows)
"""

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import update
from typing import Optional

from app.models.user import User
from app.models.provider_connection import ProviderConnection
from app.models.email import SentMessage
from app.models.tracking_event import TrackingEvent
from app.services.transport import TokenSnapshot
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger("db_service")


# ============ USER OPERATIONS ============

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_or_create_user(db: Session, email: str, name: str = None) -> User:
    """
    Return the user with this email, creating it if needed.

    Identity is owned by an external layer; this exists so that
    callers and tooling can materialise a local owner row.
    """
    normalized = email.strip().lower()
    existing = db.query(User).filter(User.email == normalized).first()
    if existing:
        return existing

    user = User(email=normalized, name=name)
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
        return user
    except IntegrityError:
        # Race condition - another request created it
        db.rollback()
        return db.query(User).filter(User.email == normalized).first()


# ============ PROVIDER CONNECTION OPERATIONS ============

def get_connection(db: Session, user_id: int, provider: str) -> Optional[ProviderConnection]:
    return db.query(ProviderConnection).filter(
        ProviderConnection.user_id == user_id,
        ProviderConnection.provider == provider
    ).first()


def upsert_connection(
    db: Session,
    user_id: int,
    provider: str,
    tokens: TokenSnapshot,
    email: str = None,
    provider_account_id: str = None
) -> ProviderConnection:
    """
    Insert or update the (user, provider) connection after an OAuth callback.

    A missing refresh token in `tokens` keeps the stored one, because
    providers only return it on the first consent.
    """
    connection = get_connection(db, user_id, provider)

    if connection:
        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token or connection.refresh_token
        connection.access_token_expires = tokens.expires_at
        connection.email = email or connection.email
        connection.provider_account_id = provider_account_id or connection.provider_account_id
    else:
        connection = ProviderConnection(
            user_id=user_id,
            provider=provider,
            email=email,
            provider_account_id=provider_account_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            access_token_expires=tokens.expires_at,
            connected_at=utcnow()
        )
        db.add(connection)

    db.commit()
    db.refresh(connection)
    logger.info(f"Stored {provider} connection for user {user_id}")
    return connection


def update_connection_tokens(
    db: Session,
    connection: ProviderConnection,
    tokens: TokenSnapshot,
    previous_access_token: Optional[str]
) -> bool:
    """
    Write refreshed tokens back with a compare-and-swap on the access token.

    If another request rotated the token since `previous_access_token`
    was read, its (equally fresh) token is kept. Either way the
    in-memory connection is reloaded so the next send uses the stored
    token.

    Returns:
        True if this call's tokens were written
    """
    values = {"access_token": tokens.access_token, "updated_at": utcnow()}
    if tokens.refresh_token:
        values["refresh_token"] = tokens.refresh_token
    if tokens.expires_at:
        values["access_token_expires"] = tokens.expires_at

    result = db.execute(
        update(ProviderConnection)
        .where(
            ProviderConnection.id == connection.id,
            ProviderConnection.access_token == previous_access_token
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(connection)

    written = result.rowcount == 1
    if written:
        logger.info(f"Updated {connection.provider} tokens for user {connection.user_id}")
    else:
        logger.info(
            f"{connection.provider} token for user {connection.user_id} was already "
            f"rotated by another request; keeping stored token"
        )
    return written


def delete_connection(db: Session, user_id: int, provider: str) -> bool:
    connection = get_connection(db, user_id, provider)
    if not connection:
        return False
    db.delete(connection)
    db.commit()
    logger.info(f"Disconnected {provider} for user {user_id}")
    return True


def get_user_connections(db: Session, user_id: int) -> list[ProviderConnection]:
    return db.query(ProviderConnection).filter(
        ProviderConnection.user_id == user_id
    ).order_by(ProviderConnection.connected_at).all()


# ============ SENT MESSAGE OPERATIONS ============

def create_sent_message(
    db: Session,
    user_id: int,
    tracking_id: str,
    subject: str,
    recipients: dict,
    body: str,
    html_body: str = None,
    provider: str = None,
    status: str = "sent",
    sent_count: int = 0,
    provider_message_id: str = None,
    error: str = None,
    sent_at=None
) -> SentMessage:
    """
    Persist the single record for a logical send.

    Recipient addresses are lower-cased and trimmed before storage.
    """
    normalized = {
        kind: [address.strip().lower() for address in recipients.get(kind, [])]
        for kind in ("to", "cc", "bcc")
    }

    message = SentMessage(
        user_id=user_id,
        tracking_id=tracking_id,
        subject=subject,
        recipients=normalized,
        body=body,
        html_body=html_body,
        provider=provider,
        status=status,
        sent_count=sent_count,
        provider_message_id=provider_message_id,
        error=error,
        sent_at=sent_at or utcnow()
    )

    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def get_message_by_tracking_id(db: Session, tracking_id: str) -> Optional[SentMessage]:
    return db.query(SentMessage).filter(
        SentMessage.tracking_id == tracking_id
    ).first()


def get_user_messages(
    db: Session,
    user_id: int,
    skip: int = 0,
    limit: int = 50,
    status: str = None
) -> list[SentMessage]:
    """List a user's sent messages, newest first."""
    query = db.query(SentMessage).filter(SentMessage.user_id == user_id)

    if status:
        query = query.filter(SentMessage.status == status)

    query = query.order_by(SentMessage.sent_at.desc(), SentMessage.id.desc())
    return query.offset(skip).limit(limit).all()


def get_user_message(db: Session, user_id: int, message_id: int) -> Optional[SentMessage]:
    return db.query(SentMessage).filter(
        SentMessage.id == message_id,
        SentMessage.user_id == user_id
    ).first()


def delete_user_message(db: Session, user_id: int, message_id: int) -> bool:
    message = get_user_message(db, user_id, message_id)
    if not message:
        return False
    db.delete(message)
    db.commit()
    return True


# ============ TRACKING EVENT OPERATIONS ============

def add_tracking_event(
    db: Session,
    sent_message: SentMessage,
    event_type: str,
    recipient_email: str = None,
    clicked_url: str = None,
    ip_address: str = None,
    user_agent: str = None,
    meta: dict = None,
    timestamp=None
) -> TrackingEvent:
    event = TrackingEvent(
        tracking_id=sent_message.tracking_id,
        sent_message_id=sent_message.id,
        event_type=event_type,
        recipient_email=recipient_email,
        clicked_url=clicked_url,
        ip_address=ip_address,
        user_agent=user_agent[:1000] if user_agent else None,
        meta=meta or {},
        timestamp=timestamp or utcnow()
    )

    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def get_message_events(db: Session, sent_message_id: int) -> list[TrackingEvent]:
    """All events for a message in chronological order."""
    return db.query(TrackingEvent).filter(
        TrackingEvent.sent_message_id == sent_message_id
    ).order_by(TrackingEvent.timestamp, TrackingEvent.id).all()


def count_events(db: Session, tracking_id: str, event_type: str = None) -> int:
    query = db.query(TrackingEvent).filter(TrackingEvent.tracking_id == tracking_id)
    if event_type:
        query = query.filter(TrackingEvent.event_type == event_type)
    return query.count()
