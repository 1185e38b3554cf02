"""
Ingest open-beacon and click-redirect hits.

Hits that arrive within the cooldown window after the send are treated
as automated (link scanners, client prefetch) and are not recorded.
Nothing here may break what the recipient sees: the pixel is always
served and the click always redirects, whatever happens to the event.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models.email import SentMessage
from app.models.tracking_event import EventType, TrackingEvent
from app.services import db_service
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger("tracking_recorder")


@dataclass(frozen=True)
class RequestMeta:
    """Network details of the requesting mail client."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    accept_language: Optional[str] = None

    def as_metadata(self) -> dict:
        return {
            "referer": self.referer,
            "accept_language": self.accept_language,
        }


@dataclass(frozen=True)
class CooldownStatus:
    is_active: bool
    remaining_seconds: int


def check_cooldown(
    sent_at: datetime,
    now: Optional[datetime] = None,
    cooldown_seconds: Optional[int] = None
) -> CooldownStatus:
    """Is `now` still inside the suppression window that starts at sent_at?"""
    now = now or utcnow()
    window = timedelta(seconds=settings.TRACKING_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds)
    elapsed = now - sent_at

    if elapsed < window:
        remaining = window - elapsed
        return CooldownStatus(is_active=True, remaining_seconds=math.ceil(remaining.total_seconds()))
    return CooldownStatus(is_active=False, remaining_seconds=0)


def _normalize_recipient(recipient_email: Optional[str]) -> Optional[str]:
    if not recipient_email or not recipient_email.strip():
        return None
    return recipient_email.strip().lower()


def _eligible_message(db: Session, tracking_id: str, event_type: str, now: datetime) -> Optional[SentMessage]:
    """Return the message to attach an event to, or None if the hit is dropped."""
    message = db_service.get_message_by_tracking_id(db, tracking_id)
    if message is None:
        logger.info(f"No email found with trackingId: {tracking_id}")
        return None

    cooldown = check_cooldown(message.sent_at, now=now)
    if cooldown.is_active:
        logger.info(
            f"{event_type} tracking cooldown active: {cooldown.remaining_seconds}s "
            f"remaining for {tracking_id}"
        )
        return None

    return message


def record_open(
    db: Session,
    tracking_id: str,
    recipient_email: Optional[str],
    request_meta: RequestMeta,
    now: Optional[datetime] = None
) -> Optional[TrackingEvent]:
    """
    Record an open beacon hit.

    Returns:
        The stored event, or None if the id is unknown or the hit was suppressed
    """
    now = now or utcnow()
    message = _eligible_message(db, tracking_id, EventType.OPEN.value, now)
    if message is None:
        return None

    event = db_service.add_tracking_event(
        db=db,
        sent_message=message,
        event_type=EventType.OPEN.value,
        recipient_email=_normalize_recipient(recipient_email),
        ip_address=request_meta.ip_address,
        user_agent=request_meta.user_agent,
        meta=request_meta.as_metadata(),
        timestamp=now
    )
    logger.info(f"Email open event recorded for {tracking_id} ({recipient_email})")
    return event


def record_click(
    db: Session,
    tracking_id: str,
    recipient_email: Optional[str],
    destination_url: str,
    request_meta: RequestMeta,
    now: Optional[datetime] = None
) -> str:
    """
    Record a click hit.

    Returns:
        destination_url, unchanged, so the caller can always redirect
    """
    now = now or utcnow()
    message = _eligible_message(db, tracking_id, EventType.CLICK.value, now)
    if message is not None:
        db_service.add_tracking_event(
            db=db,
            sent_message=message,
            event_type=EventType.CLICK.value,
            recipient_email=_normalize_recipient(recipient_email),
            clicked_url=destination_url[:2000],
            ip_address=request_meta.ip_address,
            user_agent=request_meta.user_agent,
            meta=request_meta.as_metadata(),
            timestamp=now
        )
        logger.info(f"Email click event recorded for {tracking_id} -> {destination_url}")

    return destination_url
