"""
Open/click analytics built from stored tracking events.

- email_analytics: totals, unique counts (by client IP), clicked URLs
- recipient_analytics: per-recipient open/click breakdown and rates
- overview_stats: a user's totals across all sent messages
"""

from collections import Counter
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.email import MessageStatus, SentMessage
from app.models.tracking_event import EventType, TrackingEvent
from app.services import db_service


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _rate(numerator: int, denominator: int) -> str:
    return f"{numerator / denominator * 100:.2f}" if denominator > 0 else "0"


def email_analytics(db: Session, message: SentMessage) -> dict:
    events = db_service.get_message_events(db, message.id)
    opens = [e for e in events if e.event_type == EventType.OPEN.value]
    clicks = [e for e in events if e.event_type == EventType.CLICK.value]

    clicked_urls = Counter(e.clicked_url for e in clicks if e.clicked_url)

    return {
        "email_id": message.id,
        "subject": message.subject,
        "sent_at": _iso(message.sent_at),
        "status": message.status,
        "recipients": message.recipients,
        "total_opens": len(opens),
        "unique_opens": len({e.ip_address for e in opens}),
        "total_clicks": len(clicks),
        "unique_clicks": len({e.ip_address for e in clicks}),
        "clicked_urls": dict(clicked_urls),
        "first_open_at": _iso(opens[0].timestamp) if opens else None,
        "last_activity_at": _iso(events[-1].timestamp) if events else None,
        "events": [e.to_dict() for e in events],
    }


def recipient_analytics(db: Session, message: SentMessage) -> dict:
    """Per-recipient breakdown; a recipient listed twice is reported twice."""
    events = db_service.get_message_events(db, message.id)
    recipients = message.all_recipients

    stats = []
    for recipient in recipients:
        recipient_events = [e for e in events if e.recipient_email == recipient]
        opens = [e for e in recipient_events if e.event_type == EventType.OPEN.value]
        clicks = [e for e in recipient_events if e.event_type == EventType.CLICK.value]

        stats.append({
            "email": recipient,
            "opened": bool(opens),
            "open_count": len(opens),
            "first_open_at": _iso(opens[0].timestamp) if opens else None,
            "last_open_at": _iso(opens[-1].timestamp) if opens else None,
            "clicked": bool(clicks),
            "click_count": len(clicks),
            "first_click_at": _iso(clicks[0].timestamp) if clicks else None,
            "last_click_at": _iso(clicks[-1].timestamp) if clicks else None,
            "events": [e.to_dict() for e in recipient_events],
        })

    opened_count = sum(1 for s in stats if s["opened"])
    clicked_count = sum(1 for s in stats if s["clicked"])

    return {
        "email_id": message.id,
        "subject": message.subject,
        "sent_at": _iso(message.sent_at),
        "total_recipients": len(recipients),
        "opened_count": opened_count,
        "clicked_count": clicked_count,
        "open_rate": _rate(opened_count, len(recipients)),
        "click_rate": _rate(clicked_count, opened_count),
        "recipients": stats,
    }


def overview_stats(db: Session, user_id: int, recent_limit: int = 10) -> dict:
    status_counts = dict(
        db.query(SentMessage.status, func.count(SentMessage.id))
        .filter(SentMessage.user_id == user_id)
        .group_by(SentMessage.status)
        .all()
    )
    sent_emails = status_counts.get(MessageStatus.SENT.value, 0)

    event_rows = (
        db.query(
            TrackingEvent.event_type,
            func.count(TrackingEvent.id),
            func.count(func.distinct(TrackingEvent.ip_address))
        )
        .join(SentMessage, TrackingEvent.sent_message_id == SentMessage.id)
        .filter(SentMessage.user_id == user_id)
        .group_by(TrackingEvent.event_type)
        .all()
    )
    totals = {event_type: (total, unique) for event_type, total, unique in event_rows}
    total_opens, unique_opens = totals.get(EventType.OPEN.value, (0, 0))
    total_clicks, unique_clicks = totals.get(EventType.CLICK.value, (0, 0))

    recent = (
        db.query(TrackingEvent, SentMessage.subject)
        .join(SentMessage, TrackingEvent.sent_message_id == SentMessage.id)
        .filter(SentMessage.user_id == user_id)
        .order_by(TrackingEvent.timestamp.desc(), TrackingEvent.id.desc())
        .limit(recent_limit)
        .all()
    )

    return {
        "total_emails": sum(status_counts.values()),
        "sent_emails": sent_emails,
        "failed_emails": status_counts.get(MessageStatus.FAILED.value, 0),
        "total_opens": total_opens,
        "total_clicks": total_clicks,
        "unique_opens": unique_opens,
        "unique_clicks": unique_clicks,
        "open_rate": _rate(unique_opens, sent_emails),
        "click_rate": _rate(unique_clicks, unique_opens),
        "recent_activity": [
            {
                "email_id": event.sent_message_id,
                "subject": subject,
                "type": event.event_type,
                "timestamp": _iso(event.timestamp),
                "clicked_url": event.clicked_url,
            }
            for event, subject in recent
        ],
    }
