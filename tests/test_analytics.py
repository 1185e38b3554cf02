"""Tests for analytics aggregation over stored events."""
from __future__ import annotations

from datetime import datetime, timedelta

from app.services import analytics, db_service

SENT_AT = datetime(2026, 5, 4, 9, 0, 0)


def _message(db, user, tracking_id, recipients, status="sent"):
    return db_service.create_sent_message(
        db=db,
        user_id=user.id,
        tracking_id=tracking_id,
        subject=f"Subject {tracking_id}",
        recipients=recipients,
        body="Body",
        provider="gmail",
        status=status,
        sent_count=1 if status == "sent" else 0,
        sent_at=SENT_AT,
    )


def _event(db, message, event_type, recipient, minutes, ip="198.51.100.1", url=None):
    return db_service.add_tracking_event(
        db=db,
        sent_message=message,
        event_type=event_type,
        recipient_email=recipient,
        clicked_url=url,
        ip_address=ip,
        timestamp=SENT_AT + timedelta(minutes=minutes),
    )


def test_email_analytics_totals_and_timeline(db, user):
    message = _message(db, user, "t1", {"to": ["a@x.io", "b@x.io"]})
    _event(db, message, "open", "a@x.io", 5, ip="198.51.100.1")
    _event(db, message, "open", "b@x.io", 2, ip="198.51.100.2")
    _event(db, message, "click", "a@x.io", 9, url="https://x.io/p")
    _event(db, message, "click", "a@x.io", 7, url="https://x.io/p")

    data = analytics.email_analytics(db, message)

    assert data["total_opens"] == 2
    assert data["unique_opens"] == 2
    assert data["total_clicks"] == 2
    assert data["unique_clicks"] == 1
    assert data["clicked_urls"] == {"https://x.io/p": 2}
    assert data["first_open_at"] == (SENT_AT + timedelta(minutes=2)).isoformat()
    assert data["last_activity_at"] == (SENT_AT + timedelta(minutes=9)).isoformat()


def test_email_analytics_without_events(db, user):
    data = analytics.email_analytics(db, _message(db, user, "t2", {"to": ["a@x.io"]}))

    assert data["total_opens"] == 0
    assert data["first_open_at"] is None
    assert data["last_activity_at"] is None
    assert data["events"] == []


def test_recipient_analytics_rates(db, user):
    message = _message(db, user, "t3", {"to": ["a@x.io"], "cc": ["b@x.io"], "bcc": ["c@x.io", "d@x.io"]})
    _event(db, message, "open", "a@x.io", 1)
    _event(db, message, "open", "a@x.io", 3)
    _event(db, message, "open", "c@x.io", 4)
    _event(db, message, "click", "a@x.io", 5, url="https://x.io")

    data = analytics.recipient_analytics(db, message)

    assert data["total_recipients"] == 4
    assert data["opened_count"] == 2
    assert data["clicked_count"] == 1
    assert data["open_rate"] == "50.00"
    assert data["click_rate"] == "50.00"

    first = data["recipients"][0]
    assert first["email"] == "a@x.io"
    assert first["open_count"] == 2
    assert first["first_open_at"] == (SENT_AT + timedelta(minutes=1)).isoformat()
    assert first["last_open_at"] == (SENT_AT + timedelta(minutes=3)).isoformat()


def test_rates_are_zero_without_denominator(db, user):
    data = analytics.recipient_analytics(db, _message(db, user, "t4", {"to": ["a@x.io"]}))
    assert data["open_rate"] == "0.00"
    assert data["click_rate"] == "0"


def test_overview_counts_only_own_messages(db, user):
    sent = _message(db, user, "t5", {"to": ["a@x.io"]})
    _message(db, user, "t6", {"to": ["a@x.io"]}, status="failed")
    _event(db, sent, "open", "a@x.io", 1)
    _event(db, sent, "click", "a@x.io", 2, url="https://x.io")

    other = db_service.get_or_create_user(db, "other@example.com")
    foreign = _message(db, other, "t7", {"to": ["z@x.io"]})
    _event(db, foreign, "open", "z@x.io", 1)

    data = analytics.overview_stats(db, user.id)

    assert data["total_emails"] == 2
    assert data["sent_emails"] == 1
    assert data["failed_emails"] == 1
    assert data["total_opens"] == 1
    assert data["total_clicks"] == 1
    assert data["open_rate"] == "100.00"
    assert data["click_rate"] == "100.00"
    assert [a["type"] for a in data["recent_activity"]] == ["click", "open"]
