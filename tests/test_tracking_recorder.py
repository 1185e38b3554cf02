"""Tests for open/click recording and the post-send cooldown."""
from __future__ import annotations

from datetime import datetime, timedelta

from app.services import db_service
from app.services.tracking_recorder import RequestMeta, check_cooldown, record_click, record_open

SENT_AT = datetime(2026, 3, 1, 12, 0, 0)
META = RequestMeta(ip_address="203.0.113.9", user_agent="Mozilla/5.0", referer=None, accept_language="en")


def _message(db, user, tracking_id="tid-1"):
    return db_service.create_sent_message(
        db=db,
        user_id=user.id,
        tracking_id=tracking_id,
        subject="Hello",
        recipients={"to": ["bob@example.com"], "cc": [], "bcc": []},
        body="Body",
        provider="gmail",
        status="sent",
        sent_count=1,
        sent_at=SENT_AT,
    )


def test_cooldown_window():
    active = check_cooldown(SENT_AT, now=SENT_AT + timedelta(seconds=3), cooldown_seconds=10)
    assert active.is_active is True
    assert active.remaining_seconds == 7

    expired = check_cooldown(SENT_AT, now=SENT_AT + timedelta(seconds=10), cooldown_seconds=10)
    assert expired.is_active is False
    assert expired.remaining_seconds == 0


def test_open_inside_cooldown_is_not_recorded(db, user):
    _message(db, user)

    event = record_open(db, "tid-1", "bob@example.com", META, now=SENT_AT + timedelta(seconds=3))

    assert event is None
    assert db_service.count_events(db, "tid-1") == 0


def test_open_after_cooldown_is_recorded(db, user):
    message = _message(db, user)

    event = record_open(db, "tid-1", " Bob@Example.com ", META, now=SENT_AT + timedelta(seconds=15))

    assert event.event_type == "open"
    assert event.sent_message_id == message.id
    assert event.recipient_email == "bob@example.com"
    assert event.ip_address == "203.0.113.9"
    assert event.timestamp == SENT_AT + timedelta(seconds=15)
    assert event.meta == {"referer": None, "accept_language": "en"}


def test_every_open_after_cooldown_adds_a_row(db, user):
    _message(db, user)

    for offset in (20, 30, 40):
        record_open(db, "tid-1", "bob@example.com", META, now=SENT_AT + timedelta(seconds=offset))

    assert db_service.count_events(db, "tid-1", "open") == 3


def test_unknown_tracking_id_records_nothing(db, user):
    assert record_open(db, "missing", "bob@example.com", META, now=SENT_AT + timedelta(hours=1)) is None
    assert db_service.count_events(db, "missing") == 0


def test_click_is_recorded_and_destination_returned(db, user):
    _message(db, user)

    destination = record_click(
        db, "tid-1", "bob@example.com", "https://example.com/a", META, now=SENT_AT + timedelta(minutes=1)
    )

    assert destination == "https://example.com/a"
    events = db_service.get_message_events(db, _message_id(db))
    assert [(e.event_type, e.clicked_url) for e in events] == [("click", "https://example.com/a")]


def test_click_inside_cooldown_still_returns_destination(db, user):
    _message(db, user)

    destination = record_click(
        db, "tid-1", "bob@example.com", "https://example.com/a", META, now=SENT_AT + timedelta(seconds=2)
    )

    assert destination == "https://example.com/a"
    assert db_service.count_events(db, "tid-1", "click") == 0


def test_click_for_unknown_id_returns_destination(db):
    assert record_click(db, "missing", None, "https://example.com/", META) == "https://example.com/"


def test_blank_recipient_is_stored_as_unknown(db, user):
    _message(db, user)
    event = record_open(db, "tid-1", "  ", META, now=SENT_AT + timedelta(minutes=1))
    assert event.recipient_email is None


def _message_id(db):
    return db_service.get_message_by_tracking_id(db, "tid-1").id
