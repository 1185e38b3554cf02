"""Tests for the Outlook (Microsoft Graph) transport with a scripted HTTP session."""
from __future__ import annotations

import json
from datetime import datetime
from types import SimpleNamespace

import pytest
import requests

from app.services.errors import AuthExpired, TransportError
from app.services.outlook_service import (
    OutlookTransport,
    create_outlook_message,
    get_authorization_url,
)
from app.services.transport import OutgoingMessage

MESSAGE = OutgoingMessage(to=["bob@example.com"], subject="Hi", text="plain", html="<p>html</p>")


class FakeResponse:
    def __init__(self, status_code, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body

    @property
    def text(self):
        return json.dumps(self._body) if self._body is not None else ""


class ScriptedSession:
    """Returns queued responses in order and records each POST."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _connection(expires=None):
    return SimpleNamespace(
        id=7,
        access_token="eyJ.old",
        refresh_token="M.refresh",
        access_token_expires=expires,
    )


def test_graph_message_shape():
    graph = create_outlook_message(
        OutgoingMessage(to=["a@b.co"], subject="S", text="t", cc=["c@d.co"])
    )
    assert graph["body"] == {"contentType": "Text", "content": "t"}
    assert graph["toRecipients"] == [{"emailAddress": {"address": "a@b.co"}}]
    assert graph["ccRecipients"] == [{"emailAddress": {"address": "c@d.co"}}]
    assert "bccRecipients" not in graph


def test_html_body_is_preferred():
    graph = create_outlook_message(MESSAGE)
    assert graph["body"] == {"contentType": "HTML", "content": "<p>html</p>"}


def test_send_uses_request_id_header():
    session = ScriptedSession(FakeResponse(202, headers={"request-id": "req-123"}))

    result = OutlookTransport(session=session).send(_connection(), MESSAGE)

    assert result.provider_message_id == "req-123"
    assert result.token_update is None
    url, kwargs = session.calls[0]
    assert url.endswith("/me/sendMail")
    assert kwargs["headers"]["Authorization"] == "Bearer eyJ.old"
    assert kwargs["json"]["saveToSentItems"] is True


def test_send_without_request_id_synthesizes_one():
    session = ScriptedSession(FakeResponse(202))
    result = OutlookTransport(session=session).send(_connection(), MESSAGE)
    assert result.provider_message_id.startswith("outlook_")


def test_401_refreshes_once_and_retries():
    session = ScriptedSession(
        FakeResponse(401, {"error": {"code": "InvalidAuthenticationToken"}}),
        FakeResponse(200, {"access_token": "eyJ.new", "refresh_token": "M.new", "expires_in": 3600}),
        FakeResponse(202, headers={"request-id": "req-2"}),
    )

    result = OutlookTransport(session=session).send(_connection(), MESSAGE)

    assert result.provider_message_id == "req-2"
    assert result.token_update.access_token == "eyJ.new"
    assert result.token_update.refresh_token == "M.new"
    assert result.token_update.expires_at > datetime(2000, 1, 1)

    token_url, token_kwargs = session.calls[1]
    assert token_url.endswith("/oauth2/v2.0/token")
    assert token_kwargs["data"]["grant_type"] == "refresh_token"
    assert token_kwargs["data"]["refresh_token"] == "M.refresh"
    assert session.calls[2][1]["headers"]["Authorization"] == "Bearer eyJ.new"


def test_second_401_is_auth_expired_and_carries_refreshed_token():
    session = ScriptedSession(
        FakeResponse(401, {"error": {"code": "InvalidAuthenticationToken"}}),
        FakeResponse(200, {"access_token": "eyJ.new", "expires_in": 3600}),
        FakeResponse(401, {"error": {"code": "InvalidAuthenticationToken"}}),
    )

    with pytest.raises(AuthExpired) as exc_info:
        OutlookTransport(session=session).send(_connection(), MESSAGE)

    assert exc_info.value.token_update.access_token == "eyJ.new"
    assert len(session.calls) == 3


def test_expired_token_refreshed_before_sending():
    session = ScriptedSession(
        FakeResponse(200, {"access_token": "eyJ.new", "expires_in": 3600}),
        FakeResponse(202, headers={"request-id": "req-3"}),
    )

    result = OutlookTransport(session=session).send(_connection(expires=datetime(2000, 1, 1)), MESSAGE)

    assert session.calls[0][0].endswith("/oauth2/v2.0/token")
    assert result.token_update.access_token == "eyJ.new"


def test_rejected_refresh_is_auth_expired():
    session = ScriptedSession(
        FakeResponse(401, {"error": {"code": "InvalidAuthenticationToken"}}),
        FakeResponse(400, {"error": "invalid_grant"}),
    )

    with pytest.raises(AuthExpired):
        OutlookTransport(session=session).send(_connection(), MESSAGE)


def test_other_failures_are_transport_errors():
    session = ScriptedSession(FakeResponse(400, {"error": {"code": "ErrorInvalidRecipients"}}))

    with pytest.raises(TransportError, match="ErrorInvalidRecipients"):
        OutlookTransport(session=session).send(_connection(), MESSAGE)


def test_network_failure_is_transport_error():
    session = ScriptedSession(requests.ConnectionError("boom"))

    with pytest.raises(TransportError):
        OutlookTransport(session=session).send(_connection(), MESSAGE)


def test_authorization_url_carries_state_and_scopes():
    url = get_authorization_url("signed-state")
    assert "state=signed-state" in url
    assert "offline_access" in url
    assert "/oauth2/v2.0/authorize?" in url


def test_token_response_without_access_token_is_transport_error():
    session = ScriptedSession(FakeResponse(200, {"error": "temporarily_unavailable"}))

    with pytest.raises(TransportError, match="malformed"):
        OutlookTransport(session=session).send(_connection(expires=datetime(2000, 1, 1)), MESSAGE)


def test_token_response_that_is_not_json_is_transport_error():
    session = ScriptedSession(FakeResponse(200))

    with pytest.raises(TransportError, match="malformed"):
        OutlookTransport(session=session).send(_connection(expires=datetime(2000, 1, 1)), MESSAGE)
