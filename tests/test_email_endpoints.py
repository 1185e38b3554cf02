"""API tests for /api/v1/email."""
from __future__ import annotations

import pytest

from app.services import dispatcher

from tests.conftest import FakeTransport

SEND_URL = "/api/v1/email/send"


@pytest.fixture
def fake_gmail(monkeypatch):
    transport = FakeTransport()
    monkeypatch.setitem(dispatcher.TRANSPORTS, "gmail", lambda: transport)
    return transport


def _payload(**overrides):
    payload = {
        "to": ["Bob@Example.com"],
        "subject": "Hello",
        "body": "Visit https://example.com",
        "provider": "gmail",
    }
    payload.update(overrides)
    return payload


def test_send_requires_authentication(client):
    response = client.post(SEND_URL, json=_payload())
    assert response.status_code == 401


def test_send_success(client, auth_headers, google_connection, fake_gmail):
    response = client.post(SEND_URL, json=_payload(cc="carol@example.com"), headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["sentCount"] == 2
    assert len(body["data"]["trackingId"]) == 32
    assert [m.to for m in fake_gmail.sent] == [["bob@example.com"], ["carol@example.com"]]


def test_send_validation_error_is_400(client, auth_headers, google_connection, fake_gmail):
    response = client.post(SEND_URL, json=_payload(to=["nope"]), headers=auth_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert body["field"] == "to"
    assert fake_gmail.sent == []


def test_send_without_connection_is_400(client, auth_headers, fake_gmail):
    response = client.post(SEND_URL, json=_payload(), headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "No Google account connected"


def test_send_all_failed_is_500_with_record(client, auth_headers, google_connection, monkeypatch):
    transport = FakeTransport(fail_for={"bob@example.com"})
    monkeypatch.setitem(dispatcher.TRANSPORTS, "gmail", lambda: transport)

    response = client.post(SEND_URL, json=_payload(), headers=auth_headers)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Rejected bob@example.com"

    listed = client.get("/api/v1/email", params={"status": "failed"}, headers=auth_headers).json()
    assert [e["id"] for e in listed["data"]] == [body["data"]["emailId"]]


def test_list_get_and_delete(client, auth_headers, google_connection, fake_gmail):
    email_id = client.post(SEND_URL, json=_payload(), headers=auth_headers).json()["data"]["emailId"]

    listed = client.get("/api/v1/email", headers=auth_headers).json()["data"]
    assert [e["id"] for e in listed] == [email_id]
    assert listed[0]["recipients"]["to"] == ["bob@example.com"]

    fetched = client.get(f"/api/v1/email/{email_id}", headers=auth_headers)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["subject"] == "Hello"

    assert client.delete(f"/api/v1/email/{email_id}", headers=auth_headers).status_code == 200
    assert client.get(f"/api/v1/email/{email_id}", headers=auth_headers).status_code == 404
    assert client.delete(f"/api/v1/email/{email_id}", headers=auth_headers).status_code == 404


def test_health_check(client):
    assert client.get("/").json()["status"] == "ok"
