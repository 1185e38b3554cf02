"""Shared fixtures: in-memory SQLite, a signed-in user and a fake transport."""
from __future__ import annotations

import os
import tempfile

# Settings are read at import time, so configure before importing the app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="mail_tracker_logs_")
os.environ["SECRET_KEY"] = "test-secret"
os.environ["APP_URL"] = "http://track.test"
os.environ["FRONTEND_URL"] = "http://app.test"
os.environ["TRACKING_COOLDOWN_SECONDS"] = "10"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.dependencies import create_access_token
from app.services import db_service
from app.services.errors import TransportError
from app.services.transport import TokenSnapshot, Transport, TransportResult
from main import app as fastapi_app


class FakeTransport(Transport):
    """Records every message; fails for the addresses in fail_for."""

    name = "gmail"
    connection_provider = "google"

    def __init__(self, fail_for=(), error_cls=TransportError, token_update=None):
        self.fail_for = set(fail_for)
        self.error_cls = error_cls
        self.token_update = token_update
        self.sent = []
        self.connections = []

    def send(self, connection, message):
        self.sent.append(message)
        self.connections.append(connection.access_token)
        recipient = message.to[0]
        if recipient in self.fail_for:
            raise self.error_cls(f"Rejected {recipient}")
        return TransportResult(
            provider_message_id=f"msg-{len(self.sent)}",
            token_update=self.token_update,
        )


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    return db_service.get_or_create_user(db, "Owner@Example.com", name="Owner")


@pytest.fixture
def google_connection(db, user):
    return db_service.upsert_connection(
        db,
        user_id=user.id,
        provider="google",
        tokens=TokenSnapshot(access_token="ya29.old", refresh_token="1//refresh"),
        email="owner@gmail.com",
        provider_account_id="g-123",
    )


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
