# tests/conftest.py
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("OTEL_CONSOLE_EXPORT", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from convene.main import app
from convene.db.database import Base, get_db
from convene.auth.organizer import get_current_user_id

# Import models so metadata knows about all tables
import convene.models  # noqa: F401

ORGANIZER_ID = "user_organizer_1"


@pytest.fixture(scope="session")
def engine():
    """In-memory SQLite database; StaticPool keeps one connection so every thread sees it."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clean_db(engine):
    """Reset all tables before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def db(engine):
    """Return a new SQLAlchemy session for each test."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    """Notifier double that records every event it is handed."""

    class RecordingNotifier:
        def __init__(self):
            self.events = []

        def notify(self, event):
            self.events.append(event)

        def types(self):
            return [event.type for event in self.events]

    return RecordingNotifier()


@pytest.fixture
def slot_times():
    """Factory for (start, end) pairs one day apart, starting tomorrow 10:00 UTC."""
    base = (datetime.now(timezone.utc) + timedelta(days=1)).replace(hour=10, minute=0, second=0, microsecond=0)

    def _make(count):
        return [
            {"start_at": base + timedelta(days=i), "end_at": base + timedelta(days=i, hours=1)}
            for i in range(count)
        ]

    return _make


@pytest.fixture
def make_thread(db, notifier, slot_times):
    """Prepare (and by default send) a thread through ThreadService."""
    from convene.services.thread_service import ThreadService

    def _make(
        *,
        mode="candidates",
        invitee_count=3,
        slot_count=3,
        send=True,
        organizer_user_id=ORGANIZER_ID,
        **policy,
    ):
        if mode == "fixed":
            slot_count = 1
        service = ThreadService(db, notifier=notifier)
        thread = service.prepare(
            organizer_user_id,
            title="Design review",
            mode=mode,
            slots=slot_times(slot_count),
            invitees=[
                {"email": f"invitee{i + 1}@example.com", "name": f"Invitee {i + 1}"}
                for i in range(invitee_count)
            ],
            **policy,
        )
        if send:
            service.send(thread)
        return thread

    return _make


@pytest.fixture
def current_user():
    """Mutable organizer identity used by the auth override."""
    return {"id": ORGANIZER_ID}


@pytest.fixture
def client(db, current_user):
    """FastAPI test client that routes all DB deps to the test session."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_user():
        return current_user["id"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_user

    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
