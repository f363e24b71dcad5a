"""Shared fixtures for all tests.

Uses a SQLite file database recreated for every test function. Stripe and
the AI gateway are never reached: tests patch the library calls.
"""

import os
import tempfile
import time

# Configure the app before any meetlines imports
os.environ["DATABASE_URL"] = "sqlite:///./test_meetlines.db"
os.environ["STORE_ANON_KEY"] = ""
os.environ["STORE_SERVICE_ROLE_KEY"] = ""
TEST_JWT_SECRET = "test-jwt-secret"
os.environ["STORE_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_123"
os.environ["AI_GATEWAY_API_KEY"] = ""
os.environ["AI_RATE_LIMIT"] = "1000/minute"
os.environ["SITE_URL"] = "https://meetlines.test"
os.environ["BASE_URL"] = "https://api.meetlines.test"
os.environ["UPLOADS_DIR"] = tempfile.mkdtemp(prefix="meetlines-uploads-")
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from meetlines.database import Base, get_db
from meetlines.main import app
from meetlines.models import (
    AppRole, Event, EventTicketSettings, Organizer, PlatformEvent, Profile,
    TicketSale, TicketType, User, UserRole,
)
from meetlines.realtime import feed
from meetlines.services.storage import ObjectStorage

TEST_DATABASE_URL = "sqlite:///./test_meetlines.db"

engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_feed():
    """Drop realtime channels left behind by a test."""
    yield
    for channel in feed.channels():
        feed.remove_channel(channel)


@pytest.fixture
def db():
    """Provide a database session for test helpers."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """TestClient that uses the test database."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(str(tmp_path / "storage"), "https://api.meetlines.test")


def now():
    return datetime.now(timezone.utc)


# ============== Factory helpers ==============

@pytest.fixture
def create_user(db):
    """Factory: a user with a profile and optional roles."""
    counter = {"n": 0}

    def _create(email=None, display_name=None, roles=(), **profile_fields):
        counter["n"] += 1
        user = User(email=email if email is not None else f"user{counter['n']}@example.com")
        db.add(user)
        db.flush()
        for role in roles:
            db.add(UserRole(user_id=user.id, role=AppRole(role).value))
        db.add(Profile(
            user_id=user.id,
            display_name=display_name or f"User {counter['n']}",
            **profile_fields,
        ))
        db.commit()
        db.refresh(user)
        return user

    return _create


@pytest.fixture
def access_token():
    """Encode an access token the way the store's auth service does."""

    def _issue(user, ttl=3600, secret=TEST_JWT_SECRET):
        issued_at = int(time.time())
        payload = {
            "sub": user.id,
            "email": user.email,
            "aud": "authenticated",
            "role": "authenticated",
            "iat": issued_at,
            "exp": issued_at + ttl,
        }
        return jwt.encode(payload, secret, algorithm="HS256")

    return _issue


@pytest.fixture
def auth_headers(access_token):
    """Build Authorization headers carrying a valid access token."""

    def _headers(user):
        return {"Authorization": f"Bearer {access_token(user)}"}

    return _headers


@pytest.fixture
def create_organizer(db, create_user):
    def _create(user=None, **overrides):
        user = user or create_user()
        data = {"page_title": "Casa Noturna", "email": user.email}
        data.update(overrides)
        organizer = Organizer(user_id=user.id, **data)
        db.add(organizer)
        db.commit()
        db.refresh(organizer)
        return organizer

    return _create


@pytest.fixture
def create_event(db, create_organizer):
    def _create(organizer=None, **overrides):
        organizer = organizer or create_organizer()
        data = {
            "title": "Noite do Jazz",
            "event_date": now() + timedelta(days=7),
            "location": "Rua Augusta, 100 - São Paulo",
        }
        data.update(overrides)
        event = Event(organizer_id=organizer.id, **data)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _create


@pytest.fixture
def create_platform_event(db):
    def _create(**overrides):
        data = {
            "title": "Festival de Verão",
            "organizer_name": "Meetlines",
            "event_date": now() + timedelta(days=3),
            "location": "Parque Ibirapuera",
        }
        data.update(overrides)
        event = PlatformEvent(**data)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    return _create


@pytest.fixture
def create_ticket_type(db):
    def _create(event, **overrides):
        data = {"name": "Pista", "price": 50.0}
        data.update(overrides)
        ticket_type = TicketType(event_id=event.id, **data)
        db.add(ticket_type)
        db.commit()
        db.refresh(ticket_type)
        return ticket_type

    return _create


@pytest.fixture
def create_ticket_settings(db):
    def _create(event, **overrides):
        data = {
            "platform_fee_percentage": 10.0,
            "payment_processing_fee_percentage": 4.0,
            "payment_processing_fee_fixed": 0.5,
            "fee_payer": "buyer",
        }
        data.update(overrides)
        settings = EventTicketSettings(event_id=event.id, **data)
        db.add(settings)
        db.commit()
        db.refresh(settings)
        return settings

    return _create


@pytest.fixture
def create_sale(db, create_ticket_type):
    def _create(user, event, **overrides):
        ticket_type = overrides.pop("ticket_type", None) or create_ticket_type(event)
        data = {
            "quantity": 1,
            "unit_price": ticket_type.price,
            "subtotal": ticket_type.price,
            "total_amount": ticket_type.price,
            "buyer_name": "Buyer",
            "buyer_email": user.email,
            "payment_status": "pending",
            "stripe_checkout_session_id": "cs_test_123",
        }
        data.update(overrides)
        sale = TicketSale(user_id=user.id, event_id=event.id, ticket_type_id=ticket_type.id, **data)
        db.add(sale)
        db.commit()
        db.refresh(sale)
        return sale

    return _create
