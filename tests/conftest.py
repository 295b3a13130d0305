import os

os.environ["ENV"] = "test"
os.environ.setdefault("LINDY_WEBHOOK_URL", "https://lindy.test/webhook")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from suggestion_relay.core.clock import FakeClock
from suggestion_relay.core.database import Base
import suggestion_relay.models  # noqa: F401
from suggestion_relay.models.business import Business
from suggestion_relay import deps
from suggestion_relay.services import lindy_callback, lindy_trigger
from suggestion_relay.services.change_feed import ResponseChangeFeed

LINDY_TEST_URL = "https://lindy.test/webhook"


@pytest.fixture(autouse=True)
def lindy_defaults(monkeypatch):
    monkeypatch.setattr(lindy_trigger, "LINDY_WEBHOOK_URL", LINDY_TEST_URL)
    monkeypatch.setattr(lindy_trigger, "LINDY_SUPPRESS_OUTBOUND", False)
    monkeypatch.setattr(lindy_trigger, "LINDY_GUARD_CONCURRENT_TRIGGERS", False)
    monkeypatch.setattr(lindy_callback, "LINDY_WEBHOOK_SECRET", "")
    monkeypatch.setattr(lindy_callback, "LINDY_SIGNATURE_POLICY", "lenient")
    monkeypatch.setattr(lindy_callback, "LINDY_IDEMPOTENCY_STRATEGY", "timestamp")
    monkeypatch.setattr(lindy_callback, "LINDY_GUARD_CONCURRENT_TRIGGERS", False)
    monkeypatch.setattr(deps, "ADMIN_API_TOKEN", "")


@pytest.fixture
def session_factory(tmp_path):
    # arquivo em vez de :memory: porque as bridges leem em outras threads
    engine = create_engine(
        f"sqlite:///{tmp_path / 'relay.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def business(db):
    row = Business(
        id="biz-1",
        organization_id="org-1",
        name="Acme Coaching",
        website_url="https://acme.example",
        website_context="Coaching for consultants",
        industry="Professional Services",
        business_type="B2B",
        linkedin_url=None,
        files_uploaded='["https://files.example/deck.pdf"]',
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed():
    return ResponseChangeFeed()
