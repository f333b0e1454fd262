"""
Shared fixtures: an in-memory SQLite database per test and a TestClient
bound to it.
"""

import os
from datetime import date
from decimal import Decimal

# before staycal.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from staycal.database import Base, get_db
from staycal.models import Booking, CalendarBlock, Listing
from staycal.utils.metrics import REGISTRY


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def listing(db):
    listing = Listing(
        id="listing-1",
        title="Harbour Loft",
        timezone="Europe/London",
        base_price=Decimal("100.00"),
        currency="GBP",
    )
    db.add(listing)
    db.commit()
    return listing


@pytest.fixture
def confirmed_booking(db, listing):
    booking = Booking(
        id="booking-1",
        listing_id=listing.id,
        guest_full_name="Ada Lovelace",
        check_in=date(2024, 3, 1),
        check_out=date(2024, 3, 4),
        status="confirmed",
        channel="direct",
        price_total=Decimal("300.00"),
        currency="GBP",
    )
    db.add(booking)
    db.commit()
    return booking


@pytest.fixture
def manual_block(db, listing):
    block = CalendarBlock(
        id="block-1",
        listing_id=listing.id,
        start_date=date(2024, 3, 10),
        end_date=date(2024, 3, 11),
        source="manual",
        label="Painting",
        notes="Decorators in",
    )
    db.add(block)
    db.commit()
    return block


@pytest.fixture(autouse=True)
def reset_metrics():
    for metric in REGISTRY:
        metric.reset()
    yield


@pytest.fixture
def client(db):
    from staycal.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.feed_client = None
