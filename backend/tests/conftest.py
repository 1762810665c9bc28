"""Pytest fixtures for the reconciliation backend.

Provides reusable test fixtures for:
- Database session on a fresh in-memory SQLite schema per test
- Provider/storefront order factories
- FastAPI test client bound to the test session

Usage:
    def test_link(client, make_provider_order, make_storefront_order):
        po = make_provider_order(total_amount="49.99")
        ...
"""

import sys
import os
from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from pathlib import Path

# Set environment variables BEFORE any imports to ensure they take effect
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from config import Settings
from models.base import Base
from models.provider_order import ProviderOrder, ProviderOrderItem
from models.storefront_order import StorefrontOrder
from models.order_link import OrderLink  # noqa: F401  (registers the table)

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

if TEST_DATABASE_URL.startswith("sqlite"):
    # One shared in-memory connection, usable from the TestClient worker thread
    test_engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    test_engine = create_engine(TEST_DATABASE_URL)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Import the actual get_db from database to use for dependency override
from database import get_db as database_get_db

BASE_TIME = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def settings() -> Settings:
    """Default matching policy, independent of the process environment."""
    return Settings(DATABASE_URL=TEST_DATABASE_URL)


@pytest.fixture
def make_provider_order(db_session: Session):
    """Factory creating committed provider orders with sequential ids."""
    ids = count(1001)

    def factory(
        total_amount="49.99",
        recipient_name="Jane Doe",
        created_at=BASE_TIME,
        currency="USD",
        external_id=None,
        items=None,
        id=None,
    ) -> ProviderOrder:
        order_id = id if id is not None else next(ids)
        order = ProviderOrder(
            id=order_id,
            external_id=external_id if external_id is not None else f"PF-{order_id}",
            recipient_name=recipient_name,
            total_amount=Decimal(str(total_amount)),
            currency=currency,
            status="fulfilled",
            created_at=created_at,
        )
        for name in items or []:
            order.items.append(ProviderOrderItem(name=name, quantity=1, price=Decimal("10.00")))
        db_session.add(order)
        db_session.commit()
        return order

    return factory


@pytest.fixture
def make_storefront_order(db_session: Session):
    """Factory creating committed storefront orders with sequential ids."""
    ids = count(5001)

    def factory(
        total_amount="49.99",
        customer_name="Jane Doe",
        created_at=BASE_TIME,
        currency="USD",
        order_number=None,
        id=None,
    ) -> StorefrontOrder:
        order_id = id if id is not None else next(ids)
        order = StorefrontOrder(
            id=order_id,
            order_number=order_number if order_number is not None else f"#{order_id}",
            customer_name=customer_name,
            customer_email=None,
            total_amount=Decimal(str(total_amount)),
            currency=currency,
            created_at=created_at,
            payment_status="paid",
            fulfillment_status="unfulfilled",
        )
        db_session.add(order)
        db_session.commit()
        return order

    return factory


@pytest.fixture(scope="function")
def client(db_session: Session):
    """FastAPI TestClient whose requests use the test session."""
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[database_get_db] = override_get_db

    yield TestClient(app)

    app.dependency_overrides.clear()
