"""
Test configuration and fixtures.
"""
import pytest
from datetime import date
from decimal import Decimal
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from dropship_payouts.database.models import Base
from dropship_payouts.api import app
from dropship_payouts.database.config import get_db
from dropship_payouts.data_import.db_operations import insert_orders

# In-memory database shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def test_db_engine():
    """Create a fresh test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = sessionmaker(bind=test_db_engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session) -> Generator[TestClient, None, None]:
    """Create a test client with a test database session."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _order_line(**overrides) -> dict:
    order = {
        "order_id": "ORD-001",
        "dropshipper_email": "seller@example.com",
        "order_date": date(2025, 7, 2),
        "waybill": "WB-001",
        "product_name": "Steel Bottle",
        "sku": "SKU-BOTTLE",
        "qty": 1,
        "product_value": Decimal("500"),
        "mode": "COD",
        "status": "Delivered",
        "delivered_date": date(2025, 7, 5),
        "shipping_provider": "Delhivery",
    }
    order.update(overrides)
    return order


@pytest.fixture
def add_orders(db_session):
    """Insert order lines through the ingestion path."""
    def _add(*orders, upload_session_id="upload-1"):
        return insert_orders(db_session, list(orders), upload_session_id)
    return _add


@pytest.fixture
def make_order():
    """Factory for parsed order lines; fields can be overridden per test."""
    return _order_line
