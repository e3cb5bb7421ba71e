"""Shared test fixtures and configuration."""

import os
import pytest
from typing import Dict

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_PROVIDER", "simulator")

from voucher_shop.config import Settings
from voucher_shop.connectors import SimulatorConnector
from voucher_shop.database import (
    Base,
    PaymentRecordRepository,
    VoucherRepository,
    create_async_engine,
    get_async_session_factory,
)

SUBSCRIBER = "+256772123456"


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: simulator provider, test endpoints on."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        payment_provider="simulator",
        enable_test_endpoints=True,
    )


@pytest.fixture
def simulator() -> SimulatorConnector:
    return SimulatorConnector()


@pytest.fixture
async def stocked_vouchers(db_session) -> Dict[int, list]:
    """Two unused vouchers of each default denomination."""
    repo = VoucherRepository(db_session)
    stock = {}
    for denomination in (1000, 1500, 7000):
        codes = [f"V{denomination}-A", f"V{denomination}-B"]
        await repo.add_many(codes, denomination)
        stock[denomination] = codes
    await db_session.commit()
    return stock


@pytest.fixture
def make_payment(db_session):
    """Factory creating committed processing payment records."""
    async def _make(denomination: int = 1000, subscriber: str = SUBSCRIBER, **kwargs):
        record = await PaymentRecordRepository(db_session).create(
            subscriber_identifier=subscriber,
            denomination=denomination,
            **kwargs,
        )
        await db_session.commit()
        return record
    return _make
