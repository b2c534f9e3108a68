"""
Shared test fixtures for the signal trader backend tests.

Provides reusable fixtures for:
- Async database sessions (in-memory SQLite)
- Settings with test-friendly timings
- Fake sleep / clock so backoff and pacing run instantly
- Paper exchange client and a fully wired engine context
- Sample order factory
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from signal_trader.config import Settings
from signal_trader.trading_engine.types import (
    ExecutionMode,
    Order,
    OrderSide,
    OrderStatus,
)

# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine for testing."""
    from signal_trader.database import Base
    import signal_trader.models  # noqa: F401 - registers OrderRecord

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine):
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def order_store(session_maker):
    from signal_trader.services.order_store import OrderStore

    return OrderStore(session_maker, max_orders=100)


# ---------------------------------------------------------------------------
# Settings / timing
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        paper_trading=True,
        queue_pacing_seconds=0.1,
        reconnect_base_delay_seconds=1.0,
        max_reconnect_attempts=5,
        connection_test_attempts=3,
        connection_test_delay_seconds=2.0,
        paper_initial_prices={"BTCUSDT": 100.0, "ETHUSDT": 50.0},
        auto_start_monitoring=False,
    )


class FakeSleep:
    """Records requested delays and yields to the loop instead of sleeping."""

    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Exchange clients
# ---------------------------------------------------------------------------


@pytest.fixture
async def paper_exchange():
    """Connected paper exchange with BTCUSDT at 100 and ETHUSDT at 50."""
    from signal_trader.exchange_clients.paper_trading_client import PaperTradingClient

    client = PaperTradingClient(initial_prices={"BTCUSDT": 100.0, "ETHUSDT": 50.0})
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
def mock_exchange_client():
    """Create a mock exchange client for testing without hitting real APIs."""
    client = MagicMock()
    client.is_connected = True
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.test_connection = AsyncMock(return_value=True)
    client.get_price = AsyncMock(return_value=100.0)
    client.get_symbol_status = AsyncMock(return_value="TRADING")
    client.place_order = AsyncMock(return_value={
        "orderId": 12345,
        "price": "100.00000000",
        "executedQty": "0.00100000",
        "status": "FILLED",
    })
    client.unsubscribe_price_stream = AsyncMock()
    client.order_updates = MagicMock(return_value=None)
    return client


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine(test_settings, session_maker, paper_exchange, fake_sleep, fake_clock):
    """Fully wired engine context on the paper exchange (monitoring not started)."""
    from signal_trader.context import build_engine_context
    from signal_trader.trading_engine.scheduler import Scheduler

    context = build_engine_context(
        test_settings,
        session_maker,
        exchange=paper_exchange,
        scheduler=Scheduler(clock=fake_clock),
        sleep=fake_sleep,
    )
    yield context

    await context.monitoring.stop()
    await context.events.drain()


@pytest.fixture
def recorded_events(engine):
    """(event, payload) pairs emitted on the engine event bus."""
    events = []
    engine.events.subscribe_all(lambda event, payload: events.append((event, payload)))
    return events


# ---------------------------------------------------------------------------
# Sample data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_order():
    """Build an Order with sensible defaults for BTCUSDT at 100."""
    counter = {"n": 0}

    def _make_order(**overrides):
        counter["n"] += 1
        values = {
            "id": f"order-{counter['n']}",
            "symbol": "BTCUSDT",
            "side": OrderSide.BUY,
            "quantity": 0.001,
            "type": "MARKET",
            "status": OrderStatus.PENDING,
            "execution_mode": ExecutionMode.IMMEDIATE,
        }
        values.update(overrides)
        return Order(**values)

    return _make_order


@pytest.fixture
def signal_payload():
    """Webhook payload that validates as BUY with default thresholds."""
    def _payload(**overrides):
        payload = {
            "symbol": "BTCUSDT",
            "plusDI": 30,
            "minusDI": 10,
            "adx": 25,
            "timeframe": "5m",
        }
        payload.update(overrides)
        return payload

    return _payload
