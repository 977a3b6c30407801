"""
Pytest Configuration and Shared Fixtures

Provides a seeded SQLite store, a memory cache with a controllable
clock, and deterministic trend/date collaborators.

Seed data (today is 2024-03-15):

    Shops:     1 Colombo Central, 2 Kandy Branch, 3 Galle Outlet (inactive, empty)
    Stock:     shop 1: 10 x Phone @300, 100 x Rice @1.5
               shop 2: 5 x Phone @320, 0 x Rice, 0 x Kite
    Invoices:  shop 1: 100 pending (Mar 2), 200 overdue (Mar 10), 400 pending (Jan 20)
               shop 2: 1000 paid (Mar 5), 75 paid (Nov 15 2023)
    Transfers: 1 -> 2 pending (Mar 12, 2 items), 2 -> 1 in transit (Mar 1, 1 item),
               1 -> 2 completed (Jan 5, 1 item)
"""

import asyncio

import pytest
from datetime import date, datetime
from typing import Optional

from stockpulse.cache.config import CacheConfig
from stockpulse.cache.memory_cache import MemoryCache
from stockpulse.dashboard.fetchers import SLICE_NAMES
from stockpulse.dashboard.results import AggregateResult
from stockpulse.dashboard.trends import Trend, TrendEstimator
from stockpulse.database.models import (
    Base,
    Category,
    InventoryItem,
    InventoryTransfer,
    Invoice,
    InvoiceStatus,
    Product,
    Shop,
    TransferItem,
    TransferStatus,
)
from stockpulse.database.session import create_db_engine, create_session_factory


FIXED_TODAY = date(2024, 3, 15)


def fixed_today() -> date:
    return FIXED_TODAY


# ============================================================================
# Test Doubles
# ============================================================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedTrendEstimator(TrendEstimator):
    """Always reports the same trend."""

    def __init__(self, label: str = "+1.0%", up: bool = True):
        self.trend = Trend(label, up)

    def estimate(self, current, previous: Optional[float] = None, percentage=True) -> Trend:
        return self.trend


SUMMARY = [
    {"title": "Total Inventory Value", "value": "Rs. 10", "icon": "Package",
     "trend": "+0.0%", "trend_up": True, "raw_value": 10},
    {"title": "Total Retail Value", "value": "Rs. 0", "icon": "DollarSign",
     "trend": "+0.0%", "trend_up": True, "raw_value": 0},
]

RETAIL = {"formatted_value": "Rs. 7,700", "raw_value": 7700, "trend": "+2.0%", "trend_up": True}

SLICE_DATA = {
    "summary": SUMMARY,
    "total_retail_value": RETAIL,
    "shop_performance": [{"name": "Colombo Central", "sales": 300.0, "stock": 110}],
    "inventory_distribution": [{"name": "Groceries", "value": 100}],
    "sales": [{"month": "Mar 2024", "sales": 1300.0}],
    "transfers": [{"id": "TR-001", "source": "A", "destination": "B",
                   "status": "Pending", "date": "2024-03-12", "items": 2}],
}


class StubFetchers:
    """Records calls and returns canned slice data."""

    def __init__(self, delay: float = 0.0, failing=(), raising=(), hanging=(), failing_shops=()):
        self.delay = delay
        self.failing = set(failing)
        self.raising = set(raising)
        self.hanging = set(hanging)
        self.failing_shops = set(failing_shops)
        self.calls = []

    def _make(self, name):
        async def fetch(filters):
            self.calls.append((name, filters))
            if name in self.hanging:
                await asyncio.sleep(60)
            if self.delay:
                await asyncio.sleep(self.delay)
            if name in self.raising or filters.shop_id in self.failing_shops:
                raise RuntimeError(f"{name} exploded")
            if name in self.failing:
                return AggregateResult.failed(f"{name} query failed", data=[])
            return AggregateResult.ok(SLICE_DATA[name])
        return fetch

    def as_slices(self):
        return {name: self._make(name) for name in SLICE_NAMES}


# ============================================================================
# Configuration & Cache
# ============================================================================

@pytest.fixture
def cache_config() -> CacheConfig:
    """Explicit config so tests never depend on the environment."""
    return CacheConfig(
        namespace="test",
        enabled=True,
        backend="memory",
        compression_enabled=True,
        compression_threshold=1024,
        circuit_breaker_enabled=True,
        circuit_breaker_threshold=3,
        circuit_breaker_timeout=30,
        warming_enabled=False,
        warming_interval_seconds=600,
        warming_concurrency=5,
        warming_periods=["7d", "30d"],
        warm_shop_ids=[],
        fetch_timeout_seconds=2.0,
        trend_mode="period",
        low_stock_threshold=10,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(cache_config, clock) -> MemoryCache:
    return MemoryCache(cache_config, clock=clock)


@pytest.fixture
def trend_estimator() -> FixedTrendEstimator:
    return FixedTrendEstimator()


# ============================================================================
# Database
# ============================================================================

def seed_store(db):
    shops = [
        Shop(id=1, name="Colombo Central", location="Colombo", is_active=True),
        Shop(id=2, name="Kandy Branch", location="Kandy", is_active=True),
        Shop(id=3, name="Galle Outlet", location="Galle", is_active=False),
    ]
    categories = [
        Category(id=1, name="Electronics"),
        Category(id=2, name="Groceries"),
        Category(id=3, name="Toys"),
    ]
    products = [
        Product(id=1, name="Phone", price=500.0, category_id=1),
        Product(id=2, name="Rice", price=2.0, category_id=2),
        Product(id=3, name="Kite", price=20.0, category_id=3),
    ]
    inventory = [
        InventoryItem(product_id=1, shop_id=1, quantity=10, shop_specific_cost=300.0),
        InventoryItem(product_id=2, shop_id=1, quantity=100, shop_specific_cost=1.5),
        InventoryItem(product_id=1, shop_id=2, quantity=5, shop_specific_cost=320.0),
        InventoryItem(product_id=2, shop_id=2, quantity=0, shop_specific_cost=1.5),
        InventoryItem(product_id=3, shop_id=2, quantity=0, shop_specific_cost=None),
    ]
    invoices = [
        Invoice(invoice_number="INV-1", shop_id=1, total=100.0, total_profit=20.0,
                status=InvoiceStatus.PENDING, created_at=datetime(2024, 3, 2, 9, 0)),
        Invoice(invoice_number="INV-2", shop_id=1, total=200.0, total_profit=50.0,
                status=InvoiceStatus.OVERDUE, created_at=datetime(2024, 3, 10, 18, 30)),
        Invoice(invoice_number="INV-3", shop_id=1, total=400.0, total_profit=80.0,
                status=InvoiceStatus.PENDING, created_at=datetime(2024, 1, 20, 12, 0)),
        Invoice(invoice_number="INV-4", shop_id=2, total=1000.0, total_profit=300.0,
                status=InvoiceStatus.PAID, created_at=datetime(2024, 3, 5, 11, 0)),
        Invoice(invoice_number="INV-5", shop_id=2, total=75.0, total_profit=15.0,
                status=InvoiceStatus.PAID, created_at=datetime(2023, 11, 15, 10, 0)),
    ]
    transfers = [
        InventoryTransfer(id=1, from_shop_id=1, to_shop_id=2, status=TransferStatus.PENDING,
                          created_at=datetime(2024, 3, 12, 8, 0)),
        InventoryTransfer(id=2, from_shop_id=2, to_shop_id=1, status=TransferStatus.IN_TRANSIT,
                          created_at=datetime(2024, 3, 1, 8, 0)),
        InventoryTransfer(id=3, from_shop_id=1, to_shop_id=2, status=TransferStatus.COMPLETED,
                          created_at=datetime(2024, 1, 5, 8, 0)),
    ]
    transfer_items = [
        TransferItem(transfer_id=1, product_id=1, quantity=2),
        TransferItem(transfer_id=1, product_id=2, quantity=20),
        TransferItem(transfer_id=2, product_id=1, quantity=1),
        TransferItem(transfer_id=3, product_id=2, quantity=10),
    ]

    db.add_all(shops + categories)
    db.flush()
    db.add_all(products)
    db.flush()
    db.add_all(inventory + invoices + transfers)
    db.flush()
    db.add_all(transfer_items)
    db.commit()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads share the same data."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'stockpulse_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = create_session_factory(engine)
    db = factory()
    try:
        seed_store(db)
    finally:
        db.close()
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
