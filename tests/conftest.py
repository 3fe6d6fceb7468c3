"""
Test Suite Configuration
"""
from decimal import Decimal
from typing import AsyncGenerator, Dict, List

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.config.settings import AnalyticsSettings
from billing_analytics.database.models import Base, Bill, BillItem, Product
from billing_analytics.ingestion import InMemoryChangeFeed


@pytest.fixture
def analytics_config() -> AnalyticsSettings:
    return AnalyticsSettings(low_stock_threshold=20, top_products_limit=5, sales_window_days=7)


@pytest.fixture
def sample_bills() -> List[Dict]:
    """Bills as stored by the billing application"""
    return [
        {
            "id": "b1",
            "date": "2024-03-01",
            "items": [
                {"productId": "p1", "productName": "Rice 5kg", "price": 12.50, "quantity": 2, "subtotal": 25.00},
                {"productId": "p2", "productName": "Soap", "price": 1.25, "quantity": 4, "subtotal": 5.00},
            ],
            "total": 30.00,
        },
        {
            "id": "b2",
            "date": "2024-03-01",
            "items": [
                {"productId": "p2", "productName": "Soap", "price": 1.25, "quantity": 1, "subtotal": 1.25},
            ],
            "total": 1.25,
        },
        {
            "id": "b3",
            "date": "2024-03-02",
            "items": [
                {"productId": "p3", "productName": "Oil 1L", "price": 4.00, "quantity": 3, "subtotal": 12.00},
                {"productId": "p1", "productName": "Rice 5kg", "price": 12.50, "quantity": 1, "subtotal": 12.50},
            ],
            "total": 24.50,
        },
    ]


@pytest.fixture
def sample_products() -> List[Dict]:
    """Catalog covering the critical, warning and in-stock partitions"""
    return [
        {"id": "p1", "name": "Rice 5kg", "category": "grocery", "price": 12.50, "quantity": 0},
        {"id": "p2", "name": "Soap", "category": "personal care", "price": 1.25, "quantity": 20},
        {"id": "p3", "name": "Oil 1L", "category": "grocery", "price": 4.00, "quantity": 21},
        {"id": "p4", "name": "Tea", "category": "grocery", "price": None, "quantity": 5},
    ]


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def engine(feed, analytics_config):
    """Subscribed aggregation engine over the in-memory feed"""
    engine = AggregationEngine(
        feed,
        config=analytics_config,
        transactions_collection="bills",
        catalog_collection="products",
    )
    engine.subscribe()
    yield engine
    engine.unsubscribe()


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def seeded_session_factory(session_factory, sample_bills, sample_products):
    """Billing store tables filled with the sample bills and products"""
    async with session_factory() as session:
        for doc in sample_products:
            session.add(Product(
                id=doc["id"],
                name=doc["name"],
                category=doc["category"],
                price=None if doc["price"] is None else Decimal(str(doc["price"])),
                quantity=doc["quantity"],
            ))
        for doc in sample_bills:
            session.add(Bill(
                id=doc["id"],
                date_key=doc["date"],
                total=Decimal(str(doc["total"])),
                items=[
                    BillItem(
                        product_id=item["productId"],
                        product_name=item["productName"],
                        unit_price=Decimal(str(item["price"])),
                        quantity=item["quantity"],
                        line_revenue=Decimal(str(item["subtotal"])),
                    )
                    for item in doc["items"]
                ],
            ))
        await session.commit()

    return session_factory
