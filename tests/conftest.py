"""Shared fixtures: an in-memory SQLite database per test."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from forpris.compliance.models import PriceObservation  # noqa: E402
from forpris.compliance.rules import norwegian_rule_set  # noqa: E402
from forpris.db.models import Base  # noqa: E402
from forpris.ingest.shopify import ShopifyAPIError, VariantPrice  # noqa: E402
from forpris.worker.tasks import ScanRunner  # noqa: E402

SHOP = "test-shop.myshopify.com"
NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def observation(day: int, price, compare_at=None, product_id="1", variant_id="11", base=NOW, **kwargs):
    """Observation ``day`` days relative to ``base`` (negative = in the past)."""
    return PriceObservation(
        shop=SHOP,
        product_id=product_id,
        variant_id=variant_id,
        price=Decimal(str(price)),
        compare_at_price=Decimal(str(compare_at)) if compare_at is not None else None,
        timestamp=base + timedelta(days=day),
        **kwargs,
    )


def daily(first_day: int, last_day: int, price, compare_at=None, **kwargs):
    """One observation per day from ``first_day`` to ``last_day`` inclusive."""
    return [observation(day, price, compare_at, **kwargs) for day in range(first_day, last_day + 1)]


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def norwegian_rules():
    return norwegian_rule_set()


class FakeShopifyClient:
    """Stands in for ShopifyAdminClient, returning canned prices."""

    def __init__(self, shop, variants=None, error=None):
        self.shop = shop
        self.variants = variants or []
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def fetch_variant_prices(self):
        if self.error:
            raise self.error
        return list(self.variants)

    async def fetch_variant(self, product_id, variant_id):
        if self.error:
            raise self.error
        for variant in self.variants:
            if variant.product_id == product_id and variant.variant_id == variant_id:
                return variant
        raise ShopifyAPIError(f"Product or variant not found: {product_id}/{variant_id}")


def variant_price(product_id, variant_id, price, compare_at=None):
    return VariantPrice(
        shop=SHOP,
        product_id=product_id,
        variant_id=variant_id,
        price=Decimal(str(price)),
        compare_at_price=Decimal(str(compare_at)) if compare_at is not None else None,
    )


def runner_for(session_factory, variants=None, error=None):
    return ScanRunner(
        session_factory=session_factory,
        client_factory=lambda shop: FakeShopifyClient(shop, variants, error),
        max_concurrency=1,
    )
