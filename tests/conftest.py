from datetime import date, datetime, timedelta
from types import SimpleNamespace
from typing import AsyncGenerator, Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from libs.auth.dependencies import create_token
from libs.auth.models import AuthUser
from libs.common import rate_limit
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.config import build_engine

# Import all models so metadata includes every table
from libs.db import job_lock as _job_lock  # noqa: F401
from services.delivery_service import models as _delivery_models  # noqa: F401
from services.payments_service import models as _payments_models  # noqa: F401
from services.payments_service.gateway import (
    FakePaymentGateway,
    reset_gateway,
    set_gateway,
)
from services.store_service import models as _store_models  # noqa: F401
from services.wallet_service import models as _wallet_models  # noqa: F401
from tests.factories import (
    BuyerProfileFactory,
    CartFactory,
    CartItemFactory,
    MarketConfigFactory,
    ProductFactory,
)


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite database file per test.

    A file (not ``:memory:``) so that several sessions can run concurrently
    against the same data, which is what the race tests need.
    """
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_gateway() -> FakePaymentGateway:
    """Every test talks to its own in-memory payment gateway."""
    gateway = FakePaymentGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    """Start each test with empty rate-limit windows."""
    rate_limit.get_rule_storage.cache_clear()
    rate_limit.get_rule_limiter.cache_clear()
    yield


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient for the gateway app, sharing the test's session.
    """
    from libs.db.session import get_async_db
    from services.gateway_service.app.main import app

    async def _override_db():
        yield db_session

    app.dependency_overrides[get_async_db] = _override_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def make_user(user_id: str = "buyer-1", role: str = "consumer") -> AuthUser:
    return AuthUser(sub=user_id, role=role)


def bearer(user_id: str, role: str = "consumer") -> dict:
    """Authorization header carrying a real signed token."""
    return {"Authorization": f"Bearer {create_token(user_id, role)}"}


# ---------------------------------------------------------------------------
# Marketplace seeding
# ---------------------------------------------------------------------------


def upcoming_delivery_date(days: int = 3) -> date:
    return (utc_now() + timedelta(days=days)).date()


async def seed_marketplace(
    db: AsyncSession,
    *,
    buyer_id: str = "buyer-1",
    items: Iterable[tuple[int, int, int]] = ((1000, 50, 5),),
    minimum_order_cents: int = 2500,
    delivery_fee_cents: int = 750,
    credits_cents: int = 0,
    zip_code: str = "10001",
    now: Optional[datetime] = None,
) -> SimpleNamespace:
    """Market, buyer profile, products and a filled cart.

    ``items`` is ``(unit_price_cents, available_quantity, quantity_in_cart)``
    per product; each product gets its own seller.
    """
    from services.wallet_service.models import CreditTransactionType
    from services.wallet_service.services import credits

    items = list(items)
    market = MarketConfigFactory.create(
        zip_code=zip_code,
        minimum_order_cents=minimum_order_cents,
        delivery_fee_cents=delivery_fee_cents,
    )
    profile = BuyerProfileFactory.create(user_id=buyer_id, zip_code=zip_code)
    cart = CartFactory.create(buyer_id=buyer_id)
    db.add_all([market, profile, cart])

    products = []
    for price, available, _ in items:
        product = ProductFactory.create(
            unit_price_cents=price, available_quantity=available
        )
        products.append(product)
        db.add(product)
    await db.flush()

    for product, (_, _, in_cart) in zip(products, items):
        db.add(CartItemFactory.create(cart_id=cart.id, product=product, quantity=in_cart))
    await db.commit()

    if credits_cents:
        await credits.award(
            db,
            consumer_id=buyer_id,
            amount_cents=credits_cents,
            transaction_type=CreditTransactionType.BONUS,
            description="Welcome credits",
            now=now,
        )

    return SimpleNamespace(
        buyer_id=buyer_id,
        cart_id=cart.id,
        market=market,
        product_ids=[p.id for p in products],
        seller_ids=[p.seller_id for p in products],
    )


async def reload(session_factory: async_sessionmaker, model, ident):
    """Read a row through a fresh session, bypassing any cached state."""
    async with session_factory() as session:
        return await session.get(model, ident)
