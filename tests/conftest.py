"""
Shared fixtures: an in-memory SQLite database per test, a fake Stripe
service and small factories for the records most tests start from.
"""
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from vault.models import (
    Base,
    MetalPrice,
    MetalType,
    Order,
    OrderType,
    Subscription,
    SubscriptionStatus,
    User,
    WeightUnit,
)
from vault.utils.utils import utcnow

from tests.fakes import FakeStripeService, RecordingNotifier

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def stripe_service():
    return FakeStripeService()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def user(db):
    user = User(id=uuid.uuid4(), email=f"saver-{uuid.uuid4().hex[:8]}@example.com", first_name="Ada")
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def gold_price(db):
    price = MetalPrice(metal_symbol="gold", price=50.0, last_updated=utcnow())
    db.add(price)
    await db.commit()
    return price


@pytest_asyncio.fixture
async def make_order(db, user):
    async def factory(**overrides):
        values = dict(
            user_id=user.id,
            order_type=OrderType.SUBSCRIPTION,
            amount=100.0,
            amount_in_minor=10000,
            currency="usd",
            product_name="Gold 10g Plan",
            stripe_session_id="cs_test_1",
            subscription_config={
                "plan_name": "Gold 10g Plan",
                "metal": "gold",
                "target_weight": 10,
                "target_unit": "g",
                "monthly_investment": 100,
                "quantity": 1,
            },
            meta_data={},
        )
        values.update(overrides)
        order = Order(**values)
        db.add(order)
        await db.commit()
        await db.refresh(order)
        return order
    return factory


@pytest_asyncio.fixture
async def make_subscription(db, user):
    async def factory(**overrides):
        values = dict(
            user_id=user.id,
            metal=MetalType.GOLD,
            plan_name="Gold 10g Plan",
            target_weight=10.0,
            target_unit=WeightUnit.GRAM,
            monthly_investment=100.0,
            quantity=1,
            target_price=0.0,
            accumulated_value=0.0,
            accumulated_weight=0.0,
            status=SubscriptionStatus.ACTIVE,
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
        )
        values.update(overrides)
        subscription = Subscription(**values)
        db.add(subscription)
        await db.commit()
        await db.refresh(subscription)
        return subscription
    return factory


def hours_ago(hours: float):
    return utcnow() - timedelta(hours=hours)
