import pytest
from sqlalchemy import func, select

from vault.models import MetalType, Order, OrderType, Subscription, SubscriptionStatus, WeightUnit
from vault.schemas.events import SubscriptionPayload
from vault.services.subscription_sync import (
    DEFAULT_PLAN_NAME,
    apply_subscription_snapshot,
    build_config_from_order,
    map_stripe_subscription_status,
    sync_subscription_from_order,
)


def test_status_map_falls_back_to_pending_payment():
    assert map_stripe_subscription_status("past_due") == SubscriptionStatus.PAST_DUE
    assert map_stripe_subscription_status("incomplete_expired") == SubscriptionStatus.INCOMPLETE_EXPIRED
    assert map_stripe_subscription_status("paused") == SubscriptionStatus.PENDING_PAYMENT
    assert map_stripe_subscription_status(None) == SubscriptionStatus.PENDING_PAYMENT


def test_config_prefers_snapshot_then_metadata_then_defaults():
    order = Order(
        amount=0,
        amount_in_minor=0,
        product_name=None,
        subscription_config={"metal": "silver"},
        meta_data={"targetWeight": "5", "targetUnit": "oz", "monthlyInvestment": "250", "planName": "Silver stack"},
    )

    config = build_config_from_order(order)

    assert config.metal == MetalType.SILVER
    assert config.plan_name == "Silver stack"
    assert config.target_weight == 5
    assert config.target_unit == WeightUnit.OUNCE
    assert config.monthly_investment == 250
    assert config.quantity == 1


def test_config_defaults_for_bare_order():
    config = build_config_from_order(Order(amount=40, amount_in_minor=4000))

    assert config.plan_name == DEFAULT_PLAN_NAME
    assert config.metal == MetalType.GOLD
    assert config.target_weight == 1
    assert config.monthly_investment == 40
    assert config.target_price == 0


async def test_one_time_orders_are_ignored(db, make_order):
    order = await make_order(order_type=OrderType.ONE_TIME, stripe_customer_id="cus_1")

    assert await sync_subscription_from_order(db, order, status=SubscriptionStatus.ACTIVE) is None


async def test_orders_without_customer_are_ignored(db, make_order):
    order = await make_order()

    assert await sync_subscription_from_order(db, order, status=SubscriptionStatus.ACTIVE) is None


async def test_fingerprint_match_reuses_unlinked_subscription(db, make_order, make_subscription):
    existing = await make_subscription(stripe_subscription_id=None, status=SubscriptionStatus.PENDING_PAYMENT)
    order = await make_order(stripe_customer_id="cus_1", stripe_subscription_id="sub_new")

    subscription = await sync_subscription_from_order(db, order, status=SubscriptionStatus.ACTIVE)

    assert subscription.id == existing.id
    assert subscription.stripe_subscription_id == "sub_new"
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert (await db.execute(select(func.count(Subscription.id)))).scalar_one() == 1


async def test_pending_payment_never_downgrades(db, make_order, make_subscription):
    await make_subscription(status=SubscriptionStatus.ACTIVE)
    order = await make_order(stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

    subscription = await sync_subscription_from_order(db, order, status=SubscriptionStatus.PENDING_PAYMENT)

    assert subscription.status == SubscriptionStatus.ACTIVE


async def test_value_accumulates_without_price_but_weight_does_not(db, make_order, make_subscription):
    await make_subscription(accumulated_value=100.0, accumulated_weight=2.0)
    order = await make_order(stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

    subscription = await sync_subscription_from_order(db, order, accumulated_value_delta=100.0)

    assert subscription.accumulated_value == pytest.approx(200.0)
    assert subscription.accumulated_weight == pytest.approx(2.0)


async def test_weight_is_accumulated_in_target_unit(db, make_order, make_subscription, gold_price):
    await make_subscription(target_unit=WeightUnit.OUNCE, target_weight=1.0)
    order = await make_order(stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

    subscription = await sync_subscription_from_order(db, order, accumulated_value_delta=155.517384)

    # 50 USD/g -> 1555.17384 USD/oz
    assert subscription.accumulated_weight == pytest.approx(0.1)


async def test_negative_deltas_are_ignored(db, make_order, make_subscription):
    await make_subscription(accumulated_value=50.0, accumulated_weight=1.0)
    order = await make_order(stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

    subscription = await sync_subscription_from_order(
        db, order, accumulated_value_delta=-10.0, accumulated_weight_delta=-1.0
    )

    assert subscription.accumulated_value == pytest.approx(50.0)
    assert subscription.accumulated_weight == pytest.approx(1.0)


async def test_snapshot_copies_remote_state(db, make_subscription):
    await make_subscription(status=SubscriptionStatus.ACTIVE, quantity=1, monthly_investment=100.0)
    snapshot = SubscriptionPayload.model_validate({
        "id": "sub_1",
        "status": "past_due",
        "customer": {"id": "cus_2", "object": "customer"},
        "items": {"data": [{"id": "si_1", "quantity": 2, "current_period_end": 1767225600,
                            "price": {"id": "price_2", "unit_amount": 25000}}]},
    })

    subscription = await apply_subscription_snapshot(db, snapshot)

    assert subscription.status == SubscriptionStatus.PAST_DUE
    assert subscription.stripe_customer_id == "cus_2"
    assert subscription.quantity == 2
    assert subscription.monthly_investment == pytest.approx(250.0)
    assert subscription.current_period_end is not None


async def test_snapshot_without_local_records_returns_none(db):
    snapshot = SubscriptionPayload.model_validate({"id": "sub_missing", "status": "active"})

    assert await apply_subscription_snapshot(db, snapshot) is None
