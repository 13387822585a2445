import pytest
from sqlalchemy import func, select

from vault.models import Order, OrderStatus, OrderType, PaymentStatus, Subscription, SubscriptionStatus
from vault.schemas.events import HandledEventType, ensure_exhaustive
from vault.schemas.results import EventOutcome
from vault.services import event_processor as event_processor_module
from vault.services.event_processor import EventProcessor
from vault.utils.utils import from_unix

from tests.fakes import make_event

PERIOD_END = 1735689600


@pytest.fixture
def processor(stripe_service, notifier):
    return EventProcessor(stripe_service, notifier=notifier)


def checkout_completed(order, event_id="evt_checkout", **overrides):
    session = {
        "id": order.stripe_session_id,
        "object": "checkout.session",
        "status": "complete",
        "payment_status": "paid",
        "mode": "subscription",
        "customer": "cus_1",
        "subscription": "sub_1",
        "invoice": "in_1",
        "amount_total": 10000,
        "currency": "usd",
        "metadata": {"orderId": str(order.id)},
        "customer_details": {"email": "ada@example.com", "name": "Ada Lovelace"},
    }
    session.update(overrides)
    return make_event("checkout.session.completed", session, event_id)


def invoice_event(order, invoice_id="in_1", event_id="evt_invoice", event_type="invoice.payment_succeeded", amount=10000):
    invoice = {
        "id": invoice_id,
        "object": "invoice",
        "status": "paid" if event_type == "invoice.payment_succeeded" else "open",
        "customer": "cus_1",
        "amount_paid": amount if event_type == "invoice.payment_succeeded" else 0,
        "amount_due": amount,
        "currency": "usd",
        "parent": {"subscription_details": {"subscription": "sub_1", "metadata": {"orderId": str(order.id)}}},
        "lines": {"data": [{"period": {"end": PERIOD_END}}]},
    }
    return make_event(event_type, invoice, event_id)


def subscription_snapshot(order, status="active", unit_amount=10000, quantity=1):
    return {
        "id": "sub_1",
        "object": "subscription",
        "status": status,
        "customer": "cus_1",
        "current_period_end": PERIOD_END,
        "metadata": {"orderId": str(order.id)},
        "items": {"data": [{
            "id": "si_1",
            "quantity": quantity,
            "price": {"id": "price_1", "unit_amount": unit_amount, "product": "prod_1"},
        }]},
    }


async def count(db, model):
    return (await db.execute(select(func.count(model.id)))).scalar_one()


async def test_checkout_completed_marks_order_paid_and_creates_subscription(db, processor, make_order):
    order = await make_order()

    result = await processor.process(db, checkout_completed(order))

    assert result.outcome == EventOutcome.APPLIED
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.SUCCEEDED
    assert order.stripe_customer_id == "cus_1"
    assert order.billing_email == "ada@example.com"
    assert order.latest_stripe_event_id == "evt_checkout"

    subscription = result.subscription
    assert subscription.status == SubscriptionStatus.PENDING_PAYMENT
    assert subscription.stripe_subscription_id == "sub_1"
    assert subscription.accumulated_weight == 0
    assert order.subscription_id == subscription.id


async def test_first_invoice_activates_and_accumulates(db, processor, make_order, gold_price):
    order = await make_order()
    await processor.process(db, checkout_completed(order))

    result = await processor.process(db, invoice_event(order))

    assert result.outcome == EventOutcome.APPLIED
    subscription = result.subscription
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.accumulated_value == pytest.approx(100.0)
    # 100 USD at 50 USD/g
    assert subscription.accumulated_weight == pytest.approx(2.0)
    assert subscription.current_period_end == from_unix(PERIOD_END)


async def test_redelivered_invoice_is_applied_once(db, processor, make_order, gold_price):
    order = await make_order()
    await processor.process(db, checkout_completed(order))
    first = await processor.process(db, invoice_event(order))

    second = await processor.process(db, invoice_event(order))

    assert second.outcome == EventOutcome.DUPLICATE
    subscription = await db.get(Subscription, first.subscription.id)
    await db.refresh(subscription)
    assert subscription.accumulated_value == pytest.approx(100.0)
    assert subscription.accumulated_weight == pytest.approx(2.0)


async def test_renewal_invoice_backfills_a_new_order(db, processor, make_order, gold_price):
    order = await make_order(meta_data={"orderId": "legacy", "campaign": "spring"})
    await processor.process(db, checkout_completed(order))
    await processor.process(db, invoice_event(order))

    result = await processor.process(db, invoice_event(order, invoice_id="in_2", event_id="evt_renewal"))

    assert result.outcome == EventOutcome.APPLIED
    assert await count(db, Order) == 2
    renewal = result.order
    assert renewal.id != order.id
    assert renewal.stripe_invoice_id == "in_2"
    assert renewal.status == OrderStatus.PAID
    assert renewal.meta_data["renewal"] is True
    assert renewal.meta_data["backfilledFromEvent"] == "evt_renewal"
    assert "orderId" not in renewal.meta_data
    assert renewal.meta_data["campaign"] == "spring"

    assert result.subscription.accumulated_value == pytest.approx(200.0)
    assert result.subscription.accumulated_weight == pytest.approx(4.0)

    redelivered = await processor.process(db, invoice_event(order, invoice_id="in_2", event_id="evt_renewal"))
    assert redelivered.outcome == EventOutcome.DUPLICATE
    assert await count(db, Order) == 2


async def test_subscription_event_before_checkout_does_not_regress(db, processor, make_order):
    order = await make_order()
    snapshot = {
        "id": "sub_1",
        "object": "subscription",
        "status": "active",
        "customer": "cus_1",
        "current_period_end": PERIOD_END,
        "metadata": {"orderId": str(order.id)},
        "items": {"data": [{"id": "si_1", "quantity": 1, "price": {"id": "price_1", "unit_amount": 10000, "product": "prod_1"}}]},
    }

    early = await processor.process(db, make_event("customer.subscription.created", snapshot, "evt_sub"))
    late = await processor.process(db, checkout_completed(order))

    assert early.outcome == EventOutcome.APPLIED
    assert late.outcome == EventOutcome.APPLIED
    assert await count(db, Subscription) == 1
    subscription = late.subscription
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.current_period_end == from_unix(PERIOD_END)


async def test_invoice_redelivered_after_subscription_update_is_not_counted_twice(db, processor, make_order, gold_price):
    order = await make_order()
    await processor.process(db, checkout_completed(order))
    first = await processor.process(db, invoice_event(order, event_id="evt_inv"))
    updated = await processor.process(
        db, make_event("customer.subscription.updated", subscription_snapshot(order), "evt_sub_upd")
    )
    assert updated.outcome == EventOutcome.APPLIED

    redelivered = await processor.process(db, invoice_event(order, event_id="evt_inv"))

    assert redelivered.outcome == EventOutcome.DUPLICATE
    subscription = await db.get(Subscription, first.subscription.id)
    await db.refresh(subscription)
    assert subscription.accumulated_value == pytest.approx(100.0)
    assert subscription.accumulated_weight == pytest.approx(2.0)


async def test_late_subscription_created_does_not_revive_cancelled_order(
    db, processor, make_order, make_subscription
):
    subscription = await make_subscription(accumulated_weight=3.0, accumulated_value=150.0)
    order = await make_order(
        status=OrderStatus.CANCELLED,
        payment_status=PaymentStatus.FAILED,
        stripe_subscription_id="sub_1",
        stripe_customer_id="cus_1",
        subscription_id=subscription.id,
    )
    newer = subscription_snapshot(order, status="past_due", unit_amount=15000, quantity=2)
    older = subscription_snapshot(order, status="incomplete")

    await processor.process(db, make_event("customer.subscription.updated", newer, "evt_sub_upd"))
    result = await processor.process(db, make_event("customer.subscription.created", older, "evt_sub_created"))

    assert result.outcome == EventOutcome.APPLIED
    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.latest_stripe_event_id == "evt_sub_created"
    await db.refresh(subscription)
    # last applied snapshot wins
    assert subscription.status == SubscriptionStatus.INCOMPLETE
    assert subscription.monthly_investment == 100.0
    assert subscription.quantity == 1
    assert subscription.accumulated_weight == 3.0
    assert subscription.accumulated_value == 150.0


async def test_duplicate_payment_failed_delivery(db, processor, make_order, notifier):
    order = await make_order(order_type=OrderType.ONE_TIME, stripe_payment_intent_id="pi_1", stripe_customer_id="cus_1")
    event = make_event(
        "payment_intent.payment_failed",
        {"id": "pi_1", "object": "payment_intent", "status": "requires_payment_method", "customer": "cus_1"},
        "evt_pi_failed",
    )

    first = await processor.process(db, event)
    second = await processor.process(db, event)

    assert first.outcome == EventOutcome.APPLIED
    assert second.outcome == EventOutcome.DUPLICATE
    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert notifier.alerts == []


async def test_payment_failed_does_not_downgrade_paid_order(db, processor, make_order):
    order = await make_order(
        order_type=OrderType.ONE_TIME,
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.SUCCEEDED,
        stripe_payment_intent_id="pi_1",
    )
    event = make_event("payment_intent.payment_failed", {"id": "pi_1", "customer": "cus_1"}, "evt_late_failure")

    result = await processor.process(db, event)

    assert result.outcome == EventOutcome.APPLIED
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.SUCCEEDED
    assert order.latest_stripe_event == "payment_intent.payment_failed"


async def test_late_invoice_failure_keeps_settled_cycle(db, processor, make_order, gold_price):
    order = await make_order()
    await processor.process(db, checkout_completed(order))
    paid = await processor.process(db, invoice_event(order))

    result = await processor.process(
        db, invoice_event(order, event_id="evt_invoice_failed", event_type="invoice.payment_failed")
    )

    assert result.outcome == EventOutcome.APPLIED
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    subscription = await db.get(Subscription, paid.subscription.id)
    await db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.ACTIVE


async def test_expired_session_only_closes_pending_orders(db, processor, make_order):
    pending = await make_order(stripe_session_id="cs_pending")
    paid = await make_order(stripe_session_id="cs_paid", status=OrderStatus.PAID, payment_status=PaymentStatus.SUCCEEDED)

    await processor.process(db, make_event("checkout.session.expired", {"id": "cs_pending", "status": "expired"}, "evt_exp_1"))
    await processor.process(db, make_event("checkout.session.expired", {"id": "cs_paid", "status": "expired"}, "evt_exp_2"))

    await db.refresh(pending)
    await db.refresh(paid)
    assert pending.status == OrderStatus.CANCELLED
    assert pending.payment_status == PaymentStatus.FAILED
    assert paid.status == OrderStatus.PAID


async def test_unmatched_event_alerts_operations(db, processor, notifier):
    event = make_event("checkout.session.completed", {"id": "cs_unknown", "payment_status": "paid"}, "evt_orphan")

    result = await processor.process(db, event)

    assert result.outcome == EventOutcome.NOT_FOUND
    assert len(notifier.alerts) == 1
    message, context = notifier.alerts[0]
    assert "evt_orphan" in message
    assert context["sessionId"] == "cs_unknown"


async def test_unknown_and_harmless_event_types(db, processor, notifier):
    unhandled = await processor.process(db, make_event("customer.tax_id.created", {"id": "txi_1"}))
    harmless = await processor.process(db, make_event("charge.succeeded", {"id": "ch_1"}))

    assert unhandled.outcome == EventOutcome.UNHANDLED
    assert harmless.outcome == EventOutcome.IGNORED
    assert notifier.alerts == []


async def test_subscription_deleted_leaves_orders_alone(db, processor, make_order, make_subscription):
    subscription = await make_subscription()
    order = await make_order(
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.SUCCEEDED,
        stripe_subscription_id="sub_1",
        stripe_customer_id="cus_1",
        subscription_id=subscription.id,
    )
    event = make_event(
        "customer.subscription.deleted",
        {"id": "sub_1", "status": "canceled", "customer": "cus_1", "metadata": {"orderId": str(order.id)}},
        "evt_deleted",
    )

    result = await processor.process(db, event)

    assert result.outcome == EventOutcome.APPLIED
    assert result.order is None
    assert result.subscription.status == SubscriptionStatus.CANCELED
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert order.latest_stripe_event_id is None


async def test_payment_intent_created_links_through_checkout_session(db, processor, make_order, stripe_service):
    order = await make_order(stripe_customer_id="cus_1")
    stripe_service.sessions["cs_test_1"] = {"id": "cs_test_1", "customer": "cus_1", "payment_intent": "pi_9"}
    event = make_event("payment_intent.created", {"id": "pi_9", "customer": "cus_1", "status": "requires_payment_method"}, "evt_pi")

    result = await processor.process(db, event)

    assert result.outcome == EventOutcome.LINKED
    await db.refresh(order)
    assert order.stripe_payment_intent_id == "pi_9"
    assert order.status == OrderStatus.PENDING


async def test_payment_intent_created_without_order_is_ignored(db, processor, notifier):
    event = make_event("payment_intent.created", {"id": "pi_x", "customer": "cus_nobody"}, "evt_pi_x")

    result = await processor.process(db, event)

    assert result.outcome == EventOutcome.IGNORED
    assert notifier.alerts == []


async def test_sync_failure_is_reported_not_raised(db, processor, make_order, notifier, monkeypatch):
    async def broken_sync(*args, **kwargs):
        raise RuntimeError("subscriptions table is locked")

    monkeypatch.setattr(event_processor_module, "sync_subscription_from_order", broken_sync)
    order = await make_order()

    result = await processor.process(db, checkout_completed(order))

    assert result.outcome == EventOutcome.APPLIED
    assert result.subscription is None
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert notifier.alerts[0][0] == "Subscription sync failed after order update"


def test_exhaustiveness_check_rejects_partial_tables():
    with pytest.raises(RuntimeError, match="customer.subscription.deleted"):
        ensure_exhaustive([HandledEventType.CHECKOUT_SESSION_COMPLETED], "PARTIAL")
