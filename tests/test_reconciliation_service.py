import stripe
from sqlalchemy import select

from vault.models import Order, OrderStatus, PaymentStatus
from vault.services.reconciliation_service import ReconciliationSweep

from tests.conftest import hours_ago


def make_sweep(stripe_service, notifier):
    return ReconciliationSweep(stripe_service, notifier=notifier, expiry_hours=24, retention_hours=24)


async def test_fresh_orders_are_left_alone(db, stripe_service, notifier, make_order):
    await make_order(created_at=hours_ago(1))

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.checked == 0
    assert stripe_service.calls == []


async def test_expired_session_closes_order(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25))
    stripe_service.sessions["cs_test_1"] = {"id": "cs_test_1", "status": "expired", "payment_status": "unpaid"}

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.checked == 1
    assert report.updated == 1
    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.latest_stripe_event == "checkout.session.expired"


async def test_completed_unpaid_session_closes_order_with_billing(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25))
    stripe_service.sessions["cs_test_1"] = {
        "id": "cs_test_1",
        "status": "complete",
        "payment_status": "unpaid",
        "customer_details": {"email": "saver@example.com", "name": "Ada Saver"},
    }

    await make_sweep(stripe_service, notifier).run(db)

    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.latest_stripe_event == "checkout.session.completed.unpaid"
    assert order.billing_email == "saver@example.com"
    assert order.billing_name == "Ada Saver"


async def test_missed_paid_checkout_is_marked_paid(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25))
    stripe_service.sessions["cs_test_1"] = {
        "id": "cs_test_1",
        "status": "complete",
        "payment_status": "paid",
        "customer": "cus_1",
        "subscription": {"id": "sub_1", "object": "subscription"},
        "payment_intent": "pi_1",
    }

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.updated == 1
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.SUCCEEDED
    assert order.stripe_customer_id == "cus_1"
    assert order.stripe_subscription_id == "sub_1"
    assert order.stripe_payment_intent_id == "pi_1"
    assert order.latest_stripe_event == "checkout.session.completed.paid"


async def test_open_session_is_not_changed_and_skips_payment_intent_pass(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25), stripe_payment_intent_id="pi_1")
    stripe_service.sessions["cs_test_1"] = {"id": "cs_test_1", "status": "open", "payment_status": "unpaid"}

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.checked == 1
    assert report.updated == 0
    assert stripe_service.called("retrieve_payment_intent") == []
    await db.refresh(order)
    assert order.status == OrderStatus.PENDING


async def test_missing_session_closes_order(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25), stripe_session_id="cs_gone")

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.errors == 1
    assert report.updated == 1
    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.latest_stripe_event == "checkout.session.not_found"


async def test_succeeded_payment_intent_marks_order_paid(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25), stripe_session_id=None, stripe_payment_intent_id="pi_1")
    stripe_service.payment_intents["pi_1"] = {"id": "pi_1", "status": "succeeded", "customer": "cus_9"}

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.updated == 1
    await db.refresh(order)
    assert order.status == OrderStatus.PAID
    assert order.stripe_customer_id == "cus_9"
    assert order.latest_stripe_event == "payment_intent.succeeded.cleanup"


async def test_failed_payment_intent_closes_order(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25), stripe_session_id=None, stripe_payment_intent_id="pi_1")
    stripe_service.payment_intents["pi_1"] = {"id": "pi_1", "status": "requires_payment_method"}

    await make_sweep(stripe_service, notifier).run(db)

    await db.refresh(order)
    assert order.status == OrderStatus.CANCELLED
    assert order.latest_stripe_event == "payment_intent.failed.cleanup"


async def test_processing_payment_intent_is_left_pending(db, stripe_service, notifier, make_order):
    order = await make_order(created_at=hours_ago(25), stripe_session_id=None, stripe_payment_intent_id="pi_1")
    stripe_service.payment_intents["pi_1"] = {"id": "pi_1", "status": "processing"}

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.updated == 0
    await db.refresh(order)
    assert order.status == OrderStatus.PENDING


async def test_old_failed_orders_are_purged(db, stripe_service, notifier, make_order):
    old_failed = await make_order(
        status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED, updated_at=hours_ago(48)
    )
    recent_failed = await make_order(
        status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED, updated_at=hours_ago(2)
    )
    refunded = await make_order(
        status=OrderStatus.REFUNDED, payment_status=PaymentStatus.REFUNDED, updated_at=hours_ago(48)
    )
    old_failed_id = old_failed.id

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.deleted == 1
    remaining = set((await db.execute(select(Order.id))).scalars().all())
    assert old_failed_id not in remaining
    assert {recent_failed.id, refunded.id} <= remaining


async def test_errors_are_reported_to_ops(db, stripe_service, notifier, make_order):
    await make_order(created_at=hours_ago(25))
    stripe_service.fail_retrieve["cs_test_1"] = stripe.APIConnectionError("Stripe is unreachable")

    report = await make_sweep(stripe_service, notifier).run(db)

    assert report.errors == 1
    assert report.updated == 0
    message, context = notifier.alerts[0]
    assert message == "Order reconciliation sweep encountered errors"
    assert context["errors"] == 1
    assert context["staleCheckoutSessions"] == 1


async def test_clean_run_does_not_alert(db, stripe_service, notifier, make_order):
    await make_order(created_at=hours_ago(25))
    stripe_service.sessions["cs_test_1"] = {"id": "cs_test_1", "status": "expired"}

    await make_sweep(stripe_service, notifier).run(db)

    assert notifier.alerts == []
