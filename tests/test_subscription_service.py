import uuid

import pytest

from vault.core.exceptions import NotFoundError, ValidationError
from vault.models import OrderStatus, OrderType, SubscriptionStatus
from vault.schemas.checkout import CreateCheckoutSessionRequest
from vault.schemas.order import SubscriptionConfig
from vault.services.checkout_service import DEFAULT_PRODUCT_NAME, create_checkout_session
from vault.services.subscription_service import change_monthly_investment


def remote_subscription(unit_amount=10000, status="active"):
    return {
        "id": "sub_1",
        "status": status,
        "customer": "cus_1",
        "items": {"data": [{
            "id": "si_1",
            "quantity": 1,
            "current_period_end": 1767225600,
            "price": {
                "id": "price_old",
                "unit_amount": unit_amount,
                "currency": "usd",
                "product": "prod_1",
                "recurring": {"interval": "month", "interval_count": 1},
            },
        }]},
    }


class TestChangeMonthlyInvestment:
    async def test_swaps_in_new_price_without_proration(self, db, user, stripe_service, make_subscription):
        subscription = await make_subscription()
        stripe_service.subscriptions["sub_1"] = remote_subscription()

        updated = await change_monthly_investment(db, subscription.id, user.id, 150.0, stripe_service)

        (_, price), = stripe_service.called("create_price")
        assert price["unit_amount"] == 15000
        assert price["product"] == "prod_1"
        assert price["metadata"] == {"subscriptionId": str(subscription.id)}
        (_, stripe_id, params), = stripe_service.called("update_subscription")
        assert stripe_id == "sub_1"
        assert params["items"] == [{"id": "si_1", "price": price["id"], "quantity": 1}]
        assert params["proration_behavior"] == "none"
        assert params["billing_cycle_anchor"] == "unchanged"
        assert updated.monthly_investment == 150.0
        assert updated.current_period_end is not None

    async def test_same_amount_skips_remote_update(self, db, user, stripe_service, make_subscription):
        subscription = await make_subscription()
        stripe_service.subscriptions["sub_1"] = remote_subscription(unit_amount=10000, status="past_due")

        updated = await change_monthly_investment(db, subscription.id, user.id, 100.0, stripe_service)

        assert stripe_service.called("create_price") == []
        assert stripe_service.called("update_subscription") == []
        assert updated.status == SubscriptionStatus.PAST_DUE

    async def test_requires_linked_subscription(self, db, user, stripe_service, make_subscription):
        subscription = await make_subscription(stripe_subscription_id=None)

        with pytest.raises(ValidationError):
            await change_monthly_investment(db, subscription.id, user.id, 150.0, stripe_service)

    async def test_requires_line_items(self, db, user, stripe_service, make_subscription):
        subscription = await make_subscription()
        stripe_service.subscriptions["sub_1"] = {"id": "sub_1", "status": "active", "items": {"data": []}}

        with pytest.raises(ValidationError):
            await change_monthly_investment(db, subscription.id, user.id, 150.0, stripe_service)

    async def test_other_users_plan_needs_admin(self, db, stripe_service, make_subscription):
        subscription = await make_subscription()
        stripe_service.subscriptions["sub_1"] = remote_subscription()

        with pytest.raises(NotFoundError):
            await change_monthly_investment(db, subscription.id, uuid.uuid4(), 150.0, stripe_service)

        updated = await change_monthly_investment(
            db, subscription.id, uuid.uuid4(), 150.0, stripe_service, is_admin=True
        )
        assert updated.monthly_investment == 150.0


class TestCreateCheckoutSession:
    async def test_creates_pending_order_and_subscription_session(self, db, user, stripe_service):
        request = CreateCheckoutSessionRequest(
            amount=49.99,
            customer_email="saver@example.com",
            metadata={"campaign": "autumn"},
            subscription_details=SubscriptionConfig(plan_name="Silver stack", metal="silver", target_weight=10, target_unit="oz"),
        )

        order, session = await create_checkout_session(db, request, stripe_service, user_id=user.id)

        assert order.order_type == OrderType.SUBSCRIPTION
        assert order.status == OrderStatus.PENDING
        assert order.amount_in_minor == 4999
        assert order.stripe_session_id == session["id"]
        assert order.subscription_config["metal"] == "silver"
        assert order.subscription_config["monthly_investment"] == 49.99
        assert order.meta_data == {"campaign": "autumn"}

        (_, params), = stripe_service.called("create_checkout_session")
        assert params["mode"] == "subscription"
        assert params["metadata"] == {"campaign": "autumn", "orderId": str(order.id), "userId": str(user.id)}
        assert params["subscription_data"] == {"metadata": {"orderId": str(order.id)}}
        assert params["customer_email"] == "saver@example.com"
        line_item = params["line_items"][0]
        assert line_item["price_data"]["unit_amount"] == 4999
        assert line_item["price_data"]["recurring"] == {"interval": "month", "interval_count": 1}

    async def test_defaults_product_name_and_skips_config(self, db, stripe_service):
        order, _ = await create_checkout_session(db, CreateCheckoutSessionRequest(amount=25), stripe_service)

        assert order.product_name == DEFAULT_PRODUCT_NAME
        assert order.subscription_config is None
        assert order.currency == "usd"
