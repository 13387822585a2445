import logging
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.config import settings
from vault.crud.order import order_crud
from vault.models.order import Order, OrderType
from vault.schemas.checkout import CreateCheckoutSessionRequest
from vault.schemas.order import OrderCreate
from vault.services.stripe_service import StripeService
from vault.utils.utils import to_minor_units

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_NAME = "Custom Monthly Subscription"


def _stripe_metadata(values: Dict[str, Any]) -> Dict[str, str]:
    # Stripe metadata values are strings
    return {key: str(value) for key, value in values.items() if value is not None}


def build_session_params(
    order: Order,
    request: CreateCheckoutSessionRequest,
    user_id: Optional[UUID] = None
) -> Dict[str, Any]:
    product_name = request.product_name or DEFAULT_PRODUCT_NAME
    metadata = _stripe_metadata({**request.metadata, "orderId": str(order.id), "userId": user_id})
    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [
            {
                "price_data": {
                    "currency": order.currency,
                    "product_data": {
                        "name": product_name,
                        "description": request.description or f"{product_name} - {order.amount:.2f} {order.currency.upper()}",
                    },
                    "unit_amount": order.amount_in_minor,
                    "recurring": {"interval": request.interval, "interval_count": request.interval_count},
                },
                "quantity": request.quantity,
            }
        ],
        "metadata": metadata,
        "subscription_data": {"metadata": {"orderId": str(order.id)}},
        "success_url": f"{settings.frontend_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{settings.frontend_url}/cancel",
    }
    if request.customer_email:
        params["customer_email"] = request.customer_email
    return params


async def create_checkout_session(
    db: AsyncSession,
    request: CreateCheckoutSessionRequest,
    stripe_service: StripeService,
    user_id: Optional[UUID] = None
) -> Tuple[Order, Dict[str, Any]]:
    """Record a pending subscription order, then open a subscription-mode checkout for it"""
    currency = (request.currency or settings.default_currency).lower()
    config = request.subscription_details.model_dump(exclude_none=True, mode="json") if request.subscription_details else None
    if config is not None:
        config.setdefault("monthly_investment", request.amount)
        config.setdefault("quantity", request.quantity)
        config.setdefault("interval", request.interval)
        config.setdefault("interval_count", request.interval_count)

    order = await order_crud.create(db, obj_in=OrderCreate(
        user_id=user_id,
        order_type=OrderType.SUBSCRIPTION,
        amount=request.amount,
        amount_in_minor=to_minor_units(request.amount),
        currency=currency,
        product_name=request.product_name or DEFAULT_PRODUCT_NAME,
        billing_email=request.customer_email,
        meta_data=dict(request.metadata),
        subscription_config=config,
    ))

    session = await stripe_service.create_checkout_session(build_session_params(order, request, user_id))
    order = await order_crud.update(db, db_obj=order, obj_in={"stripe_session_id": session["id"]})
    logger.info(f"🛒 Checkout session {session['id']} created for order {order.id}")
    return order, session
