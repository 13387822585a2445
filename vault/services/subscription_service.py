import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.exceptions import ValidationError
from vault.crud.subscription import subscription_crud
from vault.models.subscription import Subscription
from vault.schemas.events import SubscriptionPayload
from vault.services.stripe_service import StripeService
from vault.services.subscription_sync import map_stripe_subscription_status
from vault.utils.utils import from_unix, to_minor_units

logger = logging.getLogger(__name__)


async def change_monthly_investment(
    db: AsyncSession,
    subscription_id: UUID,
    user_id: UUID,
    monthly_investment: float,
    stripe_service: StripeService,
    *,
    is_admin: bool = False
) -> Subscription:
    """
    Move a plan onto a new monthly amount.

    A fresh price is created on the current product and recurrence and swapped
    onto the subscription item. Proration is off and the billing anchor is
    kept, so the new amount applies from the next invoice.
    """
    if is_admin:
        subscription = await subscription_crud.get(db, subscription_id)
    else:
        subscription = await subscription_crud.get_by_user_id(db, subscription_id, user_id)

    if not subscription.stripe_subscription_id:
        raise ValidationError("Subscription is not linked to Stripe and cannot be modified")

    remote = SubscriptionPayload.model_validate(
        await stripe_service.retrieve_subscription(subscription.stripe_subscription_id)
    )
    item = remote.first_item
    if item is None or not item.id:
        raise ValidationError("Stripe subscription is missing line items")
    if item.price is None or not item.price.product:
        raise ValidationError("Stripe subscription item is missing price information")

    unit_amount = to_minor_units(monthly_investment)
    if item.price.unit_amount != unit_amount:
        recurring = item.price.recurring or {}
        price = await stripe_service.create_price(
            unit_amount=unit_amount,
            currency=item.price.currency or "usd",
            product=item.price.product,
            interval=recurring.get("interval", "month"),
            interval_count=recurring.get("interval_count", 1),
            metadata={"subscriptionId": str(subscription.id)},
        )
        updated = await stripe_service.update_subscription(subscription.stripe_subscription_id, {
            "items": [{"id": item.id, "price": price["id"], "quantity": item.quantity or 1}],
            "billing_cycle_anchor": "unchanged",
            "proration_behavior": "none",
            "payment_behavior": "pending_if_incomplete",
        })
        remote = SubscriptionPayload.model_validate(updated)

    update_data = {
        "monthly_investment": monthly_investment,
        "status": map_stripe_subscription_status(remote.status),
    }
    period_end = from_unix(remote.period_end)
    if period_end:
        update_data["current_period_end"] = period_end
    if remote.first_item and remote.first_item.quantity is not None:
        update_data["quantity"] = remote.first_item.quantity

    subscription = await subscription_crud.update(db, db_obj=subscription, obj_in=update_data)
    logger.info(
        f"✅ Subscription {subscription.id} monthly investment set to {monthly_investment} "
        f"(Stripe {subscription.stripe_subscription_id})"
    )
    return subscription
