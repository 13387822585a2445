import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vault.crud.order import order_crud
from vault.crud.subscription import subscription_crud
from vault.models.order import Order, OrderType
from vault.models.subscription import Subscription, SubscriptionStatus, MetalType, WeightUnit
from vault.schemas.events import SubscriptionPayload
from vault.services.metal_price_service import get_metal_price
from vault.services.units import price_per_unit, weight_for_amount
from vault.utils.utils import from_unix, parse_uuid

logger = logging.getLogger(__name__)

DEFAULT_PLAN_NAME = "PharaohVault Plan"

STRIPE_SUBSCRIPTION_STATUSES: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
}


def map_stripe_subscription_status(status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_SUBSCRIPTION_STATUSES.get(status or "", SubscriptionStatus.PENDING_PAYMENT)


@dataclass
class PlanConfig:
    plan_name: str
    metal: MetalType
    target_weight: float
    target_unit: WeightUnit
    monthly_investment: float
    quantity: int
    target_price: float


def _number(value: Any, fallback: float, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number > 0 or (allow_zero and number == 0):
        return number
    return fallback


def _coerce_metal(value: Any) -> MetalType:
    return MetalType.SILVER if value in (MetalType.SILVER, "silver") else MetalType.GOLD


def _coerce_unit(value: Any) -> WeightUnit:
    return WeightUnit.GRAM if value in (WeightUnit.GRAM, "g") else WeightUnit.OUNCE


def build_config_from_order(order: Order) -> PlanConfig:
    """Plan details from the order snapshot, then loose metadata keys, then defaults"""
    config = order.subscription_config or {}
    metadata = order.meta_data or {}

    def pick(key: str, *fallback_keys: str):
        if config.get(key) is not None:
            return config[key]
        for fallback in fallback_keys:
            if metadata.get(fallback) is not None:
                return metadata[fallback]
        return None

    plan_name = pick("plan_name", "planName", "plan") or order.product_name or DEFAULT_PLAN_NAME
    monthly = config.get("monthly_investment")
    if monthly is None:
        monthly = order.amount if order.amount else _number(
            metadata.get("monthlyInvestment", metadata.get("monthly_investment")), 1
        )

    return PlanConfig(
        plan_name=str(plan_name),
        metal=_coerce_metal(pick("metal", "metal")),
        target_weight=_number(pick("target_weight", "targetWeight", "target_weight"), 1),
        target_unit=_coerce_unit(pick("target_unit", "targetUnit", "target_unit")),
        monthly_investment=float(monthly),
        quantity=int(_number(pick("quantity", "quantity"), 1)),
        target_price=_number(pick("target_price", "targetPrice"), 0, allow_zero=True),
    )


async def compute_weight_delta(
    db: AsyncSession,
    metal: MetalType,
    unit: WeightUnit,
    value_delta: float
) -> Optional[float]:
    """Metal bought with ``value_delta`` at the cached price, in ``unit``; None if no usable price"""
    base_price = await get_metal_price(db, metal)
    weight = weight_for_amount(value_delta, price_per_unit(base_price, metal, unit))
    if weight is None:
        logger.warning(f"⚠️ No usable {metal.value} price; skipping weight accumulation for {value_delta}")
    return weight


def _apply_status(subscription: Subscription, status: Optional[SubscriptionStatus]) -> None:
    if status is None:
        return
    # pending_payment is only an initial state
    if status == SubscriptionStatus.PENDING_PAYMENT and subscription.status != SubscriptionStatus.PENDING_PAYMENT:
        return
    subscription.status = status


async def _find_subscription(db: AsyncSession, order: Order, stripe_subscription_id: Optional[str], config: PlanConfig) -> Optional[Subscription]:
    if stripe_subscription_id:
        existing = await subscription_crud.get_by_stripe_id(db, stripe_subscription_id)
        if existing:
            return existing
    if order.subscription_id:
        existing = await subscription_crud.get(db, order.subscription_id, raise_if_not_found=False)
        if existing:
            return existing
    return await subscription_crud.get_by_fingerprint(
        db,
        user_id=order.user_id,
        stripe_customer_id=order.stripe_customer_id,
        metal=config.metal,
        plan_name=config.plan_name,
        target_weight=config.target_weight,
        target_unit=config.target_unit,
    )


async def sync_subscription_from_order(
    db: AsyncSession,
    order: Order,
    *,
    status: Optional[SubscriptionStatus] = None,
    current_period_end: Optional[datetime] = None,
    stripe_subscription_id: Optional[str] = None,
    accumulated_value_delta: Optional[float] = None,
    accumulated_weight_delta: Optional[float] = None
) -> Optional[Subscription]:
    """
    Create or update the Subscription behind a subscription-type order.

    Plan configuration is only written when the subscription is created, so
    later edits to the subscription are not overwritten by renewals. Value and
    weight only ever grow here; non-positive deltas are ignored.
    """
    if not order or order.order_type != OrderType.SUBSCRIPTION or not order.user_id or not order.stripe_customer_id:
        return None

    config = build_config_from_order(order)
    stripe_id = order.stripe_subscription_id or stripe_subscription_id
    subscription = await _find_subscription(db, order, stripe_id, config)

    if subscription is None:
        subscription = Subscription(
            user_id=order.user_id,
            plan_name=config.plan_name,
            metal=config.metal,
            target_weight=config.target_weight,
            target_unit=config.target_unit,
            monthly_investment=config.monthly_investment,
            quantity=config.quantity,
            target_price=config.target_price,
            accumulated_value=0.0,
            accumulated_weight=0.0,
            status=status or SubscriptionStatus.PENDING_PAYMENT,
            stripe_customer_id=order.stripe_customer_id,
            stripe_subscription_id=stripe_id,
        )
        db.add(subscription)
        logger.info(f"🆕 Creating subscription for order {order.id} ({config.plan_name})")
    else:
        _apply_status(subscription, status)
        if stripe_id and not subscription.stripe_subscription_id:
            subscription.stripe_subscription_id = stripe_id
        subscription.stripe_customer_id = order.stripe_customer_id

    if current_period_end:
        subscription.current_period_end = current_period_end

    if accumulated_value_delta and accumulated_value_delta > 0:
        weight_delta = accumulated_weight_delta
        if weight_delta is None:
            weight_delta = await compute_weight_delta(
                db, subscription.metal, subscription.target_unit, accumulated_value_delta
            )
        subscription.accumulated_value = (subscription.accumulated_value or 0.0) + accumulated_value_delta
        if weight_delta and weight_delta > 0:
            subscription.accumulated_weight = (subscription.accumulated_weight or 0.0) + weight_delta
    elif accumulated_weight_delta and accumulated_weight_delta > 0:
        subscription.accumulated_weight = (subscription.accumulated_weight or 0.0) + accumulated_weight_delta

    await db.commit()
    await db.refresh(subscription)

    if order.subscription_id != subscription.id:
        try:
            await order_crud.update(db, db_obj=order, obj_in={"subscription_id": subscription.id})
        except Exception as e:
            logger.error(f"❌ Failed to link order {order.id} to subscription {subscription.id}: {str(e)}")
            await db.rollback()
            await db.refresh(subscription)

    return subscription


async def apply_subscription_snapshot(db: AsyncSession, snapshot: SubscriptionPayload) -> Optional[Subscription]:
    """Copy status, period end, quantity and price from a Stripe subscription object"""
    status = map_stripe_subscription_status(snapshot.status)
    current_period_end = from_unix(snapshot.period_end)

    subscription = await subscription_crud.get_by_stripe_id(db, snapshot.id)
    if subscription:
        _apply_status(subscription, status)
        if current_period_end:
            subscription.current_period_end = current_period_end
        if snapshot.customer:
            subscription.stripe_customer_id = snapshot.customer
        item = snapshot.first_item
        if item and item.quantity is not None:
            subscription.quantity = item.quantity
        if item and item.price and item.price.unit_amount:
            subscription.monthly_investment = item.price.unit_amount / 100
        await db.commit()
        await db.refresh(subscription)
        return subscription

    order_id = parse_uuid(snapshot.order_id)
    if order_id:
        order = await order_crud.get(db, order_id, raise_if_not_found=False)
        if order:
            if not order.stripe_customer_id and snapshot.customer:
                order = await order_crud.update(db, db_obj=order, obj_in={"stripe_customer_id": snapshot.customer})
            return await sync_subscription_from_order(
                db,
                order,
                status=status,
                current_period_end=current_period_end,
                stripe_subscription_id=snapshot.id,
            )

    return None
