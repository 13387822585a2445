#!/usr/bin/env python3
"""
One-off backfill for orders written before order_type, amount_in_minor and
the Stripe id columns existed.
Run with: python backfill_orders.py
"""

import asyncio
from typing import Any, Dict

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.database import get_session_factory
from vault.models.order import Order, OrderType
from vault.utils.utils import to_minor_units

load_dotenv()

METADATA_ID_COLUMNS = {
    "stripeSessionId": "stripe_session_id",
    "stripeCustomerId": "stripe_customer_id",
    "stripeSubscriptionId": "stripe_subscription_id",
}


def backfill_changes(order: Order) -> Dict[str, Any]:
    """Column values an order is missing and can be filled from what it already carries"""
    changes: Dict[str, Any] = {}
    metadata = order.meta_data or {}

    for key, column in METADATA_ID_COLUMNS.items():
        if not getattr(order, column) and isinstance(metadata.get(key), str):
            changes[column] = metadata[key]

    if not order.order_type:
        subscription_id = changes.get("stripe_subscription_id") or order.stripe_subscription_id
        changes["order_type"] = OrderType.SUBSCRIPTION if subscription_id else OrderType.ONE_TIME

    if (not order.amount_in_minor or order.amount_in_minor <= 0) and order.amount:
        changes["amount_in_minor"] = to_minor_units(order.amount)

    return changes


async def backfill_orders(db: AsyncSession) -> int:
    result = await db.execute(select(Order))
    updated = 0
    for order in result.scalars().all():
        changes = backfill_changes(order)
        if not changes:
            continue
        for column, value in changes.items():
            setattr(order, column, value)
        updated += 1
    await db.commit()
    return updated


async def main():
    print("🔄 Backfilling orders...")
    session_factory = get_session_factory()
    async with session_factory() as db:
        updated = await backfill_orders(db)
    print(f"✅ Backfill complete. Updated {updated} orders.")


if __name__ == "__main__":
    asyncio.run(main())
