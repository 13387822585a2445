from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from pydantic import BaseModel

from vault.crud.base import CRUDBase
from vault.models.subscription import Subscription, MetalType, WeightUnit


class CRUDSubscription(CRUDBase[Subscription, BaseModel, BaseModel]):
    async def get_by_stripe_id(self, db: AsyncSession, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await db.execute(
            select(self.model).where(
                and_(
                    self.model.stripe_subscription_id == stripe_subscription_id,
                    self.model.is_deleted == False
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_by_fingerprint(
        self,
        db: AsyncSession,
        *,
        user_id: UUID,
        stripe_customer_id: str,
        metal: MetalType,
        plan_name: str,
        target_weight: float,
        target_unit: WeightUnit
    ) -> Optional[Subscription]:
        """Match a plan that has not been linked to a Stripe subscription yet"""
        result = await db.execute(
            select(self.model)
            .where(
                and_(
                    self.model.user_id == user_id,
                    self.model.stripe_customer_id == stripe_customer_id,
                    self.model.metal == metal,
                    self.model.plan_name == plan_name,
                    self.model.target_weight == target_weight,
                    self.model.target_unit == target_unit,
                    self.model.stripe_subscription_id.is_(None),
                    self.model.is_deleted == False
                )
            )
            .order_by(self.model.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


subscription_crud = CRUDSubscription(Subscription)
