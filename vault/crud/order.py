from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, and_, or_
from pydantic import BaseModel

from vault.crud.base import CRUDBase
from vault.models.order import Order, OrderStatus, PaymentStatus
from vault.schemas.order import OrderCreate


class CRUDOrder(CRUDBase[Order, OrderCreate, BaseModel]):
    async def _first_by(self, db: AsyncSession, column, value: str) -> Optional[Order]:
        result = await db.execute(
            select(self.model)
            .where(and_(column == value, self.model.is_deleted == False))
            .order_by(self.model.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_session_id(self, db: AsyncSession, session_id: str) -> Optional[Order]:
        return await self._first_by(db, self.model.stripe_session_id, session_id)

    async def get_by_invoice_id(self, db: AsyncSession, invoice_id: str) -> Optional[Order]:
        return await self._first_by(db, self.model.stripe_invoice_id, invoice_id)

    async def get_by_payment_intent_id(self, db: AsyncSession, payment_intent_id: str) -> Optional[Order]:
        return await self._first_by(db, self.model.stripe_payment_intent_id, payment_intent_id)

    async def get_by_stripe_subscription_id(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
        *,
        invoice_id: Optional[str] = None
    ) -> Optional[Order]:
        """
        Earliest order for a Stripe subscription.

        When an invoice id is given, orders already tied to a different
        invoice are skipped since they record other billing cycles.
        """
        conditions = [
            self.model.stripe_subscription_id == stripe_subscription_id,
            self.model.is_deleted == False,
        ]
        if invoice_id:
            conditions.append(
                or_(self.model.stripe_invoice_id.is_(None), self.model.stripe_invoice_id == invoice_id)
            )
        result = await db.execute(
            select(self.model)
            .where(and_(*conditions))
            .order_by(self.model.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_earliest_for_subscription(self, db: AsyncSession, stripe_subscription_id: str) -> Optional[Order]:
        return await self._first_by(db, self.model.stripe_subscription_id, stripe_subscription_id)

    async def get_recent_pending_for_customer(
        self,
        db: AsyncSession,
        customer_id: str,
        *,
        limit: int = 10
    ) -> List[Order]:
        """Pending orders for a customer that still wait on a checkout session"""
        result = await db.execute(
            select(self.model)
            .where(
                and_(
                    self.model.stripe_customer_id == customer_id,
                    self.model.status == OrderStatus.PENDING,
                    self.model.stripe_session_id.is_not(None),
                    self.model.stripe_payment_intent_id.is_(None),
                    self.model.is_deleted == False,
                )
            )
            .order_by(self.model.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_stale_checkout_orders(
        self,
        db: AsyncSession,
        *,
        created_before: datetime,
        limit: int = 100
    ) -> List[Order]:
        result = await db.execute(
            select(self.model)
            .where(
                and_(
                    self.model.status == OrderStatus.PENDING,
                    self.model.stripe_session_id.is_not(None),
                    self.model.created_at < created_before,
                    self.model.is_deleted == False,
                )
            )
            .order_by(self.model.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_stale_payment_intent_orders(
        self,
        db: AsyncSession,
        *,
        created_before: datetime,
        exclude_ids: Sequence[UUID] = (),
        limit: int = 50
    ) -> List[Order]:
        conditions = [
            self.model.status == OrderStatus.PENDING,
            self.model.payment_status == PaymentStatus.PENDING,
            self.model.stripe_payment_intent_id.is_not(None),
            self.model.created_at < created_before,
            self.model.is_deleted == False,
        ]
        if exclude_ids:
            conditions.append(self.model.id.not_in(list(exclude_ids)))
        result = await db.execute(
            select(self.model)
            .where(and_(*conditions))
            .order_by(self.model.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_expired_failed(
        self,
        db: AsyncSession,
        *,
        updated_before: datetime,
        limit: int = 200
    ) -> int:
        """Hard delete cancelled/failed orders older than the retention window, one capped batch"""
        id_result = await db.execute(
            select(self.model.id)
            .where(
                and_(
                    self.model.status == OrderStatus.CANCELLED,
                    self.model.payment_status == PaymentStatus.FAILED,
                    self.model.updated_at < updated_before,
                )
            )
            .limit(limit)
        )
        ids = list(id_result.scalars().all())
        if not ids:
            return 0
        result = await db.execute(delete(self.model).where(self.model.id.in_(ids)))
        await db.commit()
        return result.rowcount


order_crud = CRUDOrder(Order)
