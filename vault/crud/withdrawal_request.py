from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_

from vault.crud.base import CRUDBase
from vault.models.withdrawal_request import WithdrawalRequest, ACTIVE_WITHDRAWAL_STATUSES
from vault.schemas.withdrawal_request import WithdrawalRequestCreate, WithdrawalRequestUpdate


class CRUDWithdrawalRequest(CRUDBase[WithdrawalRequest, WithdrawalRequestCreate, WithdrawalRequestUpdate]):
    async def get_active_for_subscription(self, db: AsyncSession, subscription_id: UUID) -> Optional[WithdrawalRequest]:
        """Open request (pending, in review, approved or processing) for a subscription"""
        result = await db.execute(
            select(self.model)
            .where(
                and_(
                    self.model.subscription_id == subscription_id,
                    self.model.status.in_(ACTIVE_WITHDRAWAL_STATUSES),
                    self.model.is_deleted == False
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()


withdrawal_request_crud = CRUDWithdrawalRequest(WithdrawalRequest)
