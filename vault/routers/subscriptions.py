from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
import logging

from vault.schemas.auth import TokenData
from vault.schemas.subscription import MonthlyInvestmentUpdate, SubscriptionResponse
from vault.core.auth import get_current_user, user_uuid
from vault.core.database import get_db
from vault.services.stripe_service import StripeService, get_stripe_service
from vault.services.subscription_service import change_monthly_investment

logger = logging.getLogger(__name__)

router = APIRouter()


@router.patch("/{subscription_id}/monthly-investment", response_model=SubscriptionResponse)
async def update_monthly_investment(
    subscription_id: UUID,
    data: MonthlyInvestmentUpdate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """Change the monthly amount; applies from the next billing cycle without proration"""
    try:
        return await change_monthly_investment(
            db,
            subscription_id,
            user_uuid(current_user),
            data.monthly_investment,
            stripe_service,
            is_admin=current_user.is_admin,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Monthly investment update for {subscription_id} failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to update subscription: {str(e)}"
        )
