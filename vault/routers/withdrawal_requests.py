from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from vault.schemas.auth import TokenData
from vault.schemas.withdrawal_request import (
    WithdrawalRequestCreate,
    WithdrawalRequestUpdate,
    WithdrawalRequestResponse
)
from vault.core.auth import get_current_user, require_admin, user_uuid
from vault.core.database import get_db
from vault.core.exceptions import handle_database_errors
from vault.services.stripe_service import StripeService, get_stripe_service
from vault.services.withdrawal_service import create_withdrawal_request, update_withdrawal_request

router = APIRouter()


@router.post("", response_model=WithdrawalRequestResponse, status_code=status.HTTP_201_CREATED)
@handle_database_errors
async def create_request(
    data: WithdrawalRequestCreate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Request a withdrawal against one of the caller's subscriptions"""
    return await create_withdrawal_request(db, user_uuid(current_user), data)


@router.patch("/{withdrawal_request_id}", response_model=WithdrawalRequestResponse)
@handle_database_errors
async def update_request(
    withdrawal_request_id: UUID,
    data: WithdrawalRequestUpdate,
    current_user: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """
    Admin update. Setting status to approved settles the withdrawal; when the
    settlement fails the status change stays and a 409 explains why.
    """
    request, settlement = await update_withdrawal_request(
        db, withdrawal_request_id, data, user_uuid(current_user), stripe_service
    )
    if settlement is not None and not settlement.success:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": settlement.error,
                "code": settlement.failure.value if settlement.failure else None,
                "withdrawal_request": WithdrawalRequestResponse.model_validate(request).model_dump(mode="json"),
            }
        )
    return request
