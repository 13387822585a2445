from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from vault.schemas.auth import TokenData
from vault.schemas.cancellation_request import (
    CancellationRequestCreate,
    CancellationRequestUpdate,
    CancellationRequestResponse
)
from vault.core.auth import get_current_user, require_admin, user_uuid
from vault.core.database import get_db
from vault.core.exceptions import handle_database_errors
from vault.schemas.results import RemoteOutcome
from vault.services.cancellation_service import create_cancellation_request, update_cancellation_request
from vault.services.stripe_service import StripeService, get_stripe_service

router = APIRouter()


@router.post("", response_model=CancellationRequestResponse, status_code=status.HTTP_201_CREATED)
@handle_database_errors
async def create_request(
    data: CancellationRequestCreate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await create_cancellation_request(db, user_uuid(current_user), data)


@router.patch("/{cancellation_request_id}", response_model=CancellationRequestResponse)
@handle_database_errors
async def update_request(
    cancellation_request_id: UUID,
    data: CancellationRequestUpdate,
    current_user: TokenData = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """
    Admin update; approving cancels the Stripe subscription. When the plan
    cannot be marked canceled the approval stays and a 409 explains why.
    """
    request, remote = await update_cancellation_request(
        db, cancellation_request_id, data, user_uuid(current_user), stripe_service
    )
    if remote is not None and remote.outcome == RemoteOutcome.FAILED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": remote.error,
                "code": remote.outcome.value,
                "cancellation_request": CancellationRequestResponse.model_validate(request).model_dump(mode="json"),
            }
        )
    return request
