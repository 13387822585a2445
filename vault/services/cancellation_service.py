import logging
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from vault.crud.cancellation_request import cancellation_request_crud
from vault.crud.subscription import subscription_crud
from vault.models.cancellation_request import CancellationRequest, CancellationStatus
from vault.models.subscription import SubscriptionStatus
from vault.schemas.cancellation_request import CancellationRequestCreate, CancellationRequestUpdate
from vault.schemas.results import RemoteCallResult, RemoteOutcome
from vault.services.stripe_service import StripeService
from vault.utils.utils import utcnow

logger = logging.getLogger(__name__)


async def create_cancellation_request(db: AsyncSession, user_id: UUID, data: CancellationRequestCreate) -> CancellationRequest:
    # Ownership check; raises NotFoundError for someone else's subscription
    await subscription_crud.get_by_user_id(db, data.subscription_id, user_id)
    request = await cancellation_request_crud.create_with_extra(
        db,
        obj_in=data,
        extra_data={"user_id": user_id, "status": CancellationStatus.PENDING},
    )
    logger.info(f"📝 Cancellation request {request.id} created for subscription {data.subscription_id}")
    return request


async def cancel_subscription_for_request(
    db: AsyncSession,
    request: CancellationRequest,
    stripe_service: StripeService
) -> Optional[RemoteCallResult]:
    """
    Cancel the Stripe subscription behind an approved request and mark it canceled locally.

    Returns None when there is nothing left to cancel. A failed local write
    rolls back and comes back as a ``failed`` result, leaving the plan open so
    approving the request again retries the cancellation.
    """
    if not request.subscription_id:
        return None
    subscription = await subscription_crud.get(db, request.subscription_id, raise_if_not_found=False)
    if subscription is None:
        logger.warning(f"⚠️ Cancellation request {request.id} points at missing subscription {request.subscription_id}")
        return None
    if subscription.status == SubscriptionStatus.CANCELED:
        logger.info(f"Subscription {subscription.id} is already canceled")
        return None

    subscription_id = subscription.id
    if subscription.stripe_subscription_id:
        remote = await stripe_service.cancel_and_verify(subscription.stripe_subscription_id)
    else:
        remote = RemoteCallResult.success(verified=False)

    try:
        await subscription_crud.update(db, db_obj=subscription, obj_in={"status": SubscriptionStatus.CANCELED})
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Failed to mark subscription {subscription_id} canceled: {str(e)}")
        return RemoteCallResult.failed(f"Local cancellation failed: {str(e)}")

    logger.info(f"✅ Subscription {subscription_id} marked canceled ({remote.outcome.value})")
    return remote


async def update_cancellation_request(
    db: AsyncSession,
    cancellation_request_id: UUID,
    data: CancellationRequestUpdate,
    admin_user_id: UUID,
    stripe_service: StripeService
) -> Tuple[CancellationRequest, Optional[RemoteCallResult]]:
    """Admin update; an explicit ``approved`` status cancels the plan unless it is already canceled"""
    request = await cancellation_request_crud.get(db, cancellation_request_id)
    update_data = data.model_dump(exclude_unset=True)

    if "status" in update_data and update_data["status"] != request.status:
        update_data["processed_by"] = admin_user_id
        update_data["processed_at"] = utcnow()

    request = await cancellation_request_crud.update(db, db_obj=request, obj_in=update_data)

    remote = None
    if data.status == CancellationStatus.APPROVED:
        remote = await cancel_subscription_for_request(db, request, stripe_service)
        if remote and remote.outcome == RemoteOutcome.FAILED:
            await db.refresh(request)
    return request, remote
