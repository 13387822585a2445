import logging
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.exceptions import ConflictError, ValidationError
from vault.crud.subscription import subscription_crud
from vault.crud.withdrawal_request import withdrawal_request_crud
from vault.models.subscription import Subscription, SubscriptionStatus, MetalType
from vault.models.user import User
from vault.models.withdrawal_request import WithdrawalRequest, WithdrawalStatus
from vault.schemas.results import (
    RemoteCallResult,
    SettlementCase,
    SettlementFailure,
    SettlementResult,
)
from vault.schemas.withdrawal_request import WithdrawalRequestCreate, WithdrawalRequestUpdate
from vault.services.stripe_service import StripeService
from vault.services.units import WEIGHT_TOLERANCE, convert_weight, to_reporting_unit, within_balance
from vault.utils.utils import utcnow

logger = logging.getLogger(__name__)

WITHDRAWABLE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


def _fmt(weight: float) -> str:
    return f"{round(weight, 4):g}"


def insufficient_weight_message(available: float, requested: float, unit: str) -> str:
    return (
        f"Insufficient accumulated weight. Available: {_fmt(available)}{unit}, "
        f"Requested: {_fmt(requested)}{unit} (short by {_fmt(requested - available)}{unit})"
    )


async def create_withdrawal_request(db: AsyncSession, user_id: UUID, data: WithdrawalRequestCreate) -> WithdrawalRequest:
    """Validate ownership and balance, then record a pending withdrawal request"""
    subscription = await subscription_crud.get_by_user_id(db, data.subscription_id, user_id)

    if subscription.status not in WITHDRAWABLE_SUBSCRIPTION_STATUSES:
        raise ValidationError(
            f"Withdrawals require an active subscription (current status: {subscription.status.value})"
        )
    if data.metal != subscription.metal:
        raise ValidationError(f"Subscription accumulates {subscription.metal.value}, not {data.metal.value}")

    if await withdrawal_request_crud.get_active_for_subscription(db, subscription.id):
        raise ConflictError("An active withdrawal request already exists for this subscription")

    unit = subscription.target_unit.value
    requested = convert_weight(data.requested_weight, data.requested_unit, subscription.target_unit)
    available = subscription.accumulated_weight or 0.0
    if not within_balance(requested, available):
        raise ValidationError(insufficient_weight_message(available, requested, unit))

    request = await withdrawal_request_crud.create_with_extra(
        db,
        obj_in=data,
        extra_data={"user_id": user_id, "status": WithdrawalStatus.PENDING},
    )
    logger.info(f"📝 Withdrawal request {request.id} created for subscription {subscription.id}")
    return request


async def settle_withdrawal(
    db: AsyncSession,
    withdrawal_request_id: UUID,
    stripe_service: StripeService
) -> SettlementResult:
    """
    Drain a subscription's accumulated balance against an approved withdrawal.

    Runs as one transaction over the request, the subscription and the user.
    Failed preconditions roll back and come back as a typed failure. When the
    plan has reached its target weight (both sides stored in the plan's own
    unit) the Stripe subscription is cancelled and the plan marked canceled.
    """
    remote: Optional[RemoteCallResult] = None
    try:
        request = (await db.execute(
            select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_request_id).with_for_update()
        )).scalar_one_or_none()
        if request is None:
            return await _abort(db, SettlementFailure.REQUEST_NOT_FOUND, "Withdrawal request not found")
        if request.status in (WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED):
            return await _abort(db, SettlementFailure.ALREADY_PROCESSED, "Withdrawal request has already been processed")
        if request.status != WithdrawalStatus.APPROVED:
            return await _abort(
                db,
                SettlementFailure.NOT_APPROVED,
                f'Cannot process withdrawal: status is "{request.status.value}", expected "approved"',
            )
        if not request.subscription_id:
            return await _abort(
                db, SettlementFailure.NO_SUBSCRIPTION, "Withdrawal request is not associated with a subscription"
            )

        subscription = (await db.execute(
            select(Subscription).where(Subscription.id == request.subscription_id).with_for_update()
        )).scalar_one_or_none()
        if subscription is None:
            return await _abort(db, SettlementFailure.SUBSCRIPTION_NOT_FOUND, "Subscription not found")

        accumulated = subscription.accumulated_weight or 0.0
        if accumulated <= 0:
            return await _abort(
                db,
                SettlementFailure.ALREADY_SETTLED,
                "Withdrawal has already been processed (subscription accumulated weight is 0)",
            )

        requested = convert_weight(request.requested_weight, request.requested_unit, subscription.target_unit)
        if not within_balance(requested, accumulated):
            return await _abort(
                db,
                SettlementFailure.INSUFFICIENT_BALANCE,
                insufficient_weight_message(accumulated, requested, subscription.target_unit.value),
            )

        user = (await db.execute(
            select(User).where(User.id == request.user_id).with_for_update()
        )).scalar_one_or_none()
        if user is None:
            return await _abort(db, SettlementFailure.USER_NOT_FOUND, "User not found")

        # Accumulated weight is always kept in target_unit, so both sides share a unit
        full_liquidation = accumulated + WEIGHT_TOLERANCE >= subscription.target_weight
        case = SettlementCase.FULL_LIQUIDATION if full_liquidation else SettlementCase.PARTIAL

        if full_liquidation:
            if subscription.stripe_subscription_id:
                remote = await stripe_service.cancel_and_verify(subscription.stripe_subscription_id)
            else:
                logger.info(f"No Stripe subscription for {subscription.id}; marking canceled locally")
                remote = RemoteCallResult.success(verified=False)
            subscription.status = SubscriptionStatus.CANCELED

        subscription.accumulated_weight = 0.0
        subscription.accumulated_value = 0.0

        credited = to_reporting_unit(request.requested_weight, request.requested_unit, request.metal)
        if request.metal == MetalType.GOLD:
            user.withdrawn_gold = (user.withdrawn_gold or 0.0) + credited
        else:
            user.withdrawn_silver = (user.withdrawn_silver or 0.0) + credited

        request.status = WithdrawalStatus.COMPLETED
        await db.commit()
        logger.info(
            f"✅ Withdrawal {request.id} settled ({case.value}); credited {_fmt(credited)} "
            f"{'g' if request.metal == MetalType.GOLD else 'oz'} of {request.metal.value} to user {user.id}"
        )
        return SettlementResult(success=True, case=case, remote=remote)
    except Exception as e:
        await db.rollback()
        logger.error(f"❌ Withdrawal settlement {withdrawal_request_id} failed: {str(e)}")
        return SettlementResult(
            success=False,
            failure=SettlementFailure.TRANSACTION_FAILED,
            error=f"Withdrawal settlement failed: {str(e)}",
            remote=remote,
        )


async def _abort(db: AsyncSession, failure: SettlementFailure, error: str) -> SettlementResult:
    await db.rollback()
    logger.warning(f"⚠️ Withdrawal settlement aborted: {error}")
    return SettlementResult.fail(failure, error)


async def update_withdrawal_request(
    db: AsyncSession,
    withdrawal_request_id: UUID,
    data: WithdrawalRequestUpdate,
    admin_user_id: UUID,
    stripe_service: StripeService
) -> Tuple[WithdrawalRequest, Optional[SettlementResult]]:
    """
    Admin update of a withdrawal request.

    An explicit ``approved`` status runs the settlement, including when the
    request is already approved, so a failed settlement can be retried. The
    status change itself is kept when the settlement fails. A settled request
    is ``completed`` and keeps that status; approving it again is refused.
    """
    request = await withdrawal_request_crud.get(db, withdrawal_request_id)
    update_data = data.model_dump(exclude_unset=True)

    if request.status == WithdrawalStatus.COMPLETED:
        update_data.pop("status", None)

    if "status" in update_data and update_data["status"] != request.status:
        update_data["processed_by"] = admin_user_id
        update_data["processed_at"] = utcnow()

    request = await withdrawal_request_crud.update(db, db_obj=request, obj_in=update_data)

    settlement = None
    if data.status == WithdrawalStatus.APPROVED:
        settlement = await settle_withdrawal(db, request.id, stripe_service)
        await db.refresh(request)
    return request, settlement
