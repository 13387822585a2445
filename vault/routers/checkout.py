from fastapi import APIRouter, HTTPException, Depends, status, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging
import stripe

from vault.schemas.auth import TokenData
from vault.schemas.checkout import CreateCheckoutSessionRequest, CreateCheckoutSessionResponse
from vault.core.auth import get_current_user, user_uuid
from vault.core.database import get_db
from vault.core.exceptions import ConfigurationError
from vault.services.checkout_service import create_checkout_session
from vault.services.event_processor import EventProcessor
from vault.services.stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_event_processor(stripe_service: StripeService = Depends(get_stripe_service)) -> EventProcessor:
    return EventProcessor(stripe_service)


@router.post("/create-session", response_model=CreateCheckoutSessionResponse)
async def create_session(
    request: CreateCheckoutSessionRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """
    Create a pending subscription order and a Stripe checkout session for it.
    The order id travels in the session and subscription metadata.
    """
    try:
        order, session = await create_checkout_session(
            db, request, stripe_service, user_id=user_uuid(current_user)
        )
        return CreateCheckoutSessionResponse(url=session.get("url"), session_id=session["id"], order_id=order.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ create-session error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session"
        )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    processor: EventProcessor = Depends(get_event_processor)
):
    """
    Handle Stripe webhook events.
    Once the signature checks out the event is always acknowledged; processing
    problems are logged so Stripe does not keep retrying.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    try:
        event = stripe_service.construct_event(payload, signature)
    except ConfigurationError as e:
        logger.error(f"❌ Webhook rejected: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured"
        )
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(f"⚠️ Webhook signature verification failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook Error: {str(e)}"
        )

    try:
        result = await processor.process(db, event)
        return JSONResponse(content={"received": True, "outcome": result.outcome.value})
    except Exception as e:
        logger.warning(f"⚠️ Error processing Stripe event {event.get('type')} ({event.get('id')}): {str(e)}")
        return JSONResponse(content={"received": True, "outcome": "error"})
