import json
import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Request

from vault.core.exceptions import ConfigurationError
from vault.schemas.results import RemoteCallResult

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def is_not_found(error: Exception) -> bool:
    """True when Stripe reports the requested resource does not exist"""
    if isinstance(error, stripe.InvalidRequestError):
        return error.code == "resource_missing" or error.http_status == 404
    return False


class StripeService:
    """
    Thin async wrapper around an explicitly constructed ``stripe.StripeClient``.

    One instance is built in the application lifespan and handed to routers
    and scheduled jobs; nothing here touches the module-level ``stripe.api_key``.
    All objects are returned as plain dicts.
    """

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, client: Optional[stripe.StripeClient] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("STRIPE_SECRET is not configured")
            self._client = stripe.StripeClient(self.api_key, http_client=stripe.HTTPXClient())
        return self._client

    # Prices

    async def create_price(
        self,
        *,
        unit_amount: int,
        currency: str,
        product: str,
        interval: str = "month",
        interval_count: int = 1,
        metadata: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        price = await self.client.v1.prices.create_async(params={
            "unit_amount": unit_amount,
            "currency": currency,
            "product": product,
            "recurring": {"interval": interval, "interval_count": interval_count},
            "metadata": metadata or {},
        })
        return _as_dict(price)

    # Subscriptions

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = await self.client.v1.subscriptions.retrieve_async(
            subscription_id, params={"expand": ["items.data.price"]}
        )
        return _as_dict(subscription)

    async def update_subscription(self, subscription_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        subscription = await self.client.v1.subscriptions.update_async(subscription_id, params=params)
        return _as_dict(subscription)

    async def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = await self.client.v1.subscriptions.cancel_async(subscription_id)
        return _as_dict(subscription)

    async def cancel_and_verify(self, subscription_id: str) -> RemoteCallResult:
        """
        Cancel a subscription, then re-fetch it to confirm the cancellation.

        Callers flip their local record to canceled whatever the outcome, so
        a failed call is reported as remote_failed_local_applied.
        """
        try:
            await self.cancel_subscription(subscription_id)
        except Exception as e:
            logger.error(f"❌ Error cancelling Stripe subscription {subscription_id}: {str(e)}")
            return RemoteCallResult.local_only(str(e))

        try:
            verified = await self.retrieve_subscription(subscription_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not verify cancellation of {subscription_id}: {str(e)}")
            return RemoteCallResult.success(verified=False)

        if verified.get("status") == "canceled" or verified.get("cancel_at_period_end"):
            logger.info(f"✅ Stripe subscription {subscription_id} cancelled and verified")
            return RemoteCallResult.success(verified=True)

        logger.warning(f"⚠️ Stripe subscription {subscription_id} cancellation not verified (status={verified.get('status')})")
        return RemoteCallResult.success(verified=False)

    # Checkout sessions

    async def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session = await self.client.v1.checkout.sessions.create_async(params=params)
        return _as_dict(session)

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        session = await self.client.v1.checkout.sessions.retrieve_async(session_id)
        return _as_dict(session)

    async def list_checkout_sessions(
        self,
        *,
        customer: Optional[str] = None,
        payment_intent: Optional[str] = None,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if customer:
            params["customer"] = customer
        if payment_intent:
            params["payment_intent"] = payment_intent
        sessions = await self.client.v1.checkout.sessions.list_async(params=params)
        return [_as_dict(session) for session in sessions.data]

    # Payment intents and invoices

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        payment_intent = await self.client.v1.payment_intents.retrieve_async(payment_intent_id)
        return _as_dict(payment_intent)

    async def retrieve_invoice(self, invoice_id: str) -> Dict[str, Any]:
        invoice = await self.client.v1.invoices.retrieve_async(invoice_id)
        return _as_dict(invoice)

    # Webhooks

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify a signed webhook payload and return the event as a dict.

        Raises ConfigurationError when no signing secret is configured and
        stripe.SignatureVerificationError when the signature does not match.
        """
        if not self.webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)


def get_stripe_service(request: Request) -> StripeService:
    """Dependency returning the StripeService built at startup"""
    service = getattr(request.app.state, "stripe_service", None)
    if service is None:
        raise ConfigurationError("Stripe service has not been initialised")
    return service
