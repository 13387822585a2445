"""
Stripe webhook event processor.

Each verified event is matched to one Order, applied at most once per
(order, event id) pair, and then handed to subscription sync when the order
belongs to a recurring plan.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.alerting import notify_ops
from vault.core.config import settings
from vault.crud.order import order_crud
from vault.crud.subscription import subscription_crud
from vault.models.order import Order, OrderType, OrderStatus, PaymentStatus, InvoiceStatus
from vault.models.subscription import SubscriptionStatus
from vault.schemas.events import (
    HandledEventType,
    KNOWN_HARMLESS_EVENT_TYPES,
    CheckoutSessionEvent,
    PaymentIntentEvent,
    PaymentIntentPayload,
    InvoiceEvent,
    InvoicePayload,
    SubscriptionEvent,
    StripeEvent,
    ensure_exhaustive,
    is_handled,
    parse_event,
)
from vault.schemas.order import OrderCreate
from vault.schemas.results import EventOutcome, EventResult
from vault.services.stripe_service import StripeService
from vault.services.subscription_sync import apply_subscription_snapshot, sync_subscription_from_order
from vault.utils.utils import from_unix, parse_uuid, utcnow

logger = logging.getLogger(__name__)

# Bounded scan when correlating a payment intent with a customer's checkout sessions
PENDING_ORDER_SCAN_LIMIT = 10

ORDER_STATE_BY_SUBSCRIPTION_STATUS: Dict[str, Tuple[OrderStatus, PaymentStatus]] = {
    "active": (OrderStatus.PAID, PaymentStatus.SUCCEEDED),
    "canceled": (OrderStatus.CANCELLED, PaymentStatus.FAILED),
    "incomplete_expired": (OrderStatus.CANCELLED, PaymentStatus.FAILED),
    "past_due": (OrderStatus.PENDING, PaymentStatus.FAILED),
    "unpaid": (OrderStatus.PENDING, PaymentStatus.FAILED),
}

INVOICE_STATUSES = {
    "draft": InvoiceStatus.DRAFT,
    "open": InvoiceStatus.OPEN,
    "paid": InvoiceStatus.PAID,
    "void": InvoiceStatus.VOID,
    "uncollectible": InvoiceStatus.UNCOLLECTIBLE,
}

# Handler method per event type, checked for coverage when the module loads
EVENT_HANDLERS: Dict[HandledEventType, str] = {
    HandledEventType.CHECKOUT_SESSION_COMPLETED: "_handle_checkout_session",
    HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED: "_handle_checkout_session",
    HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED: "_handle_checkout_session",
    HandledEventType.CHECKOUT_SESSION_EXPIRED: "_handle_checkout_session",
    HandledEventType.PAYMENT_INTENT_CREATED: "_handle_payment_intent_created",
    HandledEventType.PAYMENT_INTENT_PAYMENT_FAILED: "_handle_payment_intent_failed",
    HandledEventType.INVOICE_PAYMENT_SUCCEEDED: "_handle_invoice",
    HandledEventType.INVOICE_PAYMENT_FAILED: "_handle_invoice",
    HandledEventType.SUBSCRIPTION_CREATED: "_handle_subscription",
    HandledEventType.SUBSCRIPTION_UPDATED: "_handle_subscription",
    HandledEventType.SUBSCRIPTION_DELETED: "_handle_subscription",
}

ensure_exhaustive(EVENT_HANDLERS, "EVENT_HANDLERS")


def build_payment_status(status: Optional[str]) -> PaymentStatus:
    """Map a checkout session payment_status onto the order's payment status"""
    if status in ("paid", "no_payment_required"):
        return PaymentStatus.SUCCEEDED
    if status == "unpaid":
        return PaymentStatus.FAILED
    if status == "processing":
        return PaymentStatus.PROCESSING
    return PaymentStatus.PENDING


def build_invoice_status(status: Optional[str]) -> InvoiceStatus:
    return INVOICE_STATUSES.get(status or "", InvoiceStatus.NONE)


def order_state_for_subscription(status: Optional[str]) -> Tuple[OrderStatus, PaymentStatus]:
    return ORDER_STATE_BY_SUBSCRIPTION_STATUS.get(status or "", (OrderStatus.PENDING, PaymentStatus.PENDING))


def _present(**values: Any) -> Dict[str, Any]:
    """Drop keys whose value is None so they do not overwrite known data"""
    return {key: value for key, value in values.items() if value is not None}


def _is_settled_payment(order: Order) -> bool:
    return order.status == OrderStatus.PAID and order.payment_status == PaymentStatus.SUCCEEDED


@dataclass
class OrderLookup:
    order_id: Optional[str] = None
    session_id: Optional[str] = None
    subscription_id: Optional[str] = None
    invoice_id: Optional[str] = None
    payment_intent_id: Optional[str] = None

    def as_context(self) -> Dict[str, Any]:
        return _present(
            orderId=self.order_id,
            sessionId=self.session_id,
            subscriptionId=self.subscription_id,
            invoiceId=self.invoice_id,
            paymentIntentId=self.payment_intent_id,
        )


Notifier = Callable[[str, Optional[Dict[str, Any]]], Awaitable[None]]


class EventProcessor:
    def __init__(
        self,
        stripe_service: StripeService,
        notifier: Notifier = notify_ops,
        clock: Callable[[], Any] = utcnow,
    ):
        self.stripe_service = stripe_service
        self.notifier = notifier
        self.clock = clock
        self._handlers = {event_type: getattr(self, name) for event_type, name in EVENT_HANDLERS.items()}

    async def process(self, db: AsyncSession, raw_event: Dict[str, Any]) -> EventResult:
        """Apply one verified Stripe event; never raises for unknown or unmatched events"""
        event_id = raw_event.get("id")
        event_type = raw_event.get("type")

        if not is_handled(event_type):
            if event_type in KNOWN_HARMLESS_EVENT_TYPES:
                logger.debug(f"Ignoring Stripe event {event_type} ({event_id})")
                return EventResult(event_id, event_type, EventOutcome.IGNORED)
            logger.info(f"ℹ️ Unhandled Stripe event type: {event_type} ({event_id})")
            return EventResult(event_id, event_type, EventOutcome.UNHANDLED)

        event = parse_event(raw_event)
        logger.info(f"📨 Processing Stripe event {event.type.value} ({event.id})")
        return await self._handlers[event.type](db, event)

    # Lookup

    async def find_order(self, db: AsyncSession, lookup: OrderLookup) -> Optional[Order]:
        """First match wins: order id, session, subscription, invoice, payment intent"""
        order_uuid = parse_uuid(lookup.order_id)
        if order_uuid:
            order = await order_crud.get(db, order_uuid, raise_if_not_found=False)
            if order and not self._belongs_to_other_invoice(order, lookup.invoice_id):
                return order

        if lookup.session_id:
            order = await order_crud.get_by_session_id(db, lookup.session_id)
            if order:
                return order

        if lookup.subscription_id:
            order = await order_crud.get_by_stripe_subscription_id(
                db, lookup.subscription_id, invoice_id=lookup.invoice_id
            )
            if order:
                return order

        if lookup.invoice_id:
            order = await order_crud.get_by_invoice_id(db, lookup.invoice_id)
            if order:
                return order

        if lookup.payment_intent_id:
            return await order_crud.get_by_payment_intent_id(db, lookup.payment_intent_id)

        return None

    @staticmethod
    def _belongs_to_other_invoice(order: Order, invoice_id: Optional[str]) -> bool:
        return bool(invoice_id and order.stripe_invoice_id and order.stripe_invoice_id != invoice_id)

    # Shared steps

    @staticmethod
    def _is_duplicate(order: Order, event: StripeEvent) -> bool:
        return order.latest_stripe_event_id == event.id

    def _duplicate(self, order: Order, event: StripeEvent) -> EventResult:
        logger.info(f"🔁 Event {event.id} already applied to order {order.id}; skipping")
        return EventResult(event.id, event.type.value, EventOutcome.DUPLICATE, order=order)

    async def _apply(self, db: AsyncSession, order: Order, event: StripeEvent, updates: Dict[str, Any]) -> Order:
        updates = dict(updates)
        updates.update(
            latest_stripe_event_id=event.id,
            latest_stripe_event=event.type.value,
            latest_stripe_event_received_at=self.clock(),
        )
        return await order_crud.update(db, db_obj=order, obj_in=updates)

    async def _not_found(self, event: StripeEvent, lookup: OrderLookup) -> EventResult:
        message = f"No order found for Stripe event {event.type.value} ({event.id})"
        logger.warning(f"⚠️ {message}")
        await self.notifier(message, {"eventId": event.id, "eventType": event.type.value, **lookup.as_context()})
        return EventResult(event.id, event.type.value, EventOutcome.NOT_FOUND, message=message)

    async def _sync(self, db: AsyncSession, order: Order, event: StripeEvent, **options: Any):
        """Subscription sync after the order write; failures are reported, not raised"""
        if order.order_type != OrderType.SUBSCRIPTION:
            return None
        try:
            return await sync_subscription_from_order(db, order, **options)
        except Exception as e:
            logger.error(f"❌ Subscription sync failed for order {order.id} on {event.id}: {str(e)}")
            await db.rollback()
            await db.refresh(order)
            await self.notifier(
                "Subscription sync failed after order update",
                {"eventId": event.id, "eventType": event.type.value, "orderId": str(order.id), "error": str(e)},
            )
            return None

    # Checkout sessions

    async def _handle_checkout_session(self, db: AsyncSession, event: CheckoutSessionEvent) -> EventResult:
        session = event.object
        lookup = OrderLookup(
            order_id=session.order_id,
            session_id=session.id,
            subscription_id=session.subscription,
            invoice_id=session.invoice,
            payment_intent_id=session.payment_intent,
        )
        order = await self.find_order(db, lookup)
        if not order:
            return await self._not_found(event, lookup)
        if self._is_duplicate(order, event):
            return self._duplicate(order, event)

        updates = _present(
            stripe_session_id=session.id,
            stripe_customer_id=session.customer,
            stripe_subscription_id=session.subscription,
            stripe_payment_intent_id=session.payment_intent,
            stripe_invoice_id=session.invoice,
            billing_email=session.billing_email,
            billing_name=session.billing_name,
            currency=session.currency,
        )
        if session.amount_total is not None:
            updates["amount"] = session.amount_total / 100
            updates["amount_in_minor"] = session.amount_total

        sync_status: Optional[SubscriptionStatus] = None
        if event.type == HandledEventType.CHECKOUT_SESSION_COMPLETED:
            payment_status = build_payment_status(session.payment_status)
            updates["payment_status"] = payment_status
            if payment_status == PaymentStatus.SUCCEEDED:
                updates["status"] = OrderStatus.PAID
                sync_status = SubscriptionStatus.PENDING_PAYMENT
            elif payment_status == PaymentStatus.FAILED:
                updates["status"] = OrderStatus.CANCELLED
                sync_status = SubscriptionStatus.PAST_DUE
        elif event.type == HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED:
            updates.update(status=OrderStatus.PAID, payment_status=PaymentStatus.SUCCEEDED)
            sync_status = SubscriptionStatus.PENDING_PAYMENT
        elif event.type == HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED:
            updates.update(status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)
            sync_status = SubscriptionStatus.PAST_DUE
        elif order.status == OrderStatus.PENDING:
            # Expired sessions only close orders that never completed
            updates.update(status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)

        order = await self._apply(db, order, event, updates)
        logger.info(f"✅ Order {order.id} -> {order.status.value}/{order.payment_status.value} via {event.type.value}")
        subscription = None
        if sync_status is not None:
            subscription = await self._sync(
                db, order, event, status=sync_status, stripe_subscription_id=session.subscription
            )
        return EventResult(event.id, event.type.value, EventOutcome.APPLIED, order=order, subscription=subscription)

    # Payment intents

    async def _find_order_for_payment_intent(self, db: AsyncSession, payment_intent: PaymentIntentPayload) -> Optional[Order]:
        """
        Correlate a payment intent with an order.

        Tries the regular lookup first, then checkout sessions listed for the
        intent, then the invoice's subscription, then a bounded scan of the
        customer's pending orders and their sessions.
        """
        order = await self.find_order(db, OrderLookup(
            order_id=payment_intent.order_id,
            invoice_id=payment_intent.invoice,
            payment_intent_id=payment_intent.id,
        ))
        if order:
            return order

        try:
            sessions = await self.stripe_service.list_checkout_sessions(payment_intent=payment_intent.id, limit=1)
        except Exception as e:
            logger.warning(f"⚠️ Could not list checkout sessions for {payment_intent.id}: {str(e)}")
            sessions = []
        for session in sessions:
            order = await self.find_order(db, OrderLookup(
                order_id=(session.get("metadata") or {}).get("orderId"),
                session_id=session.get("id"),
            ))
            if order:
                return order

        if payment_intent.invoice:
            try:
                invoice = InvoicePayload(**await self.stripe_service.retrieve_invoice(payment_intent.invoice))
                if invoice.subscription:
                    order = await order_crud.get_by_stripe_subscription_id(
                        db, invoice.subscription, invoice_id=invoice.id
                    )
                    if order:
                        return order
            except Exception as e:
                logger.warning(f"⚠️ Could not resolve invoice {payment_intent.invoice}: {str(e)}")

        if payment_intent.customer:
            candidates = await order_crud.get_recent_pending_for_customer(
                db, payment_intent.customer, limit=PENDING_ORDER_SCAN_LIMIT
            )
            for candidate in candidates:
                try:
                    session = await self.stripe_service.retrieve_checkout_session(candidate.stripe_session_id)
                except Exception as e:
                    logger.warning(f"⚠️ Could not retrieve session {candidate.stripe_session_id}: {str(e)}")
                    continue
                if session.get("payment_intent") == payment_intent.id:
                    return candidate

        return None

    async def _handle_payment_intent_created(self, db: AsyncSession, event: PaymentIntentEvent) -> EventResult:
        payment_intent = event.object
        order = await self._find_order_for_payment_intent(db, payment_intent)
        if not order:
            # Later failure events have their own fallbacks
            logger.debug(f"No order to link payment intent {payment_intent.id} to")
            return EventResult(event.id, event.type.value, EventOutcome.IGNORED)
        if self._is_duplicate(order, event):
            return self._duplicate(order, event)

        updates = {"stripe_payment_intent_id": payment_intent.id}
        if payment_intent.customer and not order.stripe_customer_id:
            updates["stripe_customer_id"] = payment_intent.customer
        order = await self._apply(db, order, event, updates)
        logger.info(f"🔗 Linked payment intent {payment_intent.id} to order {order.id}")
        return EventResult(event.id, event.type.value, EventOutcome.LINKED, order=order)

    async def _handle_payment_intent_failed(self, db: AsyncSession, event: PaymentIntentEvent) -> EventResult:
        payment_intent = event.object
        order = await self._find_order_for_payment_intent(db, payment_intent)
        if not order:
            return await self._not_found(event, OrderLookup(
                order_id=payment_intent.order_id,
                invoice_id=payment_intent.invoice,
                payment_intent_id=payment_intent.id,
            ))
        if self._is_duplicate(order, event):
            return self._duplicate(order, event)

        updates = _present(stripe_payment_intent_id=payment_intent.id, stripe_customer_id=payment_intent.customer)
        settled = _is_settled_payment(order)
        if not settled:
            updates.update(status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)
        order = await self._apply(db, order, event, updates)

        subscription = None
        if not settled:
            subscription = await self._sync(db, order, event, status=SubscriptionStatus.PAST_DUE)
        return EventResult(event.id, event.type.value, EventOutcome.APPLIED, order=order, subscription=subscription)

    # Invoices

    async def _backfill_renewal_order(self, db: AsyncSession, event: InvoiceEvent) -> Optional[Order]:
        """Create the missing order for a renewal invoice, copying the plan from earlier records"""
        invoice = event.object
        if not invoice.subscription:
            return None

        template = await order_crud.get_earliest_for_subscription(db, invoice.subscription)
        subscription = await subscription_crud.get_by_stripe_id(db, invoice.subscription)
        if not template and not subscription:
            return None

        if template:
            config = dict(template.subscription_config or {})
            user_id = template.user_id
            product_name = template.product_name
            currency = template.currency
            metadata = dict(template.meta_data or {})
            subscription_id = subscription.id if subscription else template.subscription_id
            customer_id = invoice.customer or template.stripe_customer_id
        else:
            config = {
                "plan_name": subscription.plan_name,
                "metal": subscription.metal.value,
                "target_weight": subscription.target_weight,
                "target_unit": subscription.target_unit.value,
                "monthly_investment": subscription.monthly_investment,
                "quantity": subscription.quantity,
                "target_price": subscription.target_price,
            }
            user_id = subscription.user_id
            product_name = subscription.plan_name
            currency = settings.default_currency
            metadata = {}
            subscription_id = subscription.id
            customer_id = invoice.customer or subscription.stripe_customer_id

        metadata.pop("orderId", None)
        metadata.update(renewal=True, backfilledFromEvent=event.id)
        amount_minor = invoice.amount_paid or invoice.amount_due or 0

        order = await order_crud.create(db, obj_in=OrderCreate(
            user_id=user_id,
            subscription_id=subscription_id,
            order_type=OrderType.SUBSCRIPTION,
            amount=amount_minor / 100,
            amount_in_minor=amount_minor,
            currency=invoice.currency or currency,
            product_name=product_name,
            stripe_customer_id=customer_id,
            stripe_subscription_id=invoice.subscription,
            stripe_invoice_id=invoice.id,
            stripe_payment_intent_id=invoice.payment_intent,
            meta_data=metadata,
            subscription_config=config,
        ))
        logger.info(f"🧾 Backfilled renewal order {order.id} for invoice {invoice.id}")
        return order

    async def _handle_invoice(self, db: AsyncSession, event: InvoiceEvent) -> EventResult:
        invoice = event.object
        lookup = OrderLookup(
            order_id=invoice.order_id,
            subscription_id=invoice.subscription,
            invoice_id=invoice.id,
            payment_intent_id=invoice.payment_intent,
        )
        order = await self.find_order(db, lookup)
        if not order:
            order = await self._backfill_renewal_order(db, event)
            if not order:
                return await self._not_found(event, lookup)
        if self._is_duplicate(order, event):
            return self._duplicate(order, event)

        updates = _present(
            stripe_invoice_id=invoice.id,
            stripe_subscription_id=invoice.subscription,
            stripe_customer_id=invoice.customer,
            stripe_payment_intent_id=invoice.payment_intent,
            receipt_url=invoice.hosted_invoice_url,
            currency=invoice.currency,
        )
        updates["invoice_status"] = build_invoice_status(invoice.status)
        period_end = from_unix(invoice.billing_period_end)

        if event.type == HandledEventType.INVOICE_PAYMENT_SUCCEEDED:
            if order.stripe_invoice_id == invoice.id and order.invoice_status == InvoiceStatus.PAID:
                # Redelivery after another event restamped the order; the value is already counted
                return self._duplicate(order, event)
            updates.update(status=OrderStatus.PAID, payment_status=PaymentStatus.SUCCEEDED)
            updates["invoice_status"] = InvoiceStatus.PAID
            if invoice.amount_paid is not None:
                updates["amount"] = invoice.amount_paid / 100
                updates["amount_in_minor"] = invoice.amount_paid
            order = await self._apply(db, order, event, updates)
            subscription = await self._sync(
                db,
                order,
                event,
                status=SubscriptionStatus.ACTIVE,
                current_period_end=period_end,
                stripe_subscription_id=invoice.subscription,
                accumulated_value_delta=(invoice.amount_paid or 0) / 100,
            )
        else:
            settled = _is_settled_payment(order) and order.stripe_invoice_id == invoice.id
            if settled:
                # A late failure for an invoice that already went through
                updates.pop("invoice_status")
            else:
                updates.update(status=OrderStatus.PENDING, payment_status=PaymentStatus.FAILED)
            order = await self._apply(db, order, event, updates)
            subscription = None
            if not settled:
                subscription = await self._sync(
                    db,
                    order,
                    event,
                    status=SubscriptionStatus.PAST_DUE,
                    current_period_end=period_end,
                    stripe_subscription_id=invoice.subscription,
                )

        return EventResult(event.id, event.type.value, EventOutcome.APPLIED, order=order, subscription=subscription)

    # Subscriptions

    async def _handle_subscription(self, db: AsyncSession, event: SubscriptionEvent) -> EventResult:
        snapshot = event.object
        lookup = OrderLookup(order_id=snapshot.order_id, subscription_id=snapshot.id)
        order = None

        # Deletion leaves the payment history untouched
        if event.type != HandledEventType.SUBSCRIPTION_DELETED:
            order = await self.find_order(db, lookup)
            if order:
                if self._is_duplicate(order, event):
                    return self._duplicate(order, event)
                updates = _present(stripe_subscription_id=snapshot.id, stripe_customer_id=snapshot.customer)
                if order.status == OrderStatus.PENDING:
                    status, payment_status = order_state_for_subscription(snapshot.status)
                    updates.update(status=status, payment_status=payment_status)
                order = await self._apply(db, order, event, updates)

        subscription = await apply_subscription_snapshot(db, snapshot)
        if not order and not subscription:
            return await self._not_found(event, lookup)
        return EventResult(event.id, event.type.value, EventOutcome.APPLIED, order=order, subscription=subscription)
