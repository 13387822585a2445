import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vault.core.alerting import notify_ops
from vault.core.config import settings
from vault.crud.order import order_crud
from vault.models.order import Order, OrderStatus, PaymentStatus
from vault.schemas.events import CheckoutSessionPayload, expandable_id
from vault.schemas.results import SweepReport
from vault.services.stripe_service import StripeService, is_not_found
from vault.utils.utils import utcnow

logger = logging.getLogger(__name__)

STALE_CHECKOUT_BATCH = 100
STALE_PAYMENT_INTENT_BATCH = 50
DELETE_BATCH = 200

FAILED_PAYMENT_INTENT_STATUSES = ("requires_payment_method", "canceled")

Notifier = Callable[[str, Optional[Dict[str, Any]]], Awaitable[None]]


class ReconciliationSweep:
    """
    Periodic repair of orders whose webhooks never arrived.

    Pending orders older than the checkout expiry are re-read from Stripe and
    closed or marked paid to match. Orders cancelled with a failed payment are
    purged once they are past the retention window.
    """

    def __init__(
        self,
        stripe_service: StripeService,
        notifier: Notifier = notify_ops,
        clock: Callable[[], datetime] = utcnow,
        expiry_hours: Optional[int] = None,
        retention_hours: Optional[int] = None
    ):
        self.stripe_service = stripe_service
        self.notifier = notifier
        self.clock = clock
        self.expiry = timedelta(hours=expiry_hours or settings.checkout_session_expiry_hours)
        self.retention = timedelta(hours=retention_hours or settings.cancelled_order_retention_hours)

    async def run(self, db: AsyncSession) -> SweepReport:
        report = SweepReport()
        now = self.clock()
        created_before = now - self.expiry

        checkout_orders = await order_crud.get_stale_checkout_orders(
            db, created_before=created_before, limit=STALE_CHECKOUT_BATCH
        )
        payment_intent_orders = await order_crud.get_stale_payment_intent_orders(
            db,
            created_before=created_before,
            exclude_ids=[order.id for order in checkout_orders],
            limit=STALE_PAYMENT_INTENT_BATCH,
        )
        report.checked = len(checkout_orders) + len(payment_intent_orders)

        if report.checked:
            logger.info(
                f"🔄 Reconciling {len(checkout_orders)} stale checkout sessions and "
                f"{len(payment_intent_orders)} pending payment intents"
            )
        else:
            logger.info("No stale orders found")

        for order in checkout_orders:
            await self._reconcile(db, order, self._reconcile_checkout, "checkout.session.not_found", report)
        for order in payment_intent_orders:
            await self._reconcile(db, order, self._reconcile_payment_intent, "payment_intent.not_found", report)

        await self._purge(db, now - self.retention, report)

        logger.info(
            f"✅ Sweep completed: {report.updated} orders updated, "
            f"{report.deleted} orders deleted, {report.errors} errors"
        )

        if report.errors and report.checked:
            await self.notifier("Order reconciliation sweep encountered errors", {
                "checked": report.checked,
                "staleCheckoutSessions": len(checkout_orders),
                "ordersWithPaymentIntents": len(payment_intent_orders),
                "updated": report.updated,
                "deleted": report.deleted,
                "errors": report.errors,
                "messages": report.error_messages[:10],
            })
        return report

    async def _reconcile(self, db: AsyncSession, order: Order, handler, not_found_event: str, report: SweepReport) -> None:
        order_id = order.id
        try:
            if await handler(db, order):
                report.updated += 1
        except Exception as e:
            report.errors += 1
            report.error_messages.append(f"{order_id}: {str(e)}")
            logger.error(f"❌ Error reconciling order {order_id}: {str(e)}")
            await db.rollback()
            if not is_not_found(e):
                return
            try:
                await db.refresh(order)
                await self._close(db, order, not_found_event)
                report.updated += 1
                logger.info(f"Order {order_id} closed; Stripe object no longer exists")
            except Exception as close_error:
                await db.rollback()
                logger.error(f"❌ Failed to close order {order_id}: {str(close_error)}")

    async def _close(self, db: AsyncSession, order: Order, event_label: str, extra: Optional[Dict[str, Any]] = None) -> Order:
        update_data = {
            "status": OrderStatus.CANCELLED,
            "payment_status": PaymentStatus.FAILED,
            **self._stamp(event_label),
        }
        update_data.update(extra or {})
        return await order_crud.update(db, db_obj=order, obj_in=update_data)

    def _stamp(self, event_label: str) -> Dict[str, Any]:
        return {"latest_stripe_event": event_label, "latest_stripe_event_received_at": self.clock()}

    async def _reconcile_checkout(self, db: AsyncSession, order: Order) -> bool:
        session = CheckoutSessionPayload.model_validate(
            await self.stripe_service.retrieve_checkout_session(order.stripe_session_id)
        )
        billing: Dict[str, Any] = {}
        if session.billing_email:
            billing["billing_email"] = session.billing_email
        if session.billing_name:
            billing["billing_name"] = session.billing_name

        if session.status == "expired":
            await self._close(db, order, "checkout.session.expired")
            logger.info(f"Order {order.id} cancelled; checkout session expired")
            return True

        if session.status == "complete" and session.payment_status == "unpaid":
            await self._close(db, order, "checkout.session.completed.unpaid", billing)
            logger.info(f"Order {order.id} cancelled; checkout completed without payment")
            return True

        if session.status == "complete" and session.payment_status == "paid":
            update_data = {
                "status": OrderStatus.PAID,
                "payment_status": PaymentStatus.SUCCEEDED,
                **self._stamp("checkout.session.completed.paid"),
                **billing,
            }
            if session.customer:
                update_data["stripe_customer_id"] = session.customer
            if session.payment_intent:
                update_data["stripe_payment_intent_id"] = session.payment_intent
            if session.subscription:
                update_data["stripe_subscription_id"] = session.subscription
            await order_crud.update(db, db_obj=order, obj_in=update_data)
            logger.warning(f"⚠️ Order {order.id} marked paid by sweep; checkout webhook was missed")
            return True

        # Still open
        return False

    async def _reconcile_payment_intent(self, db: AsyncSession, order: Order) -> bool:
        payment_intent = await self.stripe_service.retrieve_payment_intent(order.stripe_payment_intent_id)
        status = payment_intent.get("status")
        extra: Dict[str, Any] = {}
        customer = expandable_id(payment_intent.get("customer"))
        if customer and not order.stripe_customer_id:
            extra["stripe_customer_id"] = customer

        if status in FAILED_PAYMENT_INTENT_STATUSES:
            await self._close(db, order, "payment_intent.failed.cleanup", extra)
            logger.info(f"Order {order.id} cancelled; payment intent {status}")
            return True

        if status == "succeeded":
            await order_crud.update(db, db_obj=order, obj_in={
                "status": OrderStatus.PAID,
                "payment_status": PaymentStatus.SUCCEEDED,
                **self._stamp("payment_intent.succeeded.cleanup"),
                **extra,
            })
            logger.warning(f"⚠️ Order {order.id} marked paid by sweep; payment webhook was missed")
            return True

        # processing, requires_action and friends are still in flight
        return False

    async def _purge(self, db: AsyncSession, updated_before: datetime, report: SweepReport) -> None:
        while True:
            try:
                deleted = await order_crud.delete_expired_failed(db, updated_before=updated_before, limit=DELETE_BATCH)
            except Exception as e:
                await db.rollback()
                report.errors += 1
                report.error_messages.append(f"purge: {str(e)}")
                logger.error(f"❌ Error deleting cancelled orders: {str(e)}")
                return
            report.deleted += deleted
            if deleted < DELETE_BATCH:
                return
