"""
Typed Stripe webhook events.

Every event type the processor acts on is listed in ``HandledEventType`` and
mapped to exactly one payload category. The mapping is checked against the
enum when this module is imported, so adding a member without wiring its
category fails loudly instead of silently falling through.
"""
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, Field, field_validator, model_validator


class HandledEventType(str, Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    PAYMENT_INTENT_CREATED = "payment_intent.created"
    PAYMENT_INTENT_PAYMENT_FAILED = "payment_intent.payment_failed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


# Events with no local representation; acknowledged and logged at debug level
KNOWN_HARMLESS_EVENT_TYPES = frozenset({
    "charge.succeeded",
    "charge.failed",
    "charge.updated",
    "charge.captured",
    "charge.refunded",
    "checkout.session.created",
    "customer.created",
    "customer.updated",
    "customer.deleted",
    "payment_method.attached",
    "payment_method.detached",
    "payment_method.updated",
    "payment_intent.succeeded",
    "payment_intent.processing",
    "payment_intent.requires_action",
    "payment_intent.canceled",
    "invoice.created",
    "invoice.finalized",
    "invoice.paid",
    "invoice.updated",
    "invoice.upcoming",
    "invoice_payment.paid",
    "setup_intent.created",
    "setup_intent.succeeded",
    "price.created",
    "product.created",
    "plan.created",
})


def expandable_id(value: Any) -> Optional[str]:
    """Stripe references may arrive as an id or as the expanded object"""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return str(value)


class StripePayload(BaseModel):
    id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "ignore"

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_or_empty(cls, value):
        return value or {}

    @property
    def order_id(self) -> Optional[str]:
        return self.metadata.get("orderId")


class CustomerDetails(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class CheckoutSessionPayload(StripePayload):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    mode: Optional[str] = None
    customer: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    subscription: Optional[str] = None
    payment_intent: Optional[str] = None
    invoice: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None

    @field_validator("customer", "subscription", "payment_intent", "invoice", mode="before")
    @classmethod
    def collapse_expanded(cls, value):
        return expandable_id(value)

    @property
    def billing_email(self) -> Optional[str]:
        if self.customer_details and self.customer_details.email:
            return self.customer_details.email
        return self.customer_email

    @property
    def billing_name(self) -> Optional[str]:
        return self.customer_details.name if self.customer_details else None


class PaymentIntentPayload(StripePayload):
    status: Optional[str] = None
    customer: Optional[str] = None
    invoice: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None

    @field_validator("customer", "invoice", mode="before")
    @classmethod
    def collapse_expanded(cls, value):
        return expandable_id(value)


class InvoicePayload(StripePayload):
    status: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    payment_intent: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    amount_paid: Optional[int] = None
    amount_due: Optional[int] = None
    currency: Optional[str] = None
    period_end: Optional[int] = None
    line_period_end: Optional[int] = None
    subscription_metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def lift_nested_fields(cls, data):
        """Newer API versions nest the subscription under ``parent``"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        details = (data.get("parent") or {}).get("subscription_details") or data.get("subscription_details") or {}
        if not data.get("subscription") and details.get("subscription"):
            data["subscription"] = details["subscription"]
        if details.get("metadata"):
            data["subscription_metadata"] = details["metadata"]
        lines = (data.get("lines") or {}).get("data") or []
        if lines:
            data["line_period_end"] = ((lines[0] or {}).get("period") or {}).get("end")
        return data

    @field_validator("customer", "subscription", "payment_intent", mode="before")
    @classmethod
    def collapse_expanded(cls, value):
        return expandable_id(value)

    @property
    def order_id(self) -> Optional[str]:
        return self.metadata.get("orderId") or self.subscription_metadata.get("orderId")

    @property
    def billing_period_end(self) -> Optional[int]:
        return self.line_period_end or self.period_end


class PriceSnapshot(BaseModel):
    id: Optional[str] = None
    unit_amount: Optional[int] = None
    currency: Optional[str] = None
    product: Optional[str] = None
    recurring: Optional[Dict[str, Any]] = None

    @field_validator("product", mode="before")
    @classmethod
    def collapse_expanded(cls, value):
        return expandable_id(value)


class SubscriptionItem(BaseModel):
    id: Optional[str] = None
    quantity: Optional[int] = None
    current_period_end: Optional[int] = None
    price: Optional[PriceSnapshot] = None


class SubscriptionItems(BaseModel):
    data: List[SubscriptionItem] = Field(default_factory=list)


class SubscriptionPayload(StripePayload):
    status: Optional[str] = None
    customer: Optional[str] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: Optional[bool] = None
    items: Optional[SubscriptionItems] = None

    @field_validator("customer", mode="before")
    @classmethod
    def collapse_expanded(cls, value):
        return expandable_id(value)

    @property
    def first_item(self) -> Optional[SubscriptionItem]:
        if self.items and self.items.data:
            return self.items.data[0]
        return None

    @property
    def period_end(self) -> Optional[int]:
        if self.current_period_end:
            return self.current_period_end
        item = self.first_item
        return item.current_period_end if item else None


class StripeEvent(BaseModel):
    id: str
    type: HandledEventType
    created: Optional[int] = None


class CheckoutSessionEvent(StripeEvent):
    object: CheckoutSessionPayload


class PaymentIntentEvent(StripeEvent):
    object: PaymentIntentPayload


class InvoiceEvent(StripeEvent):
    object: InvoicePayload


class SubscriptionEvent(StripeEvent):
    object: SubscriptionPayload


EVENT_CATEGORIES: Dict[HandledEventType, Type[StripeEvent]] = {
    HandledEventType.CHECKOUT_SESSION_COMPLETED: CheckoutSessionEvent,
    HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED: CheckoutSessionEvent,
    HandledEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED: CheckoutSessionEvent,
    HandledEventType.CHECKOUT_SESSION_EXPIRED: CheckoutSessionEvent,
    HandledEventType.PAYMENT_INTENT_CREATED: PaymentIntentEvent,
    HandledEventType.PAYMENT_INTENT_PAYMENT_FAILED: PaymentIntentEvent,
    HandledEventType.INVOICE_PAYMENT_SUCCEEDED: InvoiceEvent,
    HandledEventType.INVOICE_PAYMENT_FAILED: InvoiceEvent,
    HandledEventType.SUBSCRIPTION_CREATED: SubscriptionEvent,
    HandledEventType.SUBSCRIPTION_UPDATED: SubscriptionEvent,
    HandledEventType.SUBSCRIPTION_DELETED: SubscriptionEvent,
}


def ensure_exhaustive(table: Iterable[HandledEventType], name: str) -> None:
    """Fail at import time when a table does not cover every handled event type"""
    covered = set(table)
    missing = [event_type.value for event_type in HandledEventType if event_type not in covered]
    if missing:
        raise RuntimeError(f"{name} is missing entries for: {', '.join(missing)}")


ensure_exhaustive(EVENT_CATEGORIES, "EVENT_CATEGORIES")


HANDLED_EVENT_TYPES = frozenset(event_type.value for event_type in HandledEventType)


def is_handled(event_type: Optional[str]) -> bool:
    return event_type in HANDLED_EVENT_TYPES


def parse_event(raw: Dict[str, Any]) -> StripeEvent:
    """Build the typed event for a handled event type; raises ValueError otherwise"""
    event_type = raw.get("type")
    if not is_handled(event_type):
        raise ValueError(f"Unhandled Stripe event type: {event_type}")
    handled = HandledEventType(event_type)
    event_cls = EVENT_CATEGORIES[handled]
    return event_cls(
        id=raw.get("id"),
        type=handled,
        created=raw.get("created"),
        object=(raw.get("data") or {}).get("object") or {},
    )
