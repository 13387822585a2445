from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Enum as SQLEnum, Uuid
import uuid
import enum
from .base import Base, TimestampMixin


class OrderType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class InvoiceStatus(str, enum.Enum):
    NONE = "none"
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


class Order(Base, TimestampMixin):
    """One payment attempt: a first checkout, a renewal charge or a one-time purchase"""
    __tablename__ = "orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    subscription_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    order_type = Column(SQLEnum(OrderType), default=OrderType.ONE_TIME, nullable=False)

    amount = Column(Float, nullable=False)  # major units
    amount_in_minor = Column(Integer, nullable=False)  # cents at the Stripe boundary
    currency = Column(String(10), default="usd", nullable=False)

    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    invoice_status = Column(SQLEnum(InvoiceStatus), default=InvoiceStatus.NONE, nullable=False)

    product_name = Column(String(255), nullable=True)
    billing_email = Column(String(255), nullable=True)
    billing_name = Column(String(255), nullable=True)
    receipt_url = Column(String(1024), nullable=True)

    # Stripe join keys
    stripe_session_id = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)

    # Last applied Stripe event, for idempotency
    latest_stripe_event_id = Column(String(255), nullable=True)
    latest_stripe_event = Column(String(100), nullable=True)
    latest_stripe_event_received_at = Column(DateTime, nullable=True)

    meta_data = Column(JSON, nullable=True)
    subscription_config = Column(JSON, nullable=True)  # plan snapshot taken at checkout
