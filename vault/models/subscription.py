from sqlalchemy import Column, String, Integer, Float, DateTime, Enum as SQLEnum, Uuid
import uuid
import enum
from .base import Base, TimestampMixin


class MetalType(str, enum.Enum):
    GOLD = "gold"
    SILVER = "silver"


class WeightUnit(str, enum.Enum):
    GRAM = "g"
    OUNCE = "oz"


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum"""
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELING = "canceling"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class Subscription(Base, TimestampMixin):
    """One recurring metal accumulation plan"""
    __tablename__ = "subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    metal = Column(SQLEnum(MetalType), default=MetalType.GOLD, nullable=False)
    plan_name = Column(String(255), nullable=False)
    target_weight = Column(Float, nullable=False)
    target_unit = Column(SQLEnum(WeightUnit), default=WeightUnit.OUNCE, nullable=False)
    monthly_investment = Column(Float, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    target_price = Column(Float, default=0.0, nullable=False)

    # Always stored in target_unit
    accumulated_value = Column(Float, default=0.0, nullable=False)
    accumulated_weight = Column(Float, default=0.0, nullable=False)

    status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.PENDING_PAYMENT, nullable=False)
    current_period_end = Column(DateTime, nullable=True)

    # Stripe-related fields
    stripe_customer_id = Column(String(255), nullable=False, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
