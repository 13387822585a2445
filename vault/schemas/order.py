from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID

from vault.models.order import OrderType, OrderStatus, PaymentStatus, InvoiceStatus
from vault.models.subscription import MetalType, WeightUnit


class SubscriptionConfig(BaseModel):
    """Plan snapshot stored on subscription-type orders"""
    plan_name: Optional[str] = None
    metal: Optional[MetalType] = None
    target_weight: Optional[float] = Field(None, gt=0)
    target_unit: Optional[WeightUnit] = None
    monthly_investment: Optional[float] = Field(None, gt=0)
    quantity: Optional[int] = Field(None, gt=0)
    target_price: Optional[float] = Field(None, ge=0)
    interval: Optional[str] = None
    interval_count: Optional[int] = None


class OrderCreate(BaseModel):
    user_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    order_type: OrderType = OrderType.ONE_TIME
    amount: float
    amount_in_minor: int
    currency: str = "usd"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    invoice_status: InvoiceStatus = InvoiceStatus.NONE
    product_name: Optional[str] = None
    billing_email: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    meta_data: Optional[Dict[str, Any]] = None
    subscription_config: Optional[Dict[str, Any]] = None


class OrderResponse(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    order_type: OrderType
    amount: float
    amount_in_minor: int
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    invoice_status: InvoiceStatus
    product_name: Optional[str] = None
    stripe_session_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    latest_stripe_event_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
