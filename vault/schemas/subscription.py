from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from vault.models.subscription import MetalType, WeightUnit, SubscriptionStatus


class SubscriptionResponse(BaseModel):
    id: UUID
    user_id: UUID
    metal: MetalType
    plan_name: str
    target_weight: float
    target_unit: WeightUnit
    monthly_investment: float
    quantity: int
    target_price: float
    accumulated_value: float
    accumulated_weight: float
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    stripe_customer_id: str
    stripe_subscription_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MonthlyInvestmentUpdate(BaseModel):
    monthly_investment: float = Field(..., ge=10, le=1000, description="New monthly amount in major units")
