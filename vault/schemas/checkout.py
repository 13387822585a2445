from pydantic import BaseModel, Field
from typing import Optional, Dict, Union, Literal
from uuid import UUID

from vault.schemas.order import SubscriptionConfig


class CreateCheckoutSessionRequest(BaseModel):
    amount: float = Field(..., gt=0, description="Monthly amount in major units")
    currency: Optional[str] = Field(None, description="Defaults to the configured currency")
    product_name: Optional[str] = None
    description: Optional[str] = None
    interval: Literal["month", "year"] = "month"
    interval_count: int = Field(1, gt=0)
    quantity: int = Field(1, gt=0)
    customer_email: Optional[str] = None
    metadata: Dict[str, Union[str, int, float, bool]] = Field(default_factory=dict)
    subscription_details: Optional[SubscriptionConfig] = None


class CreateCheckoutSessionResponse(BaseModel):
    url: Optional[str] = None
    session_id: str
    order_id: UUID
