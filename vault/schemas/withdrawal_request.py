from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID

from vault.models.subscription import MetalType, WeightUnit
from vault.models.withdrawal_request import WithdrawalStatus


class WithdrawalRequestCreate(BaseModel):
    subscription_id: UUID
    metal: MetalType
    requested_weight: float = Field(..., gt=0)
    requested_unit: WeightUnit
    estimated_value: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class WithdrawalRequestUpdate(BaseModel):
    requested_weight: Optional[float] = Field(None, gt=0)
    requested_unit: Optional[WeightUnit] = None
    estimated_value: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    status: Optional[WithdrawalStatus] = None


class WithdrawalRequestResponse(BaseModel):
    id: UUID
    user_id: UUID
    subscription_id: Optional[UUID] = None
    metal: MetalType
    requested_weight: float
    requested_unit: WeightUnit
    estimated_value: Optional[float] = None
    status: WithdrawalStatus
    notes: Optional[str] = None
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
