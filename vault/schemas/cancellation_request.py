from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from uuid import UUID

from vault.models.cancellation_request import CancellationStatus


class CancellationRequestCreate(BaseModel):
    subscription_id: UUID
    reason: str = "Not specified"
    details: Optional[str] = None
    preferred_cancellation_date: Optional[datetime] = None


class CancellationRequestUpdate(BaseModel):
    reason: Optional[str] = None
    details: Optional[str] = None
    preferred_cancellation_date: Optional[datetime] = None
    status: Optional[CancellationStatus] = None
    resolution_notes: Optional[str] = None


class CancellationRequestResponse(BaseModel):
    id: UUID
    user_id: UUID
    subscription_id: Optional[UUID] = None
    reason: str
    details: Optional[str] = None
    preferred_cancellation_date: Optional[datetime] = None
    status: CancellationStatus
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
