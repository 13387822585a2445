from sqlalchemy import Column, String, DateTime, Text, Enum as SQLEnum, Uuid
import uuid
import enum
from .base import Base, TimestampMixin


class CancellationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CancellationRequest(Base, TimestampMixin):
    __tablename__ = "cancellation_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    subscription_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    reason = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)
    preferred_cancellation_date = Column(DateTime, nullable=True)
    status = Column(SQLEnum(CancellationStatus), default=CancellationStatus.PENDING, nullable=False)
    processed_by = Column(Uuid(as_uuid=True), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)
