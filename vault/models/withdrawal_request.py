from sqlalchemy import Column, String, Float, DateTime, Text, Enum as SQLEnum, Uuid
import uuid
import enum
from .base import Base, TimestampMixin
from .subscription import MetalType, WeightUnit


class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    PROCESSING = "processing"
    REJECTED = "rejected"
    COMPLETED = "completed"


ACTIVE_WITHDRAWAL_STATUSES = (
    WithdrawalStatus.PENDING,
    WithdrawalStatus.IN_REVIEW,
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
)


class WithdrawalRequest(Base, TimestampMixin):
    """A user's request to redeem accumulated metal"""
    __tablename__ = "withdrawal_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    subscription_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    metal = Column(SQLEnum(MetalType), nullable=False)
    requested_weight = Column(Float, nullable=False)
    requested_unit = Column(SQLEnum(WeightUnit), nullable=False)
    estimated_value = Column(Float, nullable=True)
    status = Column(SQLEnum(WithdrawalStatus), default=WithdrawalStatus.PENDING, nullable=False)
    notes = Column(Text, nullable=True)
    processed_by = Column(Uuid(as_uuid=True), nullable=True)
    processed_at = Column(DateTime, nullable=True)
