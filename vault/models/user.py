from sqlalchemy import Column, String, Float, Enum as SQLEnum, Uuid
import uuid
import enum
from .base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class User(Base, TimestampMixin):
    """Account holder; carries running totals of metal already withdrawn"""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)

    withdrawn_gold = Column(Float, default=0.0, nullable=False)  # grams
    withdrawn_silver = Column(Float, default=0.0, nullable=False)  # troy ounces
