from sqlalchemy import Column, String, Float, DateTime, Uuid
import uuid
from .base import Base, TimestampMixin


class MetalPrice(Base, TimestampMixin):
    """Latest quote per metal; gold per gram (24k), silver per troy ounce"""
    __tablename__ = "metal_prices"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    metal_symbol = Column(String(20), nullable=False, unique=True, index=True)
    price = Column(Float, nullable=False)
    last_updated = Column(DateTime, nullable=False)
