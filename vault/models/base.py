from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime, Boolean

from vault.utils.utils import utcnow

Base = declarative_base()

class TimestampMixin:
    """Mixin to add created_at and updated_at timestamps to models"""
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
