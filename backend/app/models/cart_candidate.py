"""CartCandidate model: a quiet cart that may become a recovery journey."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, utc_now


class CartCandidate(Base):
    __tablename__ = "cart_candidates"

    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    cart_item_count = Column(Integer, nullable=False, default=0)
    cart_total_subunits = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    last_activity_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
