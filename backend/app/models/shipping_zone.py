"""Shipping zone and rate option models."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, func

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class ShippingConditionType(str, Enum):
    PRICE = "price"
    WEIGHT = "weight"


class ShippingZone(Base):
    __tablename__ = "shipping_zones"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    states = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ShippingOption(Base):
    """A rate inside a zone.

    ``min_value``/``max_value`` are rupees for price conditions and kilograms
    for weight conditions.
    """

    __tablename__ = "shipping_options"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    zone_id = Column(
        UUIDType, ForeignKey("shipping_zones.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    condition_type = Column(String(20), nullable=True, default=ShippingConditionType.PRICE.value)
    min_value = Column(Numeric(12, 3), nullable=True)
    max_value = Column(Numeric(12, 3), nullable=True)
    rate_subunits = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
