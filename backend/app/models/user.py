"""User model: the store's customer directory."""

from sqlalchemy import JSON, Column, DateTime, String, func

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid


class User(Base):
    """Customer or staff account.

    ``address`` and ``billing_address`` hold the saved profile addresses as
    dicts with ``line1``, ``city``, ``state`` and ``zip`` keys.
    """

    __tablename__ = "users"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    mobile = Column(String(20), nullable=True, unique=True, index=True)
    role = Column(String(20), nullable=False, default="customer")
    address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
