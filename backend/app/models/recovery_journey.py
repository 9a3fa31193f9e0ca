"""RecoveryJourney model: one abandoned-cart recovery effort for one user."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class JourneyStatus(str, Enum):
    ACTIVE = "active"
    RECOVERED = "recovered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_JOURNEY_STATUSES = (
    JourneyStatus.RECOVERED.value,
    JourneyStatus.CANCELLED.value,
    JourneyStatus.EXPIRED.value,
)


class RecoveryJourney(Base):
    __tablename__ = "recovery_journeys"
    __table_args__ = (
        # Backstop for the one-active-journey-per-user rule
        Index(
            "uq_recovery_journeys_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JourneyStatus.ACTIVE.value, index=True)

    cart_item_count = Column(Integer, nullable=False, default=0)
    cart_total_subunits = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    cart_snapshot = Column(JSON, nullable=False, default=list)

    last_activity_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_attempt_no = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    recovered_order_id = Column(UUIDType, nullable=True)
    recovered_at = Column(DateTime(timezone=True), nullable=True)
    recovery_reason = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
