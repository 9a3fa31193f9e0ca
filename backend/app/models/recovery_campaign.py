"""RecoveryCampaign model: the singleton abandoned-cart campaign config."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, func

from app.core.database import Base


class RecoveryCampaign(Base):
    """Tunable recovery ladder. Only the row with ``id == 1`` is used."""

    __tablename__ = "recovery_campaigns"

    id = Column(Integer, primary_key=True, default=1)
    enabled = Column(Boolean, nullable=False, default=True)
    inactivity_minutes = Column(Integer, nullable=False, default=30)
    max_attempts = Column(Integer, nullable=False, default=4)
    attempt_delays_minutes = Column(JSON, nullable=False)
    discount_ladder_percent = Column(JSON, nullable=False)
    max_discount_percent = Column(Integer, nullable=False, default=25)
    min_discount_cart_subunits = Column(Integer, nullable=False, default=0)
    recovery_window_hours = Column(Integer, nullable=False, default=72)
    send_email = Column(Boolean, nullable=False, default=True)
    send_whatsapp = Column(Boolean, nullable=False, default=True)
    send_payment_link = Column(Boolean, nullable=False, default=True)
    reminder_enable = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
