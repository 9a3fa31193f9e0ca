"""GatewayWebhookEvent model: idempotency ledger for gateway callbacks."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, String, Text

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class WebhookEventStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    # Lock contention; a gateway retry may re-register the event
    DEFERRED = "deferred"


class GatewayWebhookEvent(Base):
    __tablename__ = "gateway_webhook_events"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    event_id = Column(String(128), nullable=False, unique=True, index=True)
    event_type = Column(String(64), nullable=False, default="")
    signature = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value)
    payload_raw = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    process_note = Column(String(500), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
