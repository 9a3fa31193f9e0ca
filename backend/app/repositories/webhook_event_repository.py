"""GatewayWebhookEvent repository: the webhook idempotency ledger."""

from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.shared import utc_now
from app.models.webhook_event import GatewayWebhookEvent, WebhookEventStatus


class WebhookEventRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_event_id(self, event_id: str) -> GatewayWebhookEvent | None:
        return (
            self.db.query(GatewayWebhookEvent)
            .filter(GatewayWebhookEvent.event_id == event_id)
            .first()
        )

    def register(
        self,
        event_id: str,
        event_type: str,
        signature: str | None,
        payload_raw: str,
        payload: dict[str, Any] | None,
    ) -> tuple[GatewayWebhookEvent, bool]:
        """Insert the event, returning ``(event, is_new)``.

        Deferred events are reopened and reported as new; anything else that
        already exists is a duplicate.
        """
        existing = self.get_by_event_id(event_id)
        if existing is not None:
            return self._reopen_if_deferred(existing)

        event = GatewayWebhookEvent(
            event_id=event_id,
            event_type=event_type or "",
            signature=signature,
            status=WebhookEventStatus.RECEIVED.value,
            payload_raw=payload_raw,
            payload=payload,
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.get_by_event_id(event_id)
            if existing is None:
                raise
            return self._reopen_if_deferred(existing)
        self.db.refresh(event)
        return event, True

    def _reopen_if_deferred(
        self, event: GatewayWebhookEvent
    ) -> tuple[GatewayWebhookEvent, bool]:
        if event.status != WebhookEventStatus.DEFERRED.value:
            return event, False
        count = (
            self.db.query(GatewayWebhookEvent)
            .filter(
                GatewayWebhookEvent.id == event.id,
                GatewayWebhookEvent.status == WebhookEventStatus.DEFERRED.value,
            )
            .update(
                {
                    GatewayWebhookEvent.status: WebhookEventStatus.RECEIVED.value,
                    GatewayWebhookEvent.process_note: None,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(event)
        return event, int(count) > 0

    def _finish(self, event: GatewayWebhookEvent, status: WebhookEventStatus, note: str | None) -> None:
        event.status = status.value  # type: ignore[assignment]
        event.process_note = (note or "")[:500] or None  # type: ignore[assignment]
        event.processed_at = utc_now()  # type: ignore[assignment]
        self.db.commit()

    def mark_processed(self, event: GatewayWebhookEvent, note: str | None = None) -> None:
        self._finish(event, WebhookEventStatus.PROCESSED, note)

    def mark_failed(self, event: GatewayWebhookEvent, note: str | None = None) -> None:
        self._finish(event, WebhookEventStatus.FAILED, note)

    def mark_deferred(self, event: GatewayWebhookEvent, note: str | None = None) -> None:
        self._finish(event, WebhookEventStatus.DEFERRED, note)
