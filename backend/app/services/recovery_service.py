"""Abandoned cart recovery: runs due journeys through the attempt ladder."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import GatewayError
from app.models.recovery_attempt import AttemptStatus
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.shared import as_utc, utc_now
from app.models.user import User
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.repositories.recovery_journey_repository import RecoveryJourneyRepository
from app.repositories.user_repository import UserRepository
from app.services.campaign_service import DUE_GRACE_SECONDS, CampaignSettings
from app.services.coupon_service import percent_of
from app.services.journey_service import RecoveryJourneyService, to_base36
from app.services.loyalty_service import LoyaltyService
from app.services.notification_service import (
    ChannelResult,
    NotificationDispatcherBase,
    get_notification_dispatcher,
)
from app.services.payment_gateway import PaymentGatewayBase, PaymentLink, get_payment_gateway
from app.services.recovery_messages import build_recovery_message
from app.services.shipping_service import ShippingService, is_address_complete, normalize_address

logger = logging.getLogger(__name__)

MIN_PAYMENT_LINK_TTL = timedelta(minutes=10)
DEFAULT_PAYMENT_LINK_TTL = timedelta(hours=24)
PAYMENT_LINK_EXPIRY_MARGIN = timedelta(seconds=30)


@dataclass
class RecoveryStats:
    due: int = 0
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    recovered: int = 0
    expired: int = 0
    cancelled: int = 0
    batches: int = 0
    campaign_disabled: bool = False
    failed_reasons: dict[str, int] = field(default_factory=dict)

    def add_failure(self, message: str) -> None:
        self.failed += 1
        key = message[:200]
        self.failed_reasons[key] = self.failed_reasons.get(key, 0) + 1

    def merge(self, other: "RecoveryStats") -> None:
        for name in ("due", "processed", "sent", "skipped", "failed", "recovered", "expired", "cancelled"):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        for reason, count in other.failed_reasons.items():
            self.failed_reasons[reason] = self.failed_reasons.get(reason, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def schedule_base(journey: RecoveryJourney) -> datetime:
    """The later of the last activity and the last update."""
    candidates = [as_utc(journey.last_activity_at), as_utc(journey.updated_at)]  # type: ignore[arg-type]
    return max([value for value in candidates if value is not None], default=utc_now())


def payment_link_expiry(
    next_attempt_at: datetime | None, journey_expires_at: datetime | None, now: datetime
) -> datetime:
    """Expire a link at the next attempt or the journey end, whichever is sooner."""
    expiry = next_attempt_at
    if journey_expires_at is not None and (expiry is None or journey_expires_at < expiry):
        expiry = journey_expires_at
    if expiry is None:
        expiry = now + DEFAULT_PAYMENT_LINK_TTL
    if expiry <= now + PAYMENT_LINK_EXPIRY_MARGIN:
        expiry = now + MIN_PAYMENT_LINK_TTL
    return expiry


def recovery_references(journey_id: UUID, attempt_no: int) -> tuple[str, str]:
    """Gateway reference id and customer-facing order ref for a payment link."""
    stamp = to_base36(int(time.time() * 1000))
    token = journey_id.hex[:12]
    reference = f"ACR_{token}_{attempt_no}_{stamp}"[:40]
    order_ref = "".join(
        ch for ch in f"SSC-REC-{token}-{attempt_no}-{stamp}" if ch.isalnum() or ch == "-"
    )[:32].upper()
    return reference, order_ref


class AbandonedCartRecoveryService:
    """Processes due recovery journeys one at a time.

    Each journey loops until it is caught up: an attempt whose successor is
    already overdue is followed immediately by the next one.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayBase | None = None,
        dispatcher: NotificationDispatcherBase | None = None,
    ):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.journeys = RecoveryJourneyService(db)
        self.journey_repo = RecoveryJourneyRepository(db)
        self.cart_repo = CartRepository(db)
        self.user_repo = UserRepository(db)

    async def process_due(self, limit: int = 25) -> RecoveryStats:
        stats = RecoveryStats()
        campaign = self.journeys.get_campaign()
        if not campaign.enabled:
            stats.campaign_disabled = True
            return stats

        self.journeys.close_expired_journeys()
        self.journeys.close_empty_cart_journeys()

        due = self.journey_repo.get_due(utc_now(), DUE_GRACE_SECONDS, max(1, int(limit)))
        stats.due = len(due)
        for journey in due:
            stats.processed += 1
            await self._process_journey(journey, campaign, stats)
        return stats

    async def run_until_clear(
        self, limit: int | None = None, max_batches: int | None = None
    ) -> RecoveryStats:
        """Repeat ``process_due`` until a batch finds nothing due."""
        limit = limit or settings.RECOVERY_BATCH_LIMIT
        max_batches = max(1, max_batches or settings.RECOVERY_MAX_BATCHES)
        aggregate = RecoveryStats()
        for _ in range(max_batches):
            batch = await self.process_due(limit=limit)
            aggregate.batches += 1
            if batch.campaign_disabled:
                aggregate.campaign_disabled = True
                break
            aggregate.merge(batch)
            if batch.due == 0:
                break
        if aggregate.due:
            logger.info(
                "Recovery run: due=%s sent=%s skipped=%s failed=%s recovered=%s expired=%s cancelled=%s",
                aggregate.due,
                aggregate.sent,
                aggregate.skipped,
                aggregate.failed,
                aggregate.recovered,
                aggregate.expired,
                aggregate.cancelled,
            )
        return aggregate

    async def _process_journey(
        self, journey: RecoveryJourney, campaign: CampaignSettings, stats: RecoveryStats
    ) -> None:
        journey_id: UUID = journey.id  # type: ignore[assignment]
        base = schedule_base(journey)
        while True:
            try:
                caught_up = not await self._attempt_once(journey, campaign, base, stats)
            except Exception as exc:
                self.db.rollback()
                message = str(getattr(exc, "message", None) or exc) or "Recovery processing failed"
                logger.warning("Recovery attempt for journey %s failed: %s", journey_id, message)
                stats.add_failure(message)
                if not self._record_failure(journey_id, campaign, base, message):
                    return
                continue
            if caught_up:
                return

    async def _attempt_once(
        self,
        journey: RecoveryJourney,
        campaign: CampaignSettings,
        base: datetime,
        stats: RecoveryStats,
    ) -> bool:
        """Run one attempt. Returns True when the next attempt is already overdue."""
        user_id: UUID = journey.user_id  # type: ignore[assignment]

        paid = self.journeys.find_recovering_order(journey)
        if paid is not None:
            self.journeys.close_journey(
                journey, JourneyStatus.RECOVERED, "order_already_paid", order_id=paid.id  # type: ignore[arg-type]
            )
            self.db.commit()
            stats.recovered += 1
            return False

        lines = self.cart_repo.get_lines(user_id)
        item_count, cart_total = summarize_lines(lines)
        if item_count <= 0:
            self.journeys.close_journey(journey, JourneyStatus.CANCELLED, "cart_empty")
            self.db.commit()
            stats.cancelled += 1
            return False

        self.journeys.update_snapshot(journey, lines)

        last_attempt_no = int(journey.last_attempt_no or 0)
        attempt_no = last_attempt_no + 1
        if attempt_no > campaign.max_attempts:
            self.journeys.mark_journey_attempted(journey, last_attempt_no, None, expire=True)
            self.db.commit()
            stats.expired += 1
            return False

        user = self.user_repo.get_by_id(user_id)
        percent = 0
        if cart_total >= campaign.min_discount_cart_subunits:
            percent = campaign.discount_percent(attempt_no) + LoyaltyService(
                self.db
            ).abandoned_cart_boost(user_id)
        percent = max(0, min(percent, campaign.max_discount_percent))
        discount_subunits = percent_of(cart_total, percent)

        address = None
        if user is not None:
            address = normalize_address(user.address) or normalize_address(user.billing_address)
        weight_kg = sum(float(line.get("weight_kg") or 0) * int(line["quantity"]) for line in lines)
        shipping_fee = ShippingService(self.db).compute_fee(address, cart_total, weight_kg)
        total_with_shipping = cart_total + shipping_fee

        discount_code = None
        if percent > 0:
            discount = self.journeys.create_discount(
                journey, attempt_no, percent, cart_total, discount_subunits
            )
            discount_code = str(discount.code)
        self.db.commit()

        has_next = attempt_no + 1 <= campaign.max_attempts
        next_attempt_at = campaign.attempt_at(base, attempt_no + 1) if has_next else None
        now = utc_now()
        link_expiry = payment_link_expiry(next_attempt_at, as_utc(journey.expires_at), now)  # type: ignore[arg-type]

        has_mobile = bool(user is not None and str(user.mobile or "").strip())
        route_to_checkout = bool(discount_code) or not is_address_complete(address) or not has_mobile
        client_base = settings.CLIENT_BASE_URL.rstrip("/")
        checkout_url = None
        if route_to_checkout:
            checkout_url = f"{client_base}/checkout"
            if discount_code:
                checkout_url += f"?coupon={quote(discount_code)}"

        responses: dict[str, Any] = {}
        link: PaymentLink | None = None
        order_ref = None
        link_failed = False
        if campaign.send_payment_link and not route_to_checkout:
            try:
                link, order_ref = await self._create_payment_link(
                    journey, user, attempt_no, total_with_shipping, shipping_fee, link_expiry, campaign
                )
                responses["payment_link"] = {"ok": True, "id": link.id, "short_url": link.short_url}
            except GatewayError as exc:
                link_failed = True
                logger.warning("Payment link for journey %s failed: %s", journey.id, exc.message)
                responses["payment_link"] = {"ok": False, "error": exc.message}

        link_url = link.short_url if link is not None else None
        payload = {
            "journeyId": str(journey.id),
            "attemptNo": attempt_no,
            "cartValueSubunits": cart_total,
            "shippingFeeSubunits": shipping_fee,
            "totalWithShippingSubunits": total_with_shipping,
            "discountCode": discount_code,
            "discountPercent": percent,
            "paymentLinkUrl": link_url,
            "checkoutUrl": checkout_url,
            "orderRef": order_ref,
        }

        channels: list[str] = []
        hard_failure: str | None = None

        if campaign.send_email and user is not None and user.email:
            message = build_recovery_message(
                customer_name=user.name,  # type: ignore[arg-type]
                items=lines,
                cart_total_subunits=cart_total,
                currency=str(journey.currency or settings.DEFAULT_CURRENCY),
                attempt_no=attempt_no,
                discount_code=discount_code,
                discount_percent=percent,
                payment_link_url=link_url,
                checkout_url=checkout_url,
                shipping_fee_subunits=shipping_fee,
                total_with_shipping_subunits=total_with_shipping,
                link_expiry=link_expiry,
            )
            result = await self._send(
                "email",
                self.dispatcher.send_email(str(user.email), message.subject, message.html, message.text),
            )
            responses["email"] = result.to_dict()
            if result.ok:
                channels.append("email")
            else:
                hard_failure = result.error or "Email send failed"
        else:
            responses["email"] = {"ok": False, "skipped": True, "reason": "email_disabled_or_missing"}

        if campaign.send_whatsapp:
            result = await self._send(
                "whatsapp",
                self.dispatcher.send_whatsapp(
                    {
                        "type": "abandoned_cart_recovery",
                        "journeyId": str(journey.id),
                        "userId": str(user_id),
                        "attemptNo": attempt_no,
                        "discountCode": discount_code,
                        "paymentLink": link_url,
                        "checkoutLink": checkout_url,
                    }
                ),
            )
            responses["whatsapp"] = result.to_dict()
            if result.ok:
                channels.append("whatsapp")
            else:
                hard_failure = hard_failure or result.error or "WhatsApp send failed"
        else:
            responses["whatsapp"] = {"ok": False, "skipped": True, "reason": "whatsapp_disabled"}

        if not channels and hard_failure:
            status = AttemptStatus.FAILED
        elif not channels:
            status = AttemptStatus.SKIPPED
        elif hard_failure or link_failed:
            status = AttemptStatus.PARTIAL
        else:
            status = AttemptStatus.SENT

        self.journeys.add_attempt(
            journey,
            attempt_no,
            status,
            channels=[{"channel": channel} for channel in channels],
            discount_code=discount_code,
            discount_percent=percent,
            payment_link_id=link.id if link is not None else None,
            payment_link_url=link_url,
            payload=payload,
            response=responses,
            error_message=hard_failure if status == AttemptStatus.FAILED else None,
        )
        self.journeys.mark_journey_attempted(
            journey, attempt_no, next_attempt_at, expire=not has_next
        )
        self.db.commit()

        if status == AttemptStatus.FAILED:
            logger.warning("Recovery attempt for journey %s failed: %s", journey.id, hard_failure)
            stats.add_failure(hard_failure or "Recovery delivery failed")
        elif channels:
            stats.sent += 1
        else:
            stats.skipped += 1
        return bool(has_next and next_attempt_at is not None and next_attempt_at <= utc_now())

    async def _send(self, channel: str, send: Any) -> ChannelResult:
        try:
            result: ChannelResult = await send
        except Exception as exc:
            logger.warning("Recovery %s channel failed: %s", channel, exc)
            return ChannelResult(channel, ok=False, error=str(exc)[:300] or f"{channel} send failed")
        return result

    async def _create_payment_link(
        self,
        journey: RecoveryJourney,
        user: User | None,
        attempt_no: int,
        amount_subunits: int,
        shipping_fee_subunits: int,
        expire_by: datetime,
        campaign: CampaignSettings,
    ) -> tuple[PaymentLink, str]:
        journey_id: UUID = journey.id  # type: ignore[assignment]
        reference, order_ref = recovery_references(journey_id, attempt_no)
        customer = {}
        if user is not None:
            customer = {"name": user.name, "email": user.email, "contact": user.mobile}
        link = await asyncio.to_thread(
            self.gateway.create_payment_link,
            amount_subunits=amount_subunits,
            currency=str(journey.currency or settings.DEFAULT_CURRENCY),
            description=f"Order {order_ref}",
            reference_id=reference,
            expire_by=expire_by,
            customer=customer,
            callback_url=f"{settings.CLIENT_BASE_URL.rstrip('/')}/payment/success",
            reminder_enable=campaign.reminder_enable,
            notes={
                "journeyId": str(journey_id),
                "attemptNo": str(attempt_no),
                "userId": str(journey.user_id)[:50],
                "orderRef": order_ref,
                "shippingFeeSubunits": str(shipping_fee_subunits),
            },
        )
        return link, order_ref

    def _record_failure(
        self, journey_id: UUID, campaign: CampaignSettings, base: datetime, message: str
    ) -> bool:
        """Record a failed attempt and still advance the journey.

        Returns True when the next attempt is already overdue.
        """
        try:
            journey = self.journey_repo.get_by_id(journey_id)
            if journey is None or journey.status != JourneyStatus.ACTIVE.value:
                return False
            attempt_no = int(journey.last_attempt_no or 0) + 1
            if attempt_no > campaign.max_attempts:
                self.journeys.mark_journey_attempted(
                    journey, int(journey.last_attempt_no or 0), None, expire=True
                )
                self.db.commit()
                return False
            self.journeys.add_attempt(
                journey, attempt_no, AttemptStatus.FAILED, error_message=message
            )
            has_next = attempt_no + 1 <= campaign.max_attempts
            next_attempt_at = campaign.attempt_at(base, attempt_no + 1) if has_next else None
            self.journeys.mark_journey_attempted(
                journey, attempt_no, next_attempt_at, expire=not has_next
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Could not record failed attempt for journey %s", journey_id)
            return False
        return next_attempt_at is not None and next_attempt_at <= utc_now()
