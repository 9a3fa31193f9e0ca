"""Recovery journey lifecycle: candidates, journeys, discounts and reporting."""

import logging
import secrets
import string
import time
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFound
from app.models.cart_candidate import CartCandidate
from app.models.order import Order
from app.models.recovery_attempt import AttemptStatus, RecoveryAttempt
from app.models.recovery_discount import RecoveryDiscount
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.shared import as_utc, utc_now
from app.models.user import User
from app.repositories.cart_candidate_repository import CartCandidateRepository
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.repositories.order_repository import OrderRepository
from app.repositories.recovery_attempt_repository import RecoveryAttemptRepository
from app.repositories.recovery_discount_repository import RecoveryDiscountRepository
from app.repositories.recovery_journey_repository import JOURNEY_SORTS, RecoveryJourneyRepository
from app.services.campaign_service import (
    CampaignSettings,
    RecoveryCampaignService,
    scheduled_next_attempt_at,
)

logger = logging.getLogger(__name__)

DISCOUNT_TTL_HOURS = 24
BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    value = abs(int(value))
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def _reason(value: str | None, default: str) -> str:
    return str(value or default)[:200]


class RecoveryJourneyService:
    """Owns the candidate, journey, attempt and discount lifecycle."""

    def __init__(self, db: Session):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.candidate_repo = CartCandidateRepository(db)
        self.journey_repo = RecoveryJourneyRepository(db)
        self.attempt_repo = RecoveryAttemptRepository(db)
        self.discount_repo = RecoveryDiscountRepository(db)
        self.order_repo = OrderRepository(db)

    def get_campaign(self) -> CampaignSettings:
        return RecoveryCampaignService(self.db).get_campaign()

    # Cart activity

    def evaluate_cart_activity(self, user_id: UUID, reason: str | None = None) -> str:
        """Re-read the cart after a mutation and move the user's recovery state.

        Returns the outcome: ``cleared``, ``recovered``, ``journey_touched`` or
        ``candidate_upserted``.
        """
        campaign = self.get_campaign()
        lines = self.cart_repo.get_lines(user_id)
        item_count, total = summarize_lines(lines)

        if item_count <= 0:
            self.candidate_repo.delete(user_id, commit=False)
            outcome = "cleared"
            active = self.journey_repo.get_active_by_user(user_id, lock=True)
            if active is not None:
                paid = self.find_recovering_order(active)
                if paid is not None:
                    self.close_journey(
                        active, JourneyStatus.RECOVERED, "order_paid", order_id=paid.id  # type: ignore[arg-type]
                    )
                    outcome = "recovered"
                else:
                    self.close_journey(active, JourneyStatus.CANCELLED, _reason(reason, "cart_empty"))
            self.db.commit()
            return outcome

        active = self.journey_repo.get_active_by_user(user_id, lock=True)
        if active is not None:
            self.touch_journey(active, lines, campaign)
            self.candidate_repo.delete(user_id, commit=False)
            self.db.commit()
            return "journey_touched"

        self.candidate_repo.upsert(
            user_id,
            cart_item_count=item_count,
            cart_total_subunits=total,
            currency=settings.DEFAULT_CURRENCY,
        )
        return "candidate_upserted"

    def touch_journey(
        self, journey: RecoveryJourney, lines: list[dict[str, Any]], campaign: CampaignSettings
    ) -> RecoveryJourney:
        """Restart the ladder from now. Does not commit."""
        now = utc_now()
        item_count, total = summarize_lines(lines)
        journey.cart_snapshot = lines  # type: ignore[assignment]
        journey.cart_item_count = item_count  # type: ignore[assignment]
        journey.cart_total_subunits = total  # type: ignore[assignment]
        journey.last_activity_at = now  # type: ignore[assignment]
        journey.last_attempt_no = 0  # type: ignore[assignment]
        journey.next_attempt_at = campaign.attempt_at(now, 1)  # type: ignore[assignment]
        journey.expires_at = campaign.window_end(now)  # type: ignore[assignment]
        journey.status = JourneyStatus.ACTIVE.value  # type: ignore[assignment]
        journey.recovered_order_id = None  # type: ignore[assignment]
        journey.recovered_at = None  # type: ignore[assignment]
        journey.recovery_reason = None  # type: ignore[assignment]
        self.db.flush()
        return journey

    def update_snapshot(self, journey: RecoveryJourney, lines: list[dict[str, Any]]) -> None:
        """Store the live cart on the journey. Does not commit."""
        item_count, total = summarize_lines(lines)
        journey.cart_snapshot = lines  # type: ignore[assignment]
        journey.cart_item_count = item_count  # type: ignore[assignment]
        journey.cart_total_subunits = total  # type: ignore[assignment]
        self.db.flush()

    # Promotion and closing

    def promote_candidate(
        self, candidate: CartCandidate, campaign: CampaignSettings
    ) -> RecoveryJourney | None:
        """Create an active journey from a quiet candidate and drop the candidate.

        Returns None when the user already has an active journey. Commits.
        """
        user_id: UUID = candidate.user_id  # type: ignore[assignment]
        existing = self.journey_repo.get_active_by_user(user_id, lock=True)
        if existing is not None:
            self.candidate_repo.delete(user_id, commit=False)
            self.db.commit()
            return None

        now = utc_now()
        lines = self.cart_repo.get_lines(user_id)
        item_count, total = summarize_lines(lines)
        journey = RecoveryJourney(
            user_id=user_id,
            status=JourneyStatus.ACTIVE.value,
            cart_item_count=item_count or int(candidate.cart_item_count or 0),
            cart_total_subunits=total or int(candidate.cart_total_subunits or 0),
            currency=candidate.currency or settings.DEFAULT_CURRENCY,
            cart_snapshot=lines,
            last_activity_at=as_utc(candidate.last_activity_at) or now,  # type: ignore[arg-type]
            last_attempt_no=0,
            next_attempt_at=campaign.attempt_at(now, 1),
            expires_at=campaign.window_end(now),
        )
        try:
            self.journey_repo.add(journey)
            self.candidate_repo.delete(user_id, commit=False)
            self.db.commit()
        except IntegrityError:
            # A concurrent promotion won the partial unique index
            self.db.rollback()
            self.candidate_repo.delete(user_id)
            return None
        logger.info("Promoted cart candidate for user %s to journey %s", user_id, journey.id)
        return journey

    def close_journey(
        self,
        journey: RecoveryJourney,
        status: JourneyStatus,
        reason: str,
        order_id: UUID | None = None,
        invalidate_discounts: bool = True,
    ) -> None:
        """Move a journey to a terminal status. Does not commit."""
        journey.status = status.value  # type: ignore[assignment]
        journey.next_attempt_at = None  # type: ignore[assignment]
        journey.recovery_reason = reason[:200]  # type: ignore[assignment]
        if status == JourneyStatus.RECOVERED:
            journey.recovered_order_id = order_id  # type: ignore[assignment]
            journey.recovered_at = utc_now()  # type: ignore[assignment]
        if invalidate_discounts:
            self.discount_repo.invalidate_active(journey.id)  # type: ignore[arg-type]
        self.db.flush()

    def close_expired_journeys(self) -> int:
        """Expire active journeys whose recovery window has passed. Commits."""
        journeys = self.journey_repo.list_active_past_expiry(utc_now())
        for journey in journeys:
            self.close_journey(journey, JourneyStatus.EXPIRED, "window_expired")
        self.db.commit()
        return len(journeys)

    def close_empty_cart_journeys(self) -> int:
        """Cancel active journeys whose cart is now empty. Commits."""
        journeys = self.journey_repo.list_active_with_empty_carts()
        for journey in journeys:
            self.close_journey(journey, JourneyStatus.CANCELLED, "cart_empty")
        self.db.commit()
        return len(journeys)

    def find_recovering_order(self, journey: RecoveryJourney) -> Order | None:
        """A paid order placed by the user inside the journey's validity window."""
        started = as_utc(journey.created_at) or utc_now()  # type: ignore[arg-type]
        order = self.order_repo.find_paid_since(journey.user_id, started)  # type: ignore[arg-type]
        if order is None:
            return None
        expires_at = as_utc(journey.expires_at)  # type: ignore[arg-type]
        placed_at = as_utc(order.created_at)  # type: ignore[arg-type]
        if expires_at is not None and placed_at is not None and placed_at > expires_at:
            return None
        return order

    def mark_recovered_by_order(
        self, order: Order, reason: str = "order_paid", commit: bool = False
    ) -> RecoveryJourney | None:
        """Attribute a paid order to a journey.

        Looks at the order's ``abandoned_journey_id`` first, then the user's
        active journey, then the latest unrecovered journey within the
        recovery window.
        """
        order_id: UUID = order.id  # type: ignore[assignment]
        user_id: UUID = order.user_id  # type: ignore[assignment]
        journey: RecoveryJourney | None = None
        if order.abandoned_journey_id is not None:
            journey = self.journey_repo.get_by_id(order.abandoned_journey_id)  # type: ignore[arg-type]
            if journey is not None and journey.status == JourneyStatus.RECOVERED.value:
                journey = None
        if journey is None:
            journey = self.journey_repo.get_active_by_user(user_id, lock=True)
        if journey is None:
            campaign = self.get_campaign()
            since = utc_now() - timedelta(hours=campaign.recovery_window_hours)
            journey = self.journey_repo.get_latest_unrecovered(user_id, since)
        if journey is None:
            return None
        self.close_journey(journey, JourneyStatus.RECOVERED, reason, order_id=order_id)
        self.candidate_repo.delete(user_id, commit=False)
        if commit:
            self.db.commit()
        logger.info("Journey %s recovered by order %s", journey.id, order.order_ref)
        return journey

    # Attempts and discounts

    def create_discount(
        self,
        journey: RecoveryJourney,
        attempt_no: int,
        percent: int,
        cart_total_subunits: int,
        discount_subunits: int,
    ) -> RecoveryDiscount:
        """Issue the single active discount for ``journey`` at ``attempt_no``.

        An active discount for the same attempt is reused; any other active
        discount on the journey is invalidated. Does not commit.
        """
        journey_id: UUID = journey.id  # type: ignore[assignment]
        existing = self.discount_repo.get_active_for_attempt(journey_id, attempt_no)
        if existing is not None:
            self.discount_repo.invalidate_active(journey_id, exclude_id=existing.id)  # type: ignore[arg-type]
            return existing

        self.discount_repo.invalidate_active(journey_id)
        discount = RecoveryDiscount(
            journey_id=journey_id,
            user_id=journey.user_id,
            attempt_no=attempt_no,
            code=self._generate_discount_code(journey_id, attempt_no),
            discount_type="percent",
            discount_percent=int(percent),
            max_discount_subunits=int(discount_subunits),
            min_cart_subunits=int(cart_total_subunits),
            expires_at=utc_now() + timedelta(hours=DISCOUNT_TTL_HOURS),
        )
        return self.discount_repo.add(discount)

    def _generate_discount_code(self, journey_id: UUID, attempt_no: int) -> str:
        alphabet = string.ascii_uppercase + string.digits
        tail = journey_id.hex[-2:].rjust(2, "0")
        while True:
            stamp = to_base36(int(time.time() * 1000))[-4:]
            rand = "".join(secrets.choice(alphabet) for _ in range(4))
            code = f"REC-{tail}{attempt_no}-{stamp}{rand}"[:24].upper()
            if not self.discount_repo.code_exists(code):
                return code

    def add_attempt(
        self,
        journey: RecoveryJourney,
        attempt_no: int,
        status: AttemptStatus,
        channels: list[dict[str, Any]] | None = None,
        discount_code: str | None = None,
        discount_percent: int = 0,
        payment_link_id: str | None = None,
        payment_link_url: str | None = None,
        payload: dict[str, Any] | None = None,
        response: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> RecoveryAttempt:
        """Append an attempt row. Does not commit."""
        now = utc_now()
        sent = status in (AttemptStatus.SENT, AttemptStatus.PARTIAL)
        attempt = RecoveryAttempt(
            journey_id=journey.id,
            attempt_no=attempt_no,
            status=status.value,
            channels=channels or [],
            discount_code=discount_code,
            discount_percent=int(discount_percent or 0),
            payment_link_id=payment_link_id,
            payment_link_url=payment_link_url,
            payload=payload,
            response=response,
            error_message=str(error_message)[:500] if error_message else None,
            scheduled_at=journey.next_attempt_at,
            sent_at=now if sent else None,
        )
        return self.attempt_repo.add(attempt)

    def mark_journey_attempted(
        self,
        journey: RecoveryJourney,
        attempt_no: int,
        next_attempt_at: datetime | None,
        expire: bool = False,
    ) -> None:
        """Advance the journey past ``attempt_no``. Does not commit.

        Expiring here keeps the discount issued by the final attempt
        redeemable until its own expiry.
        """
        journey.last_attempt_no = attempt_no  # type: ignore[assignment]
        if expire:
            journey.status = JourneyStatus.EXPIRED.value  # type: ignore[assignment]
            journey.next_attempt_at = None  # type: ignore[assignment]
            if not journey.recovery_reason:
                journey.recovery_reason = "max_attempts_reached"  # type: ignore[assignment]
        else:
            journey.next_attempt_at = next_attempt_at  # type: ignore[assignment]
        self.db.flush()

    def mark_attempt_paid(self, payment_link_id: str, payment_id: str | None) -> int:
        return self.attempt_repo.mark_paid_by_payment_link(payment_link_id, payment_id)

    # Admin reporting

    def list_journeys(
        self,
        status: str = "all",
        search: str = "",
        sort_by: str = "newest",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """Page of journeys for the admin screen with customer details.

        Active journeys still inside the inactivity threshold are hidden, and
        ``next_attempt_at`` reflects the current campaign.
        """
        campaign = self.get_campaign()
        if sort_by not in JOURNEY_SORTS:
            sort_by = "newest"
        quiet_since = utc_now() - timedelta(minutes=max(1, campaign.inactivity_minutes))
        rows, total = self.journey_repo.list_advanced(
            status=status,
            search=search,
            sort_by=sort_by,
            limit=max(1, min(int(limit), 200)),
            offset=max(0, int(offset)),
            quiet_since=quiet_since,
        )
        return [self._journey_row(journey, user, last_at, campaign) for journey, user, last_at in rows], total

    def _journey_row(
        self,
        journey: RecoveryJourney,
        user: User | None,
        last_attempt_at: datetime | None,
        campaign: CampaignSettings,
    ) -> dict[str, Any]:
        row = {column.name: getattr(journey, column.name) for column in RecoveryJourney.__table__.columns}
        if journey.status == JourneyStatus.ACTIVE.value:
            row["next_attempt_at"] = scheduled_next_attempt_at(journey, campaign)
        row["cart_snapshot"] = journey.cart_snapshot or []
        row["customer_name"] = user.name if user is not None else None
        row["customer_email"] = user.email if user is not None else None
        row["customer_mobile"] = user.mobile if user is not None else None
        row["last_attempt_at"] = last_attempt_at
        return row

    def get_timeline(self, journey_id: UUID) -> dict[str, Any]:
        journey = self.journey_repo.get_by_id(journey_id)
        if journey is None:
            raise NotFound(f"Journey {journey_id} not found")
        campaign = self.get_campaign()
        attempts = sorted(
            self.attempt_repo.list_by_journey(journey_id),
            key=lambda attempt: (int(attempt.attempt_no), as_utc(attempt.created_at) or utc_now()),  # type: ignore[arg-type]
        )
        user = self.db.query(User).filter(User.id == journey.user_id).first()
        last_attempt_at = max(
            (as_utc(attempt.created_at) for attempt in attempts if attempt.created_at is not None),  # type: ignore[arg-type]
            default=None,
        )
        return {
            "journey": self._journey_row(journey, user, last_attempt_at, campaign),
            "attempts": attempts,
            "discounts": self.discount_repo.list_by_journey(journey_id),
        }

    def get_insights(self, days: int = 30) -> dict[str, Any]:
        days = max(1, int(days or 30))
        since = utc_now() - timedelta(days=days)
        journeys = self.journey_repo.status_totals_since(since)
        attempts = self.attempt_repo.totals_since(since)
        total = journeys["total"]
        recovered = journeys["recovered"]

        daily: OrderedDict[str, dict[str, Any]] = OrderedDict()
        for journey in self.journey_repo.list_created_since(since):
            created = as_utc(journey.created_at) or utc_now()  # type: ignore[arg-type]
            key = created.date().isoformat()
            point = daily.setdefault(
                key, {"date": key, "created": 0, "recovered": 0, "recovered_value_subunits": 0}
            )
            point["created"] += 1
            if journey.status == JourneyStatus.RECOVERED.value:
                point["recovered"] += 1
                point["recovered_value_subunits"] += int(journey.cart_total_subunits or 0)

        return {
            "days": days,
            "journeys": {key: value for key, value in journeys.items() if key != "recovered_value_subunits"},
            "recovery_rate_percent": round(recovered / total * 100, 2) if total else 0.0,
            "recovered_value_subunits": journeys["recovered_value_subunits"],
            "attempts": attempts,
            "daily": list(daily.values()),
        }
