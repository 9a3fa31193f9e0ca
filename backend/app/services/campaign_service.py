"""Recovery campaign configuration and ladder arithmetic."""

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import ValidationFailure
from app.models.recovery_campaign import RecoveryCampaign
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.shared import as_utc, utc_now
from app.repositories.recovery_campaign_repository import RecoveryCampaignRepository
from app.repositories.recovery_discount_repository import RecoveryDiscountRepository
from app.repositories.recovery_journey_repository import RecoveryJourneyRepository

logger = logging.getLogger(__name__)

MAX_CAMPAIGN_ATTEMPTS = 6
DUE_GRACE_SECONDS = 90
RECOVERY_WINDOW_BUFFER_HOURS = 2

DEFAULT_ATTEMPT_DELAYS = (30, 360, 1440, 2880)
DEFAULT_DISCOUNT_LADDER = (0, 0, 5, 10)


@dataclass
class CampaignSettings:
    """Effective campaign values, with the attempt and discount ladders."""

    enabled: bool = True
    inactivity_minutes: int = 30
    max_attempts: int = 4
    attempt_delays_minutes: list[int] = field(default_factory=lambda: list(DEFAULT_ATTEMPT_DELAYS))
    discount_ladder_percent: list[int] = field(
        default_factory=lambda: list(DEFAULT_DISCOUNT_LADDER)
    )
    max_discount_percent: int = 25
    min_discount_cart_subunits: int = 0
    recovery_window_hours: int = 72
    send_email: bool = True
    send_whatsapp: bool = True
    send_payment_link: bool = True
    reminder_enable: bool = True

    @classmethod
    def from_model(cls, campaign: RecoveryCampaign | None) -> "CampaignSettings":
        if campaign is None:
            return cls()
        defaults = cls()
        delays = campaign.attempt_delays_minutes or defaults.attempt_delays_minutes
        ladder = campaign.discount_ladder_percent or defaults.discount_ladder_percent
        return cls(
            enabled=bool(campaign.enabled),
            inactivity_minutes=int(campaign.inactivity_minutes or defaults.inactivity_minutes),
            max_attempts=int(campaign.max_attempts or defaults.max_attempts),
            attempt_delays_minutes=[int(value or 0) for value in delays],
            discount_ladder_percent=[int(value or 0) for value in ladder],
            max_discount_percent=int(campaign.max_discount_percent or defaults.max_discount_percent),
            min_discount_cart_subunits=max(0, int(campaign.min_discount_cart_subunits or 0)),
            recovery_window_hours=int(
                campaign.recovery_window_hours or defaults.recovery_window_hours
            ),
            send_email=bool(campaign.send_email),
            send_whatsapp=bool(campaign.send_whatsapp),
            send_payment_link=bool(campaign.send_payment_link),
            reminder_enable=bool(campaign.reminder_enable),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def delay_minutes(self, attempt_no: int) -> int:
        """Delay before ``attempt_no``; the last ladder entry repeats past the end."""
        index = max(0, int(attempt_no or 1) - 1)
        delays = self.attempt_delays_minutes
        if index < len(delays):
            raw = delays[index]
        else:
            raw = (delays[-1] if delays else 0) or self.inactivity_minutes
        return max(1, int(raw))

    def discount_percent(self, attempt_no: int) -> int:
        index = max(0, int(attempt_no or 1) - 1)
        ladder = self.discount_ladder_percent
        if index < len(ladder):
            raw = ladder[index]
        else:
            raw = ladder[-1] if ladder else 0
        return max(0, min(int(raw or 0), self.max_discount_percent))

    def attempt_at(self, last_activity_at: datetime, attempt_no: int) -> datetime:
        """Time of ``attempt_no`` measured from the last activity.

        Delays are cumulative: attempt 3 fires after delay 1 + delay 2 + delay 3.
        """
        total = sum(self.delay_minutes(n) for n in range(1, max(1, int(attempt_no)) + 1))
        return last_activity_at + timedelta(minutes=total)

    def window_end(self, start: datetime) -> datetime:
        return start + timedelta(hours=self.recovery_window_hours)


def _positive_int(value: Any, name: str, minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float) or int(value) != value:
        raise ValidationFailure(f"{name} must be an integer >= {minimum}")
    number = int(value)
    if number < minimum:
        raise ValidationFailure(f"{name} must be an integer >= {minimum}")
    return number


def _int_list(values: Any, name: str, minimum: int = 0) -> list[int]:
    if not isinstance(values, list | tuple):
        raise ValidationFailure(f"{name} must be an array of integers")
    if not values:
        raise ValidationFailure(f"{name} cannot be empty")
    result = []
    for entry in values:
        if isinstance(entry, bool) or not isinstance(entry, int | float) or int(entry) != entry:
            raise ValidationFailure(f'{name} contains invalid value "{entry}"')
        if int(entry) < minimum:
            raise ValidationFailure(f'{name} contains invalid value "{entry}"')
        result.append(int(entry))
    return result


def validate_campaign(values: dict[str, Any]) -> CampaignSettings:
    """Validate a full set of campaign values.

    Raises:
        ValidationFailure: when a value is out of bounds or the ladders do not
            match ``max_attempts``.
    """
    defaults = CampaignSettings()
    max_attempts = _positive_int(values.get("max_attempts", defaults.max_attempts), "max_attempts")
    if max_attempts > MAX_CAMPAIGN_ATTEMPTS:
        raise ValidationFailure(f"max_attempts cannot exceed {MAX_CAMPAIGN_ATTEMPTS}")
    inactivity = _positive_int(
        values.get("inactivity_minutes", defaults.inactivity_minutes), "inactivity_minutes"
    )
    window_input = _positive_int(
        values.get("recovery_window_hours", defaults.recovery_window_hours),
        "recovery_window_hours",
    )
    max_discount = _positive_int(
        values.get("max_discount_percent", defaults.max_discount_percent),
        "max_discount_percent",
        minimum=0,
    )
    if max_discount > 100:
        raise ValidationFailure("max_discount_percent cannot exceed 100")
    min_cart = _positive_int(
        values.get("min_discount_cart_subunits", defaults.min_discount_cart_subunits),
        "min_discount_cart_subunits",
        minimum=0,
    )
    delays = _int_list(
        values.get("attempt_delays_minutes") or defaults.attempt_delays_minutes,
        "attempt_delays_minutes",
        minimum=1,
    )
    ladder = _int_list(
        values.get("discount_ladder_percent") or defaults.discount_ladder_percent,
        "discount_ladder_percent",
    )
    if len(delays) != max_attempts:
        raise ValidationFailure(f"attempt_delays_minutes must contain exactly {max_attempts} values")
    if len(ladder) != max_attempts:
        raise ValidationFailure(f"discount_ladder_percent must contain exactly {max_attempts} values")
    if any(percent > max_discount for percent in ladder):
        raise ValidationFailure("discount_ladder_percent cannot exceed max_discount_percent")

    min_window = max(1, math.ceil(sum(delays) / 60) + RECOVERY_WINDOW_BUFFER_HOURS)

    return CampaignSettings(
        enabled=bool(values.get("enabled", defaults.enabled)),
        inactivity_minutes=inactivity,
        max_attempts=max_attempts,
        attempt_delays_minutes=delays,
        discount_ladder_percent=ladder,
        max_discount_percent=max_discount,
        min_discount_cart_subunits=min_cart,
        recovery_window_hours=max(window_input, min_window),
        send_email=bool(values.get("send_email", defaults.send_email)),
        send_whatsapp=bool(values.get("send_whatsapp", defaults.send_whatsapp)),
        send_payment_link=bool(values.get("send_payment_link", defaults.send_payment_link)),
        reminder_enable=bool(values.get("reminder_enable", defaults.reminder_enable)),
    )


def scheduled_next_attempt_at(
    journey: RecoveryJourney, campaign: CampaignSettings
) -> datetime | None:
    """Next attempt time as the current campaign would schedule it."""
    if journey.status != JourneyStatus.ACTIVE.value:
        return None
    next_no = int(journey.last_attempt_no or 0) + 1
    if next_no > max(1, campaign.max_attempts):
        return None
    bases = [as_utc(journey.last_activity_at), as_utc(journey.updated_at)]
    base = max([value for value in bases if value is not None], default=utc_now())
    computed = campaign.attempt_at(base, next_no)
    expires_at = as_utc(journey.expires_at)
    if expires_at is not None and computed > expires_at:
        return None
    return computed


def is_abandoned_ready(
    journey: RecoveryJourney, campaign: CampaignSettings, now: datetime | None = None
) -> bool:
    """Whether the journey has crossed the inactivity threshold (or is already in motion)."""
    if journey.status != JourneyStatus.ACTIVE.value:
        return True
    if int(journey.last_attempt_no or 0) > 0:
        return True
    last_activity = as_utc(journey.last_activity_at)
    if last_activity is None:
        return True
    now = now or utc_now()
    return now - last_activity >= timedelta(minutes=max(1, campaign.inactivity_minutes))


class RecoveryCampaignService:
    """Reads, validates and stores the singleton recovery campaign."""

    def __init__(self, db: Session):
        self.db = db
        self.campaign_repo = RecoveryCampaignRepository(db)
        self.journey_repo = RecoveryJourneyRepository(db)
        self.discount_repo = RecoveryDiscountRepository(db)

    def get_campaign(self) -> CampaignSettings:
        return CampaignSettings.from_model(self.campaign_repo.get())

    def update_campaign(self, changes: dict[str, Any]) -> CampaignSettings:
        """Merge ``changes`` into the stored campaign, persist, and realign journeys."""
        merged = self.get_campaign().to_dict()
        merged.update({key: value for key, value in changes.items() if value is not None})
        campaign = validate_campaign(merged)
        self.campaign_repo.save(campaign.to_dict())
        realigned = self.realign_active_journeys(campaign)
        logger.info(
            "Recovery campaign updated: max_attempts=%s, realigned=%s, expired=%s",
            campaign.max_attempts,
            realigned["rescheduled"],
            realigned["expired"],
        )
        return campaign

    def realign_active_journeys(self, campaign: CampaignSettings) -> dict[str, int]:
        """Recompute every active journey's next attempt under ``campaign``.

        Journeys whose next attempt number no longer fits are expired.
        """
        rescheduled = 0
        expired = 0
        max_attempts = max(1, campaign.max_attempts)
        for journey in self.journey_repo.list_active():
            next_no = int(journey.last_attempt_no or 0) + 1
            if next_no > max_attempts:
                journey.status = JourneyStatus.EXPIRED.value  # type: ignore[assignment]
                journey.next_attempt_at = None  # type: ignore[assignment]
                if not journey.recovery_reason:
                    journey.recovery_reason = "max_attempts_reached"  # type: ignore[assignment]
                self.discount_repo.invalidate_active(journey.id)  # type: ignore[arg-type]
                expired += 1
                continue
            journey.next_attempt_at = scheduled_next_attempt_at(journey, campaign)  # type: ignore[assignment]
            rescheduled += 1
        self.db.commit()
        return {"rescheduled": rescheduled, "expired": expired}
