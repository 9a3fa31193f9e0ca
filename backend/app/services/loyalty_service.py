"""Loyalty tiers computed from recent paid spend."""

from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.shared import utc_now
from app.repositories.order_repository import OrderRepository


@dataclass(frozen=True)
class LoyaltyTier:
    name: str
    threshold_subunits: int
    window_days: int
    abandoned_cart_boost_percent: int


# Highest tier first; the first tier whose window spend meets its threshold wins.
TIERS = (
    LoyaltyTier("platinum", 100_000_00, 365, 10),
    LoyaltyTier("gold", 25_000_00, 90, 6),
    LoyaltyTier("silver", 10_000_00, 60, 4),
    LoyaltyTier("bronze", 5_000_00, 30, 2),
)
REGULAR = LoyaltyTier("regular", 0, 30, 0)
TIER_NAMES = ("regular", "bronze", "silver", "gold", "platinum")


def get_tier(name: str | None) -> LoyaltyTier:
    for tier in TIERS:
        if tier.name == (name or "").lower():
            return tier
    return REGULAR


class LoyaltyService:
    def __init__(self, db: Session):
        self.db = db
        self.order_repo = OrderRepository(db)

    def spend_windows(self, user_id: UUID) -> dict[int, int]:
        now = utc_now()
        windows = sorted({tier.window_days for tier in TIERS})
        return {
            days: self.order_repo.paid_spend_since(user_id, now - timedelta(days=days))
            for days in windows
        }

    def get_tier(self, user_id: UUID) -> LoyaltyTier:
        spends = self.spend_windows(user_id)
        for tier in TIERS:
            if spends.get(tier.window_days, 0) >= tier.threshold_subunits:
                return tier
        return REGULAR

    def abandoned_cart_boost(self, user_id: UUID) -> int:
        return self.get_tier(user_id).abandoned_cart_boost_percent
