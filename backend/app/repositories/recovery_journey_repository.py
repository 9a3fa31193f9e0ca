"""RecoveryJourney repository.

Mutating helpers flush only; the recovery services own the commit so a
journey transition and its discount invalidation land together.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import String, and_, case, cast, func, or_
from sqlalchemy.orm import Session

from app.models.cart_item import CartItem
from app.models.recovery_attempt import RecoveryAttempt
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.user import User

JOURNEY_SORTS = ("newest", "oldest", "highest_value", "lowest_value", "next_due")


class RecoveryJourneyRepository:
    """Repository for RecoveryJourney model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, journey_id: UUID) -> RecoveryJourney | None:
        return self.db.query(RecoveryJourney).filter(RecoveryJourney.id == journey_id).first()

    def get_active_by_user(self, user_id: UUID, lock: bool = False) -> RecoveryJourney | None:
        query = self.db.query(RecoveryJourney).filter(
            RecoveryJourney.user_id == user_id,
            RecoveryJourney.status == JourneyStatus.ACTIVE.value,
        )
        if lock:
            query = query.with_for_update()
        return query.order_by(RecoveryJourney.created_at.desc()).first()

    def add(self, journey: RecoveryJourney) -> RecoveryJourney:
        self.db.add(journey)
        self.db.flush()
        return journey

    def list_active(self) -> list[RecoveryJourney]:
        return (
            self.db.query(RecoveryJourney)
            .filter(RecoveryJourney.status == JourneyStatus.ACTIVE.value)
            .all()
        )

    def list_active_past_expiry(self, now: datetime) -> list[RecoveryJourney]:
        return (
            self.db.query(RecoveryJourney)
            .filter(
                RecoveryJourney.status == JourneyStatus.ACTIVE.value,
                RecoveryJourney.expires_at.isnot(None),
                RecoveryJourney.expires_at <= now,
            )
            .all()
        )

    def list_active_with_empty_carts(self) -> list[RecoveryJourney]:
        has_items = (
            self.db.query(CartItem.id)
            .filter(CartItem.user_id == RecoveryJourney.user_id, CartItem.quantity > 0)
            .exists()
        )
        return (
            self.db.query(RecoveryJourney)
            .filter(RecoveryJourney.status == JourneyStatus.ACTIVE.value, ~has_items)
            .all()
        )

    def get_due(self, now: datetime, grace_seconds: int, limit: int) -> list[RecoveryJourney]:
        """Active journeys whose next attempt falls within the grace window."""
        horizon = now + timedelta(seconds=grace_seconds)
        return (
            self.db.query(RecoveryJourney)
            .filter(
                RecoveryJourney.status == JourneyStatus.ACTIVE.value,
                RecoveryJourney.next_attempt_at.isnot(None),
                RecoveryJourney.next_attempt_at <= horizon,
                or_(RecoveryJourney.expires_at.is_(None), RecoveryJourney.expires_at > now),
            )
            .order_by(RecoveryJourney.next_attempt_at.asc())
            .limit(limit)
            .all()
        )

    def get_latest_unrecovered(self, user_id: UUID, since: datetime | None) -> RecoveryJourney | None:
        """Latest active or cancelled journey with no recovered order."""
        query = self.db.query(RecoveryJourney).filter(
            RecoveryJourney.user_id == user_id,
            RecoveryJourney.status.in_(
                [JourneyStatus.ACTIVE.value, JourneyStatus.CANCELLED.value]
            ),
            RecoveryJourney.recovered_order_id.is_(None),
        )
        if since is not None:
            query = query.filter(RecoveryJourney.created_at >= since)
        return query.order_by(RecoveryJourney.created_at.desc()).first()

    def list_advanced(
        self,
        status: str = "all",
        search: str = "",
        sort_by: str = "newest",
        limit: int = 50,
        offset: int = 0,
        quiet_since: datetime | None = None,
    ) -> tuple[list[tuple[RecoveryJourney, User | None, datetime | None]], int]:
        """Filtered, sorted page of journeys with their user and last attempt time.

        With ``quiet_since``, active journeys that have not sent an attempt and
        saw activity after that instant are left out.
        """
        last_attempt = (
            self.db.query(
                RecoveryAttempt.journey_id.label("journey_id"),
                func.max(RecoveryAttempt.created_at).label("last_attempt_at"),
            )
            .group_by(RecoveryAttempt.journey_id)
            .subquery()
        )
        query = (
            self.db.query(RecoveryJourney, User, last_attempt.c.last_attempt_at)
            .outerjoin(User, User.id == RecoveryJourney.user_id)
            .outerjoin(last_attempt, last_attempt.c.journey_id == RecoveryJourney.id)
        )
        if status and status != "all":
            query = query.filter(RecoveryJourney.status == status)
        if quiet_since is not None:
            query = query.filter(
                ~and_(
                    RecoveryJourney.status == JourneyStatus.ACTIVE.value,
                    RecoveryJourney.last_attempt_no == 0,
                    RecoveryJourney.last_activity_at > quiet_since,
                )
            )
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    User.name.ilike(term),
                    User.email.ilike(term),
                    User.mobile.ilike(term),
                    cast(RecoveryJourney.id, String).ilike(term),
                )
            )

        total = query.count()

        activity = func.coalesce(last_attempt.c.last_attempt_at, RecoveryJourney.updated_at)
        if sort_by == "oldest":
            order: list[Any] = [activity.asc(), RecoveryJourney.created_at.asc()]
        elif sort_by == "highest_value":
            order = [RecoveryJourney.cart_total_subunits.desc(), RecoveryJourney.created_at.desc()]
        elif sort_by == "lowest_value":
            order = [RecoveryJourney.cart_total_subunits.asc(), RecoveryJourney.created_at.desc()]
        elif sort_by == "next_due":
            order = [RecoveryJourney.next_attempt_at.asc(), RecoveryJourney.created_at.desc()]
        else:
            order = [activity.desc(), RecoveryJourney.created_at.desc()]

        rows = query.order_by(*order).offset(offset).limit(limit).all()
        return [(row[0], row[1], row[2]) for row in rows], int(total)

    def status_totals_since(self, since: datetime) -> dict[str, Any]:
        row = (
            self.db.query(
                func.count(RecoveryJourney.id),
                func.sum(_count_if(RecoveryJourney.status == JourneyStatus.ACTIVE.value)),
                func.sum(_count_if(RecoveryJourney.status == JourneyStatus.RECOVERED.value)),
                func.sum(_count_if(RecoveryJourney.status == JourneyStatus.EXPIRED.value)),
                func.sum(_count_if(RecoveryJourney.status == JourneyStatus.CANCELLED.value)),
                func.sum(
                    _value_if(
                        RecoveryJourney.status == JourneyStatus.RECOVERED.value,
                        RecoveryJourney.cart_total_subunits,
                    )
                ),
            )
            .filter(RecoveryJourney.created_at >= since)
            .one()
        )
        return {
            "total": int(row[0] or 0),
            "active": int(row[1] or 0),
            "recovered": int(row[2] or 0),
            "expired": int(row[3] or 0),
            "cancelled": int(row[4] or 0),
            "recovered_value_subunits": int(row[5] or 0),
        }

    def list_created_since(self, since: datetime) -> list[RecoveryJourney]:
        return (
            self.db.query(RecoveryJourney)
            .filter(RecoveryJourney.created_at >= since)
            .order_by(RecoveryJourney.created_at.asc())
            .all()
        )


def _count_if(condition: Any) -> Any:
    return case((condition, 1), else_=0)


def _value_if(condition: Any, value: Any) -> Any:
    return case((condition, value), else_=0)
