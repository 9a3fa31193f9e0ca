"""Debounced cart activity evaluation.

Cart mutations arrive in bursts (quantity steppers, bulk adds). Each user is
evaluated at most once per debounce window; activity inside the window is
coalesced into a single trailing run that carries the latest reason.
Users with no pending run are evicted once their window has passed.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from app.core.config import settings
from app.core.database import open_session
from app.services.journey_service import RecoveryJourneyService

logger = logging.getLogger(__name__)

RAN = "ran"
SCHEDULED = "scheduled"
QUEUED = "queued"


@dataclass
class _UserState:
    last_run_at: float = 0.0
    timer: threading.Timer | None = None
    pending_reason: str | None = None
    last_outcome: str | None = None


def evaluate_in_new_session(user_id: UUID, reason: str) -> str:
    db = open_session()
    try:
        return RecoveryJourneyService(db).evaluate_cart_activity(user_id, reason)
    finally:
        db.close()


class CartActivityTracker:
    def __init__(
        self,
        debounce_seconds: float | None = None,
        evaluate: Callable[[UUID, str], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if debounce_seconds is None:
            debounce_seconds = settings.CART_ACTIVITY_DEBOUNCE_SECONDS
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self._evaluate = evaluate or evaluate_in_new_session
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[UUID, _UserState] = {}
        self._last_prune_at = 0.0

    def track(self, user_id: UUID, reason: str = "cart_updated") -> str:
        """Record cart activity for a user. Returns ``ran``, ``scheduled`` or ``queued``."""
        with self._lock:
            self._prune(self._clock())
            state = self._states.setdefault(user_id, _UserState())
            if state.timer is not None:
                state.pending_reason = reason
                return QUEUED
            remaining = self.debounce_seconds - (self._clock() - state.last_run_at)
            if state.last_run_at and remaining > 0:
                state.pending_reason = reason
                state.timer = threading.Timer(remaining, self._fire, args=(user_id,))
                state.timer.daemon = True
                state.timer.start()
                return SCHEDULED
            state.last_run_at = self._clock()
        self._run(user_id, reason)
        return RAN

    def last_outcome(self, user_id: UUID) -> str | None:
        with self._lock:
            state = self._states.get(user_id)
            return state.last_outcome if state is not None else None

    def flush(self) -> int:
        """Run every pending evaluation now. Returns how many ran."""
        with self._lock:
            pending = []
            for user_id, state in self._states.items():
                if state.timer is None:
                    continue
                state.timer.cancel()
                state.timer = None
                state.last_run_at = self._clock()
                pending.append((user_id, state.pending_reason or "cart_updated"))
                state.pending_reason = None
        for user_id, reason in pending:
            self._run(user_id, reason)
        return len(pending)

    def cancel_all(self) -> None:
        with self._lock:
            for state in self._states.values():
                if state.timer is not None:
                    state.timer.cancel()
            self._states.clear()

    def _fire(self, user_id: UUID) -> None:
        with self._lock:
            state = self._states.get(user_id)
            if state is None or state.timer is None:
                return
            state.timer = None
            reason = state.pending_reason or "cart_updated"
            state.pending_reason = None
            state.last_run_at = self._clock()
            self._prune(state.last_run_at)
        self._run(user_id, reason)

    def _prune(self, now: float) -> None:
        """Drop idle users whose window has passed. Caller holds the lock."""
        if self._last_prune_at and now - self._last_prune_at < self.debounce_seconds:
            return
        self._last_prune_at = now
        idle = [
            user_id
            for user_id, state in self._states.items()
            if state.timer is None and now - state.last_run_at >= self.debounce_seconds
        ]
        for user_id in idle:
            del self._states[user_id]

    def _run(self, user_id: UUID, reason: str) -> None:
        try:
            outcome = self._evaluate(user_id, reason)
        except Exception:
            logger.exception("Cart activity evaluation failed for user %s", user_id)
            return
        with self._lock:
            state = self._states.get(user_id)
            if state is not None:
                state.last_outcome = outcome


activity_tracker = CartActivityTracker()


def get_activity_tracker() -> CartActivityTracker:
    return activity_tracker
