"""Tests for debounced cart activity evaluation."""

from uuid import uuid4

from app.models.cart_candidate import CartCandidate
from app.services.activity_tracker import QUEUED, RAN, SCHEDULED, CartActivityTracker
from tests.conftest import add_to_cart, make_product, make_user


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEvaluator:
    def __init__(self, outcome: str = "candidate_upserted"):
        self.calls: list[tuple] = []
        self.outcome = outcome

    def __call__(self, user_id, reason):
        self.calls.append((user_id, reason))
        return self.outcome


class TestCartActivityTracker:
    def test_first_activity_runs_immediately(self):
        evaluate = RecordingEvaluator()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=FakeClock())
        user_id = uuid4()

        assert tracker.track(user_id, "item_added") == RAN
        assert evaluate.calls == [(user_id, "item_added")]
        assert tracker.last_outcome(user_id) == "candidate_upserted"

    def test_burst_is_coalesced_into_one_trailing_run(self):
        evaluate = RecordingEvaluator()
        clock = FakeClock()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=clock)
        user_id = uuid4()

        tracker.track(user_id, "item_added")
        clock.advance(1)
        assert tracker.track(user_id, "quantity_changed") == SCHEDULED
        assert tracker.track(user_id, "item_removed") == QUEUED
        assert len(evaluate.calls) == 1

        assert tracker.flush() == 1
        assert evaluate.calls[-1] == (user_id, "item_removed")
        assert tracker.flush() == 0

    def test_activity_after_window_runs_again(self):
        evaluate = RecordingEvaluator()
        clock = FakeClock()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=clock)
        user_id = uuid4()

        tracker.track(user_id, "item_added")
        clock.advance(5)
        assert tracker.track(user_id, "item_added") == RAN
        assert len(evaluate.calls) == 2

    def test_users_are_debounced_independently(self):
        evaluate = RecordingEvaluator()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=FakeClock())

        assert tracker.track(uuid4()) == RAN
        assert tracker.track(uuid4()) == RAN
        assert len(evaluate.calls) == 2

    def test_zero_debounce_always_runs(self):
        evaluate = RecordingEvaluator()
        tracker = CartActivityTracker(debounce_seconds=0, evaluate=evaluate, clock=FakeClock())
        user_id = uuid4()

        assert tracker.track(user_id) == RAN
        assert tracker.track(user_id) == RAN
        assert len(evaluate.calls) == 2

    def test_timer_fire_runs_pending_reason(self):
        evaluate = RecordingEvaluator()
        clock = FakeClock()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=clock)
        user_id = uuid4()
        tracker.track(user_id, "item_added")
        clock.advance(1)
        tracker.track(user_id, "cart_cleared")

        tracker._fire(user_id)

        assert evaluate.calls[-1] == (user_id, "cart_cleared")
        tracker.cancel_all()

    def test_cancel_all_drops_pending_runs(self):
        evaluate = RecordingEvaluator()
        clock = FakeClock()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=evaluate, clock=clock)
        user_id = uuid4()
        tracker.track(user_id)
        clock.advance(1)
        tracker.track(user_id)

        tracker.cancel_all()

        assert tracker.flush() == 0
        assert len(evaluate.calls) == 1

    def test_evaluation_errors_are_contained(self):
        def failing(user_id, reason):
            raise RuntimeError("database unavailable")

        tracker = CartActivityTracker(debounce_seconds=0, evaluate=failing, clock=FakeClock())
        user_id = uuid4()

        assert tracker.track(user_id) == RAN
        assert tracker.last_outcome(user_id) is None

    def test_idle_users_are_evicted(self):
        tracker = CartActivityTracker(debounce_seconds=0, evaluate=RecordingEvaluator(), clock=FakeClock())

        for _ in range(500):
            tracker.track(uuid4())

        assert len(tracker._states) == 1

    def test_eviction_waits_for_window_and_pending_runs(self):
        clock = FakeClock()
        tracker = CartActivityTracker(debounce_seconds=3, evaluate=RecordingEvaluator(), clock=clock)
        idle, busy, late = uuid4(), uuid4(), uuid4()
        tracker.track(idle)
        tracker.track(busy)
        clock.advance(1)
        assert tracker.track(busy, "item_added") == SCHEDULED

        clock.advance(5)
        tracker.track(late)

        assert set(tracker._states) == {busy, late}
        tracker.cancel_all()

    def test_default_evaluator_uses_database(self, db_session):
        user = make_user(db_session)
        add_to_cart(db_session, user, make_product(db_session))
        tracker = CartActivityTracker(debounce_seconds=0)

        tracker.track(user.id, "item_added")

        assert tracker.last_outcome(user.id) == "candidate_upserted"
        assert db_session.query(CartCandidate).filter(CartCandidate.user_id == user.id).count() == 1
