"""
Tests for the persisted mastery tracker.

Uses the SQLite fixtures from conftest. The interleaving tests force a
second writer to commit between another update's read and its write, the
situation optimistic locking has to resolve.
"""

import pytest
from sqlalchemy import select

from recommender.core.exceptions import ConcurrencyConflictError, UnknownEntityError
from recommender.core.mastery import MasteryLevel, MasteryRuleConfig, MasteryUpdateRule
from recommender.db.database import session_scope
from recommender.db.models import Mastery
from recommender.learning import MasteryTracker


@pytest.fixture
def tracker(seeded, settings, clock):
    return MasteryTracker(seeded, clock=clock, settings=settings)


def _stored(session_factory, user_id, topic_slug):
    with session_scope(session_factory) as session:
        return session.scalars(
            select(Mastery).where(Mastery.user_id == user_id, Mastery.topic_slug == topic_slug)
        ).one()


class TestInitialization:
    """Lazy creation from the topic prior."""

    def test_initialize_uses_prior(self, tracker, seeded):
        tracker.initialize("u1", ["alpha", "beta"])
        row = _stored(seeded, "u1", "alpha")
        assert row.mastery_level == 0.25
        assert row.error_meter == 0
        assert not row.flagged
        assert row.weekly_mastery == 0.25

    def test_initialize_is_idempotent(self, tracker, seeded, store_mastery):
        store_mastery("u1", "alpha", 0.8)
        tracker.initialize("u1", ["alpha", "beta", "gamma"])
        tracker.initialize("u1", ["alpha"])
        assert _stored(seeded, "u1", "alpha").mastery_level == 0.8
        assert len(tracker.get_masteries("u1")) == 3

    def test_unknown_topic(self, tracker):
        with pytest.raises(UnknownEntityError):
            tracker.initialize("u1", ["nope"])


class TestRecordAttempt:
    """Test MasteryTracker.record_attempt."""

    def test_first_attempt_creates_record(self, tracker):
        snapshot = tracker.record_attempt("u1", "alpha", correct=True)
        assert snapshot.mastery == pytest.approx(0.4)
        assert snapshot.topic_name == "Alpha"
        assert snapshot.level == MasteryLevel.DEVELOPING

    def test_updates_accumulate(self, tracker, seeded):
        tracker.record_attempt("u1", "beta", correct=True)
        tracker.record_attempt("u1", "beta", correct=False)
        row = _stored(seeded, "u1", "beta")
        assert row.mastery_level == pytest.approx(0.4 * 0.8)
        assert row.error_meter == 1
        assert row.version_id == 3

    def test_flag_after_three_wrong(self, tracker, clock):
        for _ in range(2):
            snapshot = tracker.record_attempt("u1", "gamma", correct=False)
            assert not snapshot.flagged
        snapshot = tracker.record_attempt("u1", "gamma", correct=False)
        assert snapshot.flagged
        assert snapshot.last_flagged == clock()

    def test_users_are_independent(self, tracker):
        tracker.record_attempt("u1", "alpha", correct=True)
        snapshot = tracker.record_attempt("u2", "alpha", correct=False)
        assert snapshot.mastery == pytest.approx(0.2)

    def test_unknown_user(self, tracker):
        with pytest.raises(UnknownEntityError):
            tracker.record_attempt("ghost", "alpha", correct=True)

    def test_get_masteries_weakest_first(self, tracker, store_mastery):
        store_mastery("u1", "alpha", 0.9)
        store_mastery("u1", "beta", 0.2)
        store_mastery("u1", "gamma", 0.5)
        snapshots = tracker.get_masteries("u1")
        assert [s.topic_slug for s in snapshots] == ["beta", "gamma", "alpha"]


class TestConcurrentUpdates:
    """Interleaved read-modify-write cycles must not lose updates."""

    def test_interleaved_update_is_not_lost(self, tracker, seeded, monkeypatch):
        tracker.initialize("u1", ["alpha"])
        original_apply = tracker.rule.apply
        interleaved = []

        def apply_with_competing_writer(state, correct, now):
            if not interleaved:
                interleaved.append(True)
                # another request commits while this one holds a stale read
                tracker.record_attempt("u1", "alpha", correct=False)
            return original_apply(state, correct, now)

        monkeypatch.setattr(tracker.rule, "apply", apply_with_competing_writer)

        snapshot = tracker.record_attempt("u1", "alpha", correct=True)

        # prior 0.25 -> wrong (0.2) -> right (0.2 + 0.2 * 0.8)
        assert snapshot.mastery == pytest.approx(0.36)
        row = _stored(seeded, "u1", "alpha")
        assert row.mastery_level == pytest.approx(0.36)
        assert row.version_id == 3

    def test_nested_interleavings_apply_every_outcome(self, seeded, settings, clock, monkeypatch):
        tracker = MasteryTracker(seeded, clock=clock, settings=settings)
        tracker.initialize("u1", ["beta"])
        outcomes = [True, False, True, True]
        pending = list(outcomes[1:])
        original_apply = tracker.rule.apply

        def apply(state, correct, now):
            if pending:
                tracker.record_attempt("u1", "beta", pending.pop(0))
            return original_apply(state, correct, now)

        monkeypatch.setattr(tracker.rule, "apply", apply)
        tracker.record_attempt("u1", "beta", outcomes[0])

        # the innermost writer commits first, the outermost last
        expected = 0.25
        for outcome in reversed(outcomes):
            expected = tracker.rule.next_mastery(expected, outcome)

        stored = _stored(seeded, "u1", "beta")
        assert stored.mastery_level == pytest.approx(expected)
        assert stored.version_id == len(outcomes) + 1

    def test_gives_up_after_max_retries(self, tracker, monkeypatch):
        tracker.initialize("u1", ["alpha"])
        original_apply = tracker.rule.apply

        def always_interleave(state, correct, now):
            # bump the stored version behind the tracker's back every time
            with session_scope(tracker.session_factory) as session:
                row = session.scalars(
                    select(Mastery).where(Mastery.user_id == "u1", Mastery.topic_slug == "alpha")
                ).one()
                row.error_meter += 1
            return original_apply(state, correct, now)

        monkeypatch.setattr(tracker.rule, "apply", always_interleave)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            tracker.record_attempt("u1", "alpha", correct=True)
        assert exc_info.value.attempts == tracker.max_retries


class TestCustomRule:
    def test_custom_rates(self, seeded, clock, settings):
        rule = MasteryUpdateRule(MasteryRuleConfig(gain_rate=0.5, loss_rate=0.5))
        tracker = MasteryTracker(seeded, rule=rule, clock=clock, settings=settings)
        assert tracker.record_attempt("u1", "alpha", True).mastery == pytest.approx(0.625)
