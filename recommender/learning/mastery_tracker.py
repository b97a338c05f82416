"""
Mastery Tracker.

Persists the per-user-per-topic mastery state and applies the incremental
update rule (recommender.core.mastery) to each attempt outcome.

Concurrency:
- Mastery rows carry a version counter (SQLAlchemy version_id_col). Each
  update is a read-modify-write inside one fresh session; if another writer
  committed in between, the UPDATE matches no row and SQLAlchemy raises
  StaleDataError.
- A conflict re-reads the row in a new session and re-applies the outcome to
  the value stored at that moment, so no attempt is ever lost.
- Lazy creation races surface as IntegrityError on the (user, topic) unique
  constraint and are retried the same way.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import Settings, get_settings
from recommender.core.exceptions import ConcurrencyConflictError
from recommender.core.mastery import (
    MasteryRuleConfig,
    MasterySnapshot,
    MasteryState,
    MasteryUpdateRule,
)
from recommender.db import repository
from recommender.db.database import session_scope
from recommender.db.models import Mastery, Topic


def utcnow() -> datetime:
    return datetime.now(UTC)


def state_from_row(row: Mastery) -> MasteryState:
    """Domain state of a stored mastery row."""
    return MasteryState(
        mastery=row.mastery_level,
        error_meter=row.error_meter,
        flagged=row.flagged,
        last_flagged=row.last_flagged,
        weekly_mastery=row.weekly_mastery,
        fortnightly_mastery=row.fortnightly_mastery,
        last_active=row.last_active,
    )


def snapshot_from_row(row: Mastery, topic_name: str | None = None) -> MasterySnapshot:
    state = state_from_row(row)
    return MasterySnapshot(
        user_id=row.user_id,
        topic_slug=row.topic_slug,
        topic_name=topic_name if topic_name is not None else row.topic.topic_name,
        mastery=state.mastery,
        level=state.level,
        error_meter=state.error_meter,
        flagged=state.flagged,
        last_flagged=state.last_flagged,
        weekly_mastery=row.weekly_mastery,
        fortnightly_mastery=row.fortnightly_mastery,
        last_active=row.last_active,
    )


class MasteryTracker:
    """
    Track learner mastery per topic.

    Example:
        tracker = MasteryTracker(session_factory)
        snapshot = tracker.record_attempt("user-1", "ohms-law", correct=False)
        snapshot.level  # MasteryLevel.NOVICE
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        rule: MasteryUpdateRule | None = None,
        clock: Callable[[], datetime] | None = None,
        max_retries: int | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize tracker.

        Args:
            session_factory: Sessions for each unit of work (default: configured database)
            rule: Update rule (default: built from settings)
            clock: Source of "now" for last_active / last_flagged
            max_retries: Optimistic-lock retries before giving up
            settings: Application settings (default: get_settings())
        """
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.rule = rule or MasteryUpdateRule(MasteryRuleConfig.from_settings(settings))
        self.clock = clock or utcnow
        self.max_retries = max_retries or settings.mastery_update_max_retries

    # ========================================
    # Initialization
    # ========================================

    def get_or_initialize(self, session: Session, user_id: str, topic: Topic) -> Mastery:
        """
        Fetch the mastery row, creating it from the topic prior if missing.

        The new row is flushed so a concurrent creator fails here with
        IntegrityError rather than at commit.
        """
        row = repository.find_mastery(session, user_id, topic.topic_slug)
        if row is not None:
            return row

        state = MasteryState.initial(topic.prior)
        row = Mastery(
            user_id=user_id,
            topic_slug=topic.topic_slug,
            mastery_level=state.mastery,
            error_meter=state.error_meter,
            flagged=state.flagged,
            weekly_mastery=state.weekly_mastery,
            fortnightly_mastery=state.fortnightly_mastery,
        )
        session.add(row)
        session.flush()
        logger.debug(f"Initialized mastery user={user_id} topic={topic.topic_slug} prior={topic.prior}")
        return row

    def initialize(self, user_id: str, topic_slugs: Iterable[str]) -> None:
        """Create missing mastery rows for a user (idempotent)."""
        slugs = list(topic_slugs)
        for attempt in range(1, self.max_retries + 1):
            try:
                with session_scope(self.session_factory) as session:
                    repository.get_user(session, user_id)
                    for slug in slugs:
                        self.get_or_initialize(session, user_id, repository.get_topic(session, slug))
                return
            except IntegrityError:
                logger.warning(
                    f"Concurrent mastery creation for user={user_id}, "
                    f"retrying ({attempt}/{self.max_retries})"
                )
        raise ConcurrencyConflictError(user_id, ",".join(slugs), self.max_retries)

    # ========================================
    # Updates
    # ========================================

    def record_attempt(self, user_id: str, topic_slug: str, correct: bool) -> MasterySnapshot:
        """
        Apply one attempt outcome to the stored mastery.

        Args:
            user_id: Learner id
            topic_slug: Topic of the attempted question
            correct: Whether the attempt was correct

        Returns:
            MasterySnapshot after the update

        Raises:
            UnknownEntityError: If the user or topic does not exist
            ConcurrencyConflictError: If every retry lost its base state
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                with session_scope(self.session_factory) as session:
                    snapshot = self.apply_outcome(session, user_id, topic_slug, correct)
            except (StaleDataError, IntegrityError) as e:
                logger.warning(
                    f"Mastery update conflict user={user_id} topic={topic_slug} "
                    f"({type(e).__name__}), retrying ({attempt}/{self.max_retries})"
                )
                continue

            logger.info(
                f"Mastery user={user_id} topic={topic_slug} correct={correct} "
                f"-> {snapshot.mastery:.3f} ({snapshot.level.display_name})"
            )
            return snapshot

        raise ConcurrencyConflictError(user_id, topic_slug, self.max_retries)

    def apply_outcome(
        self, session: Session, user_id: str, topic_slug: str, correct: bool
    ) -> MasterySnapshot:
        """
        Read-modify the versioned mastery row inside the caller's transaction.

        Nothing is committed here. The version check runs when the caller
        flushes, so a concurrent writer surfaces as StaleDataError there and
        the caller redoes its whole unit of work.
        """
        repository.get_user(session, user_id)
        topic = repository.get_topic(session, topic_slug)
        row = self.get_or_initialize(session, user_id, topic)

        before = state_from_row(row)
        after = self.rule.apply(before, correct, self.clock())

        row.mastery_level = after.mastery
        row.error_meter = after.error_meter
        row.flagged = after.flagged
        row.last_flagged = after.last_flagged
        row.weekly_mastery = after.weekly_mastery
        row.fortnightly_mastery = after.fortnightly_mastery
        row.last_active = after.last_active

        if after.error_meter >= self.rule.config.error_threshold:
            logger.info(
                f"Flagged user={user_id} topic={topic_slug} after {after.error_meter} wrong answers"
            )

        return snapshot_from_row(row, topic.topic_name)

    # ========================================
    # Queries
    # ========================================

    def get_masteries(self, user_id: str) -> list[MasterySnapshot]:
        """All mastery snapshots of a user, weakest first."""
        with session_scope(self.session_factory) as session:
            repository.get_user(session, user_id)
            return [snapshot_from_row(row) for row in repository.masteries_for_user(session, user_id)]
