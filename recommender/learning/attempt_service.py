"""
Attempt Service.

Grades a submission against a served QuestionInstance, stores the Attempt,
awards points and applies the outcome to the learner's topic mastery, all
in one transaction: an answer is never stored without its mastery update.

Grading: an attempt is correct iff the set of selected keys equals the set
of correct keys. Order and duplicates do not matter; a missing or extra
option makes the attempt incorrect.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import Settings, get_settings
from recommender.core.exceptions import (
    ConcurrencyConflictError,
    InstanceNotAnswerableError,
    UnknownEntityError,
)
from recommender.core.mastery import MasterySnapshot
from recommender.db import repository
from recommender.db.database import session_scope
from recommender.db.models import Attempt, QuestionInstance, User
from recommender.evaluator.schema import AnswerOption, parse_answers
from recommender.learning.mastery_tracker import MasteryTracker, utcnow


@dataclass
class AttemptResult:
    """Outcome of a submitted attempt."""

    attempt_id: int
    instance_id: int
    is_correct: bool
    correct_keys: list[str]
    points_awarded: int
    mastery: MasterySnapshot


def grade_attempt(options: Sequence[AnswerOption], attempted_keys: Iterable[str]) -> bool:
    """
    Grade selected keys against the answer options.

    Example:
        4 options, correct keys {a, c}
        grade_attempt(options, ["c", "a"]) -> True
        grade_attempt(options, ["a", "b"]) -> False
    """
    correct = {option.key for option in options if option.is_correct}
    return set(attempted_keys) == correct


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class AttemptService:
    """
    Submit answers for served question instances.

    Example:
        service = AttemptService(session_factory)
        result = service.submit_attempt("user-1", rec.instance_id, ["3f2a9c01be"])
        result.is_correct, result.mastery.mastery
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        tracker: MasteryTracker | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock or utcnow
        self.tracker = tracker or MasteryTracker(session_factory, clock=self.clock, settings=settings)

    def points_for(self, session: Session, user_id: str, now: datetime) -> int:
        """Points for an attempt made at `now` (the first one of the UTC day earns more)."""
        if repository.attempts_since(session, user_id, start_of_day(now)) == 0:
            return self.settings.points_first_daily_attempt
        return self.settings.points_per_attempt

    def submit_attempt(
        self, user_id: str, instance_id: int, attempted_keys: Sequence[str]
    ) -> AttemptResult:
        """
        Record an answer and update mastery in one transaction.

        The Attempt row, the points and the versioned mastery write commit
        together. When a concurrent writer changed the mastery row (or
        answered the instance) first, the whole unit is rolled back and
        redone against the freshly stored state.

        Args:
            user_id: Learner submitting the answer
            instance_id: QuestionInstance being answered
            attempted_keys: Keys of the selected options

        Returns:
            AttemptResult including the updated mastery snapshot

        Raises:
            UnknownEntityError: Unknown user or instance
            InstanceNotAnswerableError: Instance is superseded, answered or foreign
            ConcurrencyConflictError: Every retry lost its base state
        """
        now = self.clock()
        max_retries = self.tracker.max_retries
        topic_slug = ""
        for attempt_no in range(1, max_retries + 1):
            try:
                with session_scope(self.session_factory) as session:
                    user = repository.get_user(session, user_id)
                    instance = self._answerable_instance(session, user_id, instance_id)
                    topic_slug = instance.question.topic_slug

                    options = parse_answers(instance.answers)
                    is_correct = grade_attempt(options, attempted_keys)
                    points = self.points_for(session, user_id, now)

                    # reads only up to here; every write is flushed together below
                    mastery = self.tracker.apply_outcome(session, user_id, topic_slug, is_correct)

                    attempt = Attempt(
                        user_id=user_id,
                        instance_id=instance.id,
                        attempted_keys=list(attempted_keys),
                        is_correct=is_correct,
                        submitted_at=now,
                    )
                    session.add(attempt)
                    user.points = User.points + points
                    user.last_active = now
                    session.flush()

                    result = AttemptResult(
                        attempt_id=attempt.id,
                        instance_id=instance_id,
                        is_correct=is_correct,
                        correct_keys=[option.key for option in options if option.is_correct],
                        points_awarded=points,
                        mastery=mastery,
                    )
            except (StaleDataError, IntegrityError) as e:
                logger.warning(
                    f"Attempt on instance {instance_id} conflicted ({type(e).__name__}), "
                    f"retrying ({attempt_no}/{max_retries})"
                )
                continue

            logger.info(
                f"Attempt {result.attempt_id} user={user_id} instance={instance_id} "
                f"correct={result.is_correct} points=+{result.points_awarded} "
                f"mastery={mastery.mastery:.3f}"
            )
            return result

        raise ConcurrencyConflictError(user_id, topic_slug, max_retries)

    @staticmethod
    def _answerable_instance(session: Session, user_id: str, instance_id: int) -> QuestionInstance:
        instance = session.get(QuestionInstance, instance_id)
        if instance is None:
            raise UnknownEntityError("question instance", instance_id)
        if instance.user_id != user_id:
            raise InstanceNotAnswerableError(instance_id, "belongs to another user")
        if instance.attempt is not None:
            raise InstanceNotAnswerableError(instance_id, "already answered")
        current = repository.current_instance(session, user_id, instance.course_slug)
        if instance.is_superseded or current is None or current.id != instance.id:
            raise InstanceNotAnswerableError(instance_id, "superseded by a newer question")
        return instance
