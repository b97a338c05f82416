"""
Question Recommender.

Weakest-topic-first selection of the next question for a learner:

1. Rank the course's topics by the learner's mastery (ascending); equal
   mastery keeps the course's topic declaration order.
2. Take the first topic that still has an eligible question. Question ids
   in the retired set or passed in by the caller are never eligible.
3. Within the topic prefer questions the learner has not answered in this
   course, then the least recently served, then the lowest id.
4. Materialize: dynamic questions go through the evaluator with fresh
   random inputs; static answer options are shuffled.
5. Persist the new QuestionInstance, superseding any open one. The user row
   is locked first so concurrent recommendations serialize.

Nothing eligible anywhere in the course raises ExhaustedContentError.
Evaluation failures propagate and roll the transaction back; another
question is never substituted.
"""

from __future__ import annotations

import random
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from recommender.core.exceptions import ExhaustedContentError
from recommender.core.mastery import MasteryLevel, as_utc
from recommender.db import repository
from recommender.db.database import session_scope
from recommender.db.models import DYNAMIC_VARIATION_ID, Question, QuestionInstance
from recommender.evaluator import DistractorConfig, QuestionEvaluator, parse_question_data
from recommender.learning.mastery_tracker import MasteryTracker

_NEVER = datetime.min.replace(tzinfo=UTC)


@dataclass
class Recommendation:
    """A served question instance."""

    instance_id: int
    user_id: str
    course_slug: str
    topic_slug: str
    topic_name: str
    topic_mastery: float
    question_id: int
    variation_id: int
    question_title: str
    question_content: str
    variables: list[dict[str, Any]]
    answers: list[dict[str, Any]]
    added_time: datetime

    @property
    def is_dynamic(self) -> bool:
        return self.variation_id == DYNAMIC_VARIATION_ID

    @property
    def mastery_level(self) -> MasteryLevel:
        return MasteryLevel.from_score(self.topic_mastery)


def rank_topics(masteries: Mapping[str, float], topic_order: Sequence[str]) -> list[str]:
    """
    Order topic slugs weakest first.

    Args:
        masteries: Mastery per topic slug
        topic_order: Topic slugs in course declaration order (tie-break)

    Returns:
        Topic slugs sorted by (mastery, declaration position)
    """
    position = {slug: index for index, slug in enumerate(topic_order)}
    return sorted(topic_order, key=lambda slug: (masteries[slug], position[slug]))


def order_candidates(
    questions: Sequence[Question],
    attempted: Collection[tuple[int, int]],
    served: Mapping[tuple[int, int], datetime],
) -> list[Question]:
    """Unattempted first, then least recently served, then by id."""

    def sort_key(question: Question):
        key = (question.question_id, question.variation_id)
        served_at = served.get(key)
        return (
            key in attempted,
            as_utc(served_at) if served_at is not None else _NEVER,
            question.question_id,
            question.variation_id,
        )

    return sorted(questions, key=sort_key)


class QuestionRecommender:
    """
    Pick and materialize the next question for a learner in a course.

    Example:
        recommender = QuestionRecommender(session_factory)
        rec = recommender.recommend_question("user-1", "electrical-basics")
        rec.topic_name, rec.answers
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        tracker: MasteryTracker | None = None,
        evaluator: QuestionEvaluator | None = None,
        rng: random.Random | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.settings = settings
        self.rng = rng or random.Random()
        self.tracker = tracker or MasteryTracker(session_factory, settings=settings)
        self.evaluator = evaluator or QuestionEvaluator(
            distractor_config=DistractorConfig.from_settings(settings),
            rng=self.rng,
            preview_seed=settings.preview_seed,
        )

    def excluded_ids(self, extra: Collection[int] = ()) -> set[int]:
        """Retired question ids plus caller-supplied ones."""
        return set(self.settings.retired_question_ids) | set(extra)

    # ========================================
    # Public API
    # ========================================

    def recommend_question(
        self,
        user_id: str,
        course_slug: str,
        excluded_question_ids: Collection[int] = (),
    ) -> Recommendation:
        """
        Serve a new question instance.

        Args:
            user_id: Learner id
            course_slug: Course to practice
            excluded_question_ids: Question ids that must not be served

        Returns:
            Recommendation for the persisted QuestionInstance

        Raises:
            UnknownEntityError: Unknown user or course
            ExhaustedContentError: No eligible question in any topic
            EvaluationError: The chosen dynamic question failed to evaluate
        """
        excluded = self.excluded_ids(excluded_question_ids)

        with session_scope(self.session_factory) as session:
            repository.get_user(session, user_id)
            repository.get_course(session, course_slug)
            topic_slugs = [link.topic_slug for link in repository.course_topics(session, course_slug)]

        if not topic_slugs:
            logger.warning(f"Course {course_slug} has no topics")
            raise ExhaustedContentError(course_slug)

        self.tracker.initialize(user_id, topic_slugs)

        with session_scope(self.session_factory) as session:
            return self._recommend(session, user_id, course_slug, excluded)

    def current_or_recommend(
        self,
        user_id: str,
        course_slug: str,
        prev_question_id: int | None = None,
    ) -> Recommendation:
        """
        Return the open instance for the course, or serve a new one.

        The open instance is reused unless its question id is retired or
        equals prev_question_id (the question the learner just moved away from).
        """
        extra = [prev_question_id] if prev_question_id is not None else []
        excluded = self.excluded_ids(extra)

        with session_scope(self.session_factory) as session:
            repository.get_user(session, user_id)
            repository.get_course(session, course_slug)
            instance = repository.current_instance(session, user_id, course_slug)
            if instance is not None and instance.question_id not in excluded:
                logger.debug(f"Reusing open instance {instance.id} for user={user_id}")
                mastery = repository.find_mastery(session, user_id, instance.question.topic_slug)
                return self._to_recommendation(
                    instance,
                    instance.question,
                    mastery.mastery_level if mastery else instance.question.topic.prior,
                )

        return self.recommend_question(user_id, course_slug, extra)

    # ========================================
    # Internals
    # ========================================

    def _recommend(
        self, session: Session, user_id: str, course_slug: str, excluded: set[int]
    ) -> Recommendation:
        # concurrent recommendations for one user must not both see zero open instances
        repository.lock_user(session, user_id)
        links = repository.course_topics(session, course_slug)
        topics = {link.topic_slug: link.topic for link in links}
        rows = repository.masteries_for_user(session, user_id, topics)
        masteries = {row.topic_slug: row.mastery_level for row in rows}
        for slug, topic in topics.items():
            masteries.setdefault(slug, topic.prior)

        ranking = rank_topics(masteries, [link.topic_slug for link in links])
        logger.debug(
            "Topic ranking: " + ", ".join(f"{slug}={masteries[slug]:.3f}" for slug in ranking)
        )

        attempted = repository.attempted_questions(session, user_id, course_slug)
        served = repository.last_served(session, user_id, course_slug)

        for slug in ranking:
            candidates = repository.eligible_questions(session, slug, excluded)
            if not candidates:
                logger.debug(f"Topic {slug} has no eligible questions, trying next")
                continue

            question = order_candidates(candidates, attempted, served)[0]
            instance = self._materialize(session, user_id, course_slug, question)
            logger.info(
                f"Recommended question {question.question_id}.{question.variation_id} "
                f"(topic={slug}, mastery={masteries[slug]:.3f}) to user={user_id}"
            )
            return self._to_recommendation(instance, question, masteries[slug])

        logger.warning(f"No eligible questions left for user={user_id} in {course_slug}")
        raise ExhaustedContentError(course_slug)

    def _materialize(
        self, session: Session, user_id: str, course_slug: str, question: Question
    ) -> QuestionInstance:
        if question.is_dynamic:
            result = self.evaluator.evaluate_question_data(question.question_data, randomize=True)
            variables = result.variables_json()
            answers = result.answers_json()
        else:
            data = parse_question_data(question.question_data)
            variables = [v.model_dump(by_alias=True, exclude_none=True) for v in data.variables or []]
            answers = [a.model_dump(by_alias=True) for a in data.answers or []]
            self.rng.shuffle(answers)

        superseded = repository.supersede_open_instances(session, user_id, course_slug)
        if superseded:
            logger.debug(f"Superseded {superseded} open instance(s) for user={user_id}")

        instance = QuestionInstance(
            user_id=user_id,
            course_slug=course_slug,
            question_id=question.question_id,
            variation_id=question.variation_id,
            variables=variables,
            answers=answers,
        )
        session.add(instance)
        session.flush()
        return instance

    @staticmethod
    def _to_recommendation(
        instance: QuestionInstance, question: Question, mastery: float
    ) -> Recommendation:
        return Recommendation(
            instance_id=instance.id,
            user_id=instance.user_id,
            course_slug=instance.course_slug,
            topic_slug=question.topic_slug,
            topic_name=question.topic.topic_name,
            topic_mastery=mastery,
            question_id=question.question_id,
            variation_id=question.variation_id,
            question_title=question.question_title,
            question_content=question.question_content,
            variables=list(instance.variables),
            answers=list(instance.answers),
            added_time=instance.added_time,
        )
