"""
Centralized queries for the recommender.

Every function takes the caller's Session and never commits; transaction
boundaries belong to the services (see session_scope).

Usage:
    from recommender.db import repository

    with session_scope() as session:
        links = repository.course_topics(session, "welcome-to-python")
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from recommender.core.exceptions import UnknownEntityError
from recommender.db.models import (
    DYNAMIC_VARIATION_ID,
    Attempt,
    Course,
    CourseTopic,
    Mastery,
    Question,
    QuestionInstance,
    Topic,
    User,
)

QuestionKey = tuple[int, int]


# =============================================================================
# LOOKUPS
# =============================================================================


def get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise UnknownEntityError("user", user_id)
    return user


def lock_user(session: Session, user_id: str) -> User:
    """
    Fetch the user row with FOR UPDATE, serializing that user's writers.

    SQLite has no row locks; its database-level write lock already
    serializes writers.
    """
    user = session.scalars(select(User).where(User.id == user_id).with_for_update()).one_or_none()
    if user is None:
        raise UnknownEntityError("user", user_id)
    return user


def get_course(session: Session, course_slug: str) -> Course:
    course = session.get(Course, course_slug)
    if course is None:
        raise UnknownEntityError("course", course_slug)
    return course


def get_topic(session: Session, topic_slug: str) -> Topic:
    topic = session.get(Topic, topic_slug)
    if topic is None:
        raise UnknownEntityError("topic", topic_slug)
    return topic


def course_topics(session: Session, course_slug: str) -> list[CourseTopic]:
    """Topics of a course in declaration order, topic rows eagerly loaded."""
    stmt = (
        select(CourseTopic)
        .options(joinedload(CourseTopic.topic))
        .where(CourseTopic.course_slug == course_slug)
        .order_by(CourseTopic.position, CourseTopic.topic_slug)
    )
    return list(session.scalars(stmt))


# =============================================================================
# MASTERY
# =============================================================================


def find_mastery(session: Session, user_id: str, topic_slug: str) -> Mastery | None:
    stmt = select(Mastery).where(Mastery.user_id == user_id, Mastery.topic_slug == topic_slug)
    return session.scalars(stmt).one_or_none()


def masteries_for_user(
    session: Session, user_id: str, topic_slugs: Iterable[str] | None = None
) -> list[Mastery]:
    """Mastery rows of a user, weakest first."""
    stmt = select(Mastery).options(joinedload(Mastery.topic)).where(Mastery.user_id == user_id)
    if topic_slugs is not None:
        stmt = stmt.where(Mastery.topic_slug.in_(list(topic_slugs)))
    stmt = stmt.order_by(Mastery.mastery_level.asc(), Mastery.topic_slug)
    return list(session.scalars(stmt))


# =============================================================================
# QUESTIONS
# =============================================================================


def eligible_questions(
    session: Session, topic_slug: str, excluded_question_ids: Collection[int] = ()
) -> list[Question]:
    """All variations in a topic whose question id is not excluded."""
    stmt = select(Question).where(Question.topic_slug == topic_slug)
    if excluded_question_ids:
        stmt = stmt.where(Question.question_id.not_in(list(excluded_question_ids)))
    stmt = stmt.order_by(Question.question_id, Question.variation_id)
    return list(session.scalars(stmt))


def next_question_id(session: Session) -> int:
    current = session.scalar(select(func.max(Question.question_id)))
    return (current or 0) + 1


def question_exists(session: Session, question_id: int) -> bool:
    stmt = select(func.count()).select_from(Question).where(Question.question_id == question_id)
    return bool(session.scalar(stmt))


def free_variation_id(session: Session, question_id: int) -> int:
    """
    Smallest unused static variation id (>= 1) for a question id.

    Example:
        existing variations 0, 1, 2, 4 -> 3
    """
    stmt = select(Question.variation_id).where(
        Question.question_id == question_id,
        Question.variation_id > DYNAMIC_VARIATION_ID,
    )
    used = set(session.scalars(stmt))
    candidate = DYNAMIC_VARIATION_ID + 1
    while candidate in used:
        candidate += 1
    return candidate


# =============================================================================
# INSTANCES & ATTEMPTS
# =============================================================================


def attempted_questions(session: Session, user_id: str, course_slug: str) -> set[QuestionKey]:
    """(question_id, variation_id) pairs the user has answered in a course."""
    stmt = (
        select(QuestionInstance.question_id, QuestionInstance.variation_id)
        .join(Attempt, Attempt.instance_id == QuestionInstance.id)
        .where(QuestionInstance.user_id == user_id, QuestionInstance.course_slug == course_slug)
        .distinct()
    )
    return {(row.question_id, row.variation_id) for row in session.execute(stmt)}


def last_served(session: Session, user_id: str, course_slug: str) -> dict[QuestionKey, datetime]:
    """Most recent materialization time per question for a user in a course."""
    stmt = (
        select(
            QuestionInstance.question_id,
            QuestionInstance.variation_id,
            func.max(QuestionInstance.added_time).label("served_at"),
        )
        .where(QuestionInstance.user_id == user_id, QuestionInstance.course_slug == course_slug)
        .group_by(QuestionInstance.question_id, QuestionInstance.variation_id)
    )
    return {(row.question_id, row.variation_id): row.served_at for row in session.execute(stmt)}


def _answered_instance_ids():
    return select(Attempt.instance_id)


def current_instance(session: Session, user_id: str, course_slug: str) -> QuestionInstance | None:
    """Newest open instance (not superseded, no attempt) for a user in a course."""
    stmt = (
        select(QuestionInstance)
        .where(
            QuestionInstance.user_id == user_id,
            QuestionInstance.course_slug == course_slug,
            QuestionInstance.is_superseded.is_(False),
            QuestionInstance.id.not_in(_answered_instance_ids()),
        )
        .order_by(QuestionInstance.added_time.desc(), QuestionInstance.id.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


def supersede_open_instances(session: Session, user_id: str, course_slug: str) -> int:
    """Mark every open instance of a user in a course superseded."""
    stmt = (
        update(QuestionInstance)
        .where(
            QuestionInstance.user_id == user_id,
            QuestionInstance.course_slug == course_slug,
            QuestionInstance.is_superseded.is_(False),
            QuestionInstance.id.not_in(_answered_instance_ids()),
        )
        .values(is_superseded=True)
        .execution_options(synchronize_session="fetch")
    )
    return session.execute(stmt).rowcount


def attempts_since(session: Session, user_id: str, since: datetime) -> int:
    stmt = (
        select(func.count())
        .select_from(Attempt)
        .where(Attempt.user_id == user_id, Attempt.submitted_at >= since)
    )
    return session.scalar(stmt) or 0
