"""
Learner models: users, mastery, question instances and attempts.

Ownership:
- Mastery and Attempt rows belong to the User and go away with it
- QuestionInstance rows belong to both User and Course
- Attempt rows are append-only; one per QuestionInstance

Mastery rows are versioned (version_id_col) so concurrent read-modify-write
updates fail with StaleDataError instead of silently overwriting each other.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .content import Course, Question, Topic


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    username: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    masteries: Mapped[list[Mastery]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    question_instances: Mapped[list[QuestionInstance]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    attempts: Mapped[list[Attempt]] = relationship(
        back_populates="user", cascade="all", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<User {self.id} points={self.points}>"


class Mastery(Base):
    """
    Mastery of one user on one topic.

    Created lazily with mastery = topic prior; updated on every attempt.
    """

    __tablename__ = "mastery"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    topic_slug: Mapped[str] = mapped_column(
        ForeignKey("topics.topic_slug", ondelete="CASCADE"), nullable=False
    )

    mastery_level: Mapped[float] = mapped_column(Float, nullable=False)
    error_meter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_flagged: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Decayed rolling aggregates
    weekly_mastery: Mapped[float] = mapped_column(Float, nullable=False)
    fortnightly_mastery: Mapped[float] = mapped_column(Float, nullable=False)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped[User] = relationship(back_populates="masteries")
    topic: Mapped[Topic] = relationship(back_populates="masteries")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint("user_id", "topic_slug", name="uq_mastery_user_topic"),
        Index("idx_mastery_user_level", "user_id", "mastery_level"),
    )

    def __repr__(self) -> str:
        return f"<Mastery user={self.user_id} topic={self.topic_slug} mastery={self.mastery_level:.3f}>"


class QuestionInstance(Base):
    """
    A question materialized for one user in one course.

    The newest instance without an attempt is the current one; creating a
    new instance marks older open instances superseded.
    """

    __tablename__ = "question_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    course_slug: Mapped[str] = mapped_column(
        ForeignKey("courses.course_slug", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    variation_id: Mapped[int] = mapped_column(Integer, nullable=False)

    variables: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    answers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    added_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    is_superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user: Mapped[User] = relationship(back_populates="question_instances")
    course: Mapped[Course] = relationship(back_populates="question_instances")
    question: Mapped[Question] = relationship()
    attempt: Mapped[Attempt | None] = relationship(
        back_populates="instance", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["question_id", "variation_id"],
            ["questions.question_id", "questions.variation_id"],
            ondelete="CASCADE",
        ),
        Index("idx_instances_user_course", "user_id", "course_slug", "added_time"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuestionInstance id={self.id} user={self.user_id} "
            f"question={self.question_id}.{self.variation_id}>"
        )


class Attempt(Base):
    """An immutable answer submission."""

    __tablename__ = "attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    instance_id: Mapped[int] = mapped_column(
        ForeignKey("question_instances.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    attempted_keys: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user: Mapped[User] = relationship(back_populates="attempts")
    instance: Mapped[QuestionInstance] = relationship(back_populates="attempt")

    __table_args__ = (Index("idx_attempts_user_time", "user_id", "submitted_at"),)

    def __repr__(self) -> str:
        return f"<Attempt id={self.id} instance={self.instance_id} correct={self.is_correct}>"
