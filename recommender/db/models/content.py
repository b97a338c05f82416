"""
Content models: topics, courses and question templates.

Question identity:
- (question_id, variation_id) is the primary key
- variation_id = 0 is the single dynamic template of a question id
  (variables + methods, answers computed at delivery time)
- variation_id >= 1 are static variations with fixed answers, optionally
  grouped under a base dynamic question via base_question_id
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .learner import Mastery, QuestionInstance


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TopicLevel(str, Enum):
    FOUNDATIONAL = "Foundational"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class QuestionDifficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


DYNAMIC_VARIATION_ID = 0


class Topic(Base):
    """
    A unit of knowledge that mastery is tracked against.

    The prior is the mastery assumed for a learner who has never attempted
    a question on the topic; it never changes after creation.
    """

    __tablename__ = "topics"

    topic_slug: Mapped[str] = mapped_column(String(100), primary_key=True)
    topic_name: Mapped[str] = mapped_column(Text, nullable=False)
    topic_level: Mapped[TopicLevel] = mapped_column(
        SAEnum(TopicLevel, native_enum=False, length=20), default=TopicLevel.FOUNDATIONAL
    )
    prior: Mapped[float] = mapped_column(Float, nullable=False, default=0.25)

    questions: Mapped[list[Question]] = relationship(back_populates="topic")
    course_links: Mapped[list[CourseTopic]] = relationship(back_populates="topic")
    masteries: Mapped[list[Mastery]] = relationship(back_populates="topic")

    __table_args__ = (CheckConstraint("prior >= 0 AND prior <= 1", name="prior_range"),)

    def __repr__(self) -> str:
        return f"<Topic {self.topic_slug} prior={self.prior}>"


class Course(Base):
    """A course groups topics in a fixed declaration order."""

    __tablename__ = "courses"

    course_slug: Mapped[str] = mapped_column(String(100), primary_key=True)
    course_name: Mapped[str] = mapped_column(Text, nullable=False)
    course_level: Mapped[TopicLevel] = mapped_column(
        SAEnum(TopicLevel, native_enum=False, length=20), default=TopicLevel.FOUNDATIONAL
    )

    topic_links: Mapped[list[CourseTopic]] = relationship(
        back_populates="course",
        order_by="CourseTopic.position",
        cascade="all, delete-orphan",
    )
    question_instances: Mapped[list[QuestionInstance]] = relationship(
        back_populates="course", cascade="all", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Course {self.course_slug}>"


class CourseTopic(Base):
    """Course membership of a topic; position is the declaration order."""

    __tablename__ = "course_topics"

    course_slug: Mapped[str] = mapped_column(
        ForeignKey("courses.course_slug", ondelete="CASCADE"), primary_key=True
    )
    topic_slug: Mapped[str] = mapped_column(
        ForeignKey("topics.topic_slug", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    course: Mapped[Course] = relationship(back_populates="topic_links")
    topic: Mapped[Topic] = relationship(back_populates="course_links")


class Question(Base):
    """A question template (dynamic or static variation)."""

    __tablename__ = "questions"

    question_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    variation_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    topic_slug: Mapped[str] = mapped_column(
        ForeignKey("topics.topic_slug", ondelete="CASCADE"), nullable=False
    )
    question_title: Mapped[str] = mapped_column(Text, nullable=False)
    question_difficulty: Mapped[QuestionDifficulty] = mapped_column(
        SAEnum(QuestionDifficulty, native_enum=False, length=10),
        default=QuestionDifficulty.MEDIUM,
    )
    question_content: Mapped[str] = mapped_column(Text, default="")
    question_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    base_question_id: Mapped[int | None] = mapped_column(Integer)
    last_modified: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    topic: Mapped[Topic] = relationship(back_populates="questions")

    __table_args__ = (
        CheckConstraint("variation_id >= 0", name="variation_nonnegative"),
        Index("idx_questions_topic", "topic_slug"),
    )

    def __repr__(self) -> str:
        return f"<Question {self.question_id}.{self.variation_id} topic={self.topic_slug}>"

    @property
    def is_dynamic(self) -> bool:
        return self.variation_id == DYNAMIC_VARIATION_ID
