"""
Question Bank.

Registers users, topics, courses and questions, enforcing the question
identity rules:

- A dynamic question is variation 0 of a fresh (or explicitly given)
  question id; a question id holds at most one dynamic variation.
- A static question without a base starts a new question id at variation 1.
- A static question with a base shares the base's question id and takes the
  smallest free variation id >= 1, so deleted variations leave no gaps.

Dynamic question data is test-evaluated before it is stored, so broken
methods are reported at authoring time instead of at delivery.

Content documents (JSON) bundle all of the above for bulk loading:

    {
        "users": [{"id": "u1", "email": "a@b.c", "username": "ada"}],
        "topics": [{"slug": "ohms-law", "name": "Ohm's Law", "prior": 0.25}],
        "courses": [{"slug": "circuits", "name": "Circuits", "topics": ["ohms-law"]}],
        "questions": [{"topic": "ohms-law", "title": "...", "questionData": {...}}]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from config import Settings, get_settings
from recommender.core.exceptions import QuestionDataError, UnknownEntityError
from recommender.db import repository
from recommender.db.models import (
    DYNAMIC_VARIATION_ID,
    Course,
    CourseTopic,
    Question,
    QuestionDifficulty,
    Topic,
    TopicLevel,
    User,
)
from recommender.evaluator import QuestionData, QuestionEvaluator, parse_question_data

BASE_VARIATION_ID = 1


# ============================================================================
# Content document schema
# ============================================================================


class _Entry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserEntry(_Entry):
    id: str
    email: str
    username: str


class TopicEntry(_Entry):
    slug: str
    name: str
    level: TopicLevel = TopicLevel.FOUNDATIONAL
    prior: float | None = Field(None, ge=0.0, le=1.0)


class CourseEntry(_Entry):
    slug: str
    name: str
    level: TopicLevel = TopicLevel.FOUNDATIONAL
    topics: list[str] = Field(default_factory=list)


class QuestionEntry(_Entry):
    topic: str
    title: str
    question_data: dict[str, Any]
    difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM
    content: str = ""
    question_id: int | None = None
    base_question_id: int | None = None


class ContentDocument(_Entry):
    users: list[UserEntry] = Field(default_factory=list)
    topics: list[TopicEntry] = Field(default_factory=list)
    courses: list[CourseEntry] = Field(default_factory=list)
    questions: list[QuestionEntry] = Field(default_factory=list)


# ============================================================================
# Bank
# ============================================================================


class QuestionBank:
    """
    Authoring-side access to content, bound to one session.

    The caller owns the transaction:

        with session_scope() as session:
            bank = QuestionBank(session)
            bank.add_topic("ohms-law", "Ohm's Law")
    """

    def __init__(
        self,
        session: Session,
        evaluator: QuestionEvaluator | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.evaluator = evaluator or QuestionEvaluator(preview_seed=self.settings.preview_seed)

    # ========================================
    # Users, topics, courses
    # ========================================

    def add_user(self, user_id: str, email: str, username: str) -> User:
        """Create a user, or return the existing one with that id."""
        user = self.session.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=email, username=username, points=0)
            self.session.add(user)
            self.session.flush()
            logger.debug(f"Added user {user_id}")
        return user

    def add_topic(
        self,
        slug: str,
        name: str,
        level: TopicLevel = TopicLevel.FOUNDATIONAL,
        prior: float | None = None,
    ) -> Topic:
        """
        Create a topic or update its name/level.

        The prior of an existing topic is never changed.
        """
        topic = self.session.get(Topic, slug)
        if topic is not None:
            if prior is not None and prior != topic.prior:
                logger.warning(f"Ignoring new prior {prior} for existing topic {slug}")
            topic.topic_name = name
            topic.topic_level = level
            return topic

        prior = self.settings.mastery_default_prior if prior is None else prior
        if not 0.0 <= prior <= 1.0:
            raise QuestionDataError(f"prior must be within [0, 1], got {prior}")

        topic = Topic(topic_slug=slug, topic_name=name, topic_level=level, prior=prior)
        self.session.add(topic)
        self.session.flush()
        logger.debug(f"Added topic {slug} (prior={prior})")
        return topic

    def add_course(
        self,
        slug: str,
        name: str,
        level: TopicLevel = TopicLevel.FOUNDATIONAL,
        topic_slugs: list[str] | None = None,
    ) -> Course:
        """Create or replace a course; topic positions follow list order."""
        topic_slugs = topic_slugs or []
        if len(set(topic_slugs)) != len(topic_slugs):
            raise QuestionDataError(f"Course {slug} lists a topic more than once")
        for topic_slug in topic_slugs:
            repository.get_topic(self.session, topic_slug)

        course = self.session.get(Course, slug)
        if course is None:
            course = Course(course_slug=slug, course_name=name, course_level=level)
            self.session.add(course)
        else:
            course.course_name = name
            course.course_level = level
            course.topic_links.clear()
            self.session.flush()

        course.topic_links.extend(
            CourseTopic(topic_slug=topic_slug, position=position)
            for position, topic_slug in enumerate(topic_slugs)
        )
        self.session.flush()
        logger.debug(f"Course {slug}: {len(topic_slugs)} topics")
        return course

    # ========================================
    # Questions
    # ========================================

    def add_question(
        self,
        topic_slug: str,
        title: str,
        question_data: dict[str, Any] | QuestionData,
        *,
        difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM,
        content: str = "",
        question_id: int | None = None,
        base_question_id: int | None = None,
    ) -> Question:
        """
        Register a dynamic or static question.

        Args:
            topic_slug: Topic the question trains
            title: Short title
            question_data: Variables/methods (dynamic) or answers (static)
            difficulty: Difficulty label
            content: Question body (HTML/LaTeX)
            question_id: Explicit id for a new question
            base_question_id: Static base question to add a variation to

        Returns:
            The stored Question

        Raises:
            QuestionDataError: Invalid data or identity collision
            EvaluationError: Dynamic methods fail to evaluate
            UnknownEntityError: Unknown topic or base question
        """
        repository.get_topic(self.session, topic_slug)
        data = parse_question_data(question_data)

        if data.is_dynamic:
            if base_question_id is not None:
                raise QuestionDataError("Dynamic questions cannot have a base question")
            self._check_dynamic(data)
            question_id, variation_id = self._dynamic_identity(question_id)
        else:
            self._check_static(data)
            question_id, variation_id = self._static_identity(question_id, base_question_id)

        question = Question(
            question_id=question_id,
            variation_id=variation_id,
            topic_slug=topic_slug,
            question_title=title,
            question_difficulty=difficulty,
            question_content=content,
            question_data=data.to_json(),
            base_question_id=base_question_id,
        )
        self.session.add(question)
        self.session.flush()
        logger.info(f"Added question {question_id}.{variation_id} to {topic_slug}: {title}")
        return question

    def _dynamic_identity(self, question_id: int | None) -> tuple[int, int]:
        if question_id is None:
            return repository.next_question_id(self.session), DYNAMIC_VARIATION_ID
        if self.session.get(Question, (question_id, DYNAMIC_VARIATION_ID)) is not None:
            raise QuestionDataError(f"Question {question_id} already has a dynamic variation")
        return question_id, DYNAMIC_VARIATION_ID

    def _static_identity(
        self, question_id: int | None, base_question_id: int | None
    ) -> tuple[int, int]:
        if base_question_id is not None:
            if self.session.get(Question, (base_question_id, BASE_VARIATION_ID)) is None:
                raise UnknownEntityError("base question", base_question_id)
            return base_question_id, repository.free_variation_id(self.session, base_question_id)

        if question_id is None:
            return repository.next_question_id(self.session), BASE_VARIATION_ID
        if repository.question_exists(self.session, question_id):
            raise QuestionDataError(
                f"Question {question_id} already exists; pass base_question_id to add a variation"
            )
        return question_id, BASE_VARIATION_ID

    def _check_dynamic(self, data: QuestionData) -> None:
        variables = data.variables or []
        if not variables:
            raise QuestionDataError("Dynamic questions need at least one variable")
        if not any(v.is_final_answer for v in variables):
            raise QuestionDataError("Dynamic questions need at least one final answer")
        # raises EvaluationError with the failing step
        self.evaluator.evaluate(variables, data.methods or [], randomize=False)

    @staticmethod
    def _check_static(data: QuestionData) -> None:
        answers = data.answers or []
        if len(answers) < 2:
            raise QuestionDataError("Static questions need at least two answer options")
        if not any(a.is_correct for a in answers):
            raise QuestionDataError("Static questions need at least one correct answer")
        keys = [a.key for a in answers]
        if len(set(keys)) != len(keys):
            raise QuestionDataError("Answer option keys must be unique")

    # ========================================
    # Bulk loading
    # ========================================

    def load_document(self, document: ContentDocument) -> dict[str, int]:
        """Load a parsed content document; returns counts per section."""
        for user in document.users:
            self.add_user(user.id, user.email, user.username)
        for topic in document.topics:
            self.add_topic(topic.slug, topic.name, topic.level, topic.prior)
        for course in document.courses:
            self.add_course(course.slug, course.name, course.level, course.topics)
        for entry in document.questions:
            self.add_question(
                entry.topic,
                entry.title,
                entry.question_data,
                difficulty=entry.difficulty,
                content=entry.content,
                question_id=entry.question_id,
                base_question_id=entry.base_question_id,
            )
        return {
            "users": len(document.users),
            "topics": len(document.topics),
            "courses": len(document.courses),
            "questions": len(document.questions),
        }

    def load_content(self, path: str | Path) -> dict[str, int]:
        """
        Load a JSON content document from disk.

        Raises:
            QuestionDataError: If the file is not a valid content document
        """
        path = Path(path)
        try:
            document = ContentDocument.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise QuestionDataError(f"Invalid content file {path}: {e}") from e

        counts = self.load_document(document)
        logger.info(f"Loaded content from {path}: {counts}")
        return counts
