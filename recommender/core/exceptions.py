"""
Exception hierarchy for the recommender engine.

Every failure the engine reports is a value-level error the caller is
expected to handle: evaluation problems are shown to the question author,
exhausted content becomes an empty state, and concurrency conflicts are
retried internally before they ever surface.
"""

from __future__ import annotations

from typing import Any


class RecommenderError(Exception):
    """Base class for all engine errors."""


class EvaluationError(RecommenderError):
    """
    A variable or method could not be evaluated.

    Attributes:
        stage: "variable" or "method"
        index: Position of the offending variable/method (0-based)
        expr: Expression exactly as authored
        sanitized: Expression after notation normalization
        substituted: Sanitized expression with names replaced by safe tokens
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str = "method",
        index: int | None = None,
        expr: str = "",
        sanitized: str = "",
        substituted: str = "",
    ):
        self.message = message
        self.stage = stage
        self.index = index
        self.expr = expr
        self.sanitized = sanitized
        self.substituted = substituted
        location = f"{stage} #{index}" if index is not None else stage
        super().__init__(f"{location}: {message}")

    def to_dict(self) -> dict[str, Any]:
        """Diagnostic payload for editors and logs."""
        return {
            "message": self.message,
            "stage": self.stage,
            "index": self.index,
            "expr": self.expr,
            "sanitized": self.sanitized,
            "substituted": self.substituted,
        }


class ExhaustedContentError(RecommenderError):
    """No eligible question remains for the course."""

    def __init__(self, course_slug: str):
        self.course_slug = course_slug
        super().__init__(f"No eligible questions left in course '{course_slug}'")


class ConcurrencyConflictError(RecommenderError):
    """A mastery update kept losing its base state to concurrent writers."""

    def __init__(self, user_id: str, topic_slug: str, attempts: int):
        self.user_id = user_id
        self.topic_slug = topic_slug
        self.attempts = attempts
        super().__init__(
            f"Mastery update for user={user_id} topic={topic_slug} "
            f"conflicted {attempts} times"
        )


class InstanceNotAnswerableError(RecommenderError):
    """The question instance is superseded, already answered, or not the user's."""

    def __init__(self, instance_id: int, reason: str):
        self.instance_id = instance_id
        self.reason = reason
        super().__init__(f"Question instance {instance_id} cannot be answered: {reason}")


class UnknownEntityError(RecommenderError):
    """A referenced user, course, topic or question does not exist."""

    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"Unknown {kind}: {key!r}")


class QuestionDataError(RecommenderError):
    """Authored question data failed schema validation."""
