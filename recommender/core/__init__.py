"""
Core Module - Shared domain models and interfaces.

This module contains the canonical implementations of concepts used by
the evaluator, the learning services and the CLI.

Components:
- exceptions: Engine error hierarchy
- mastery: Mastery levels, state and the incremental update rule
- logging_config: Loguru sink setup

Design Principle:
Domain-specific packages (recommender.evaluator, recommender.learning)
import shared concepts from recommender.core rather than reimplementing them.
"""

from recommender.core.exceptions import (
    ConcurrencyConflictError,
    EvaluationError,
    ExhaustedContentError,
    InstanceNotAnswerableError,
    QuestionDataError,
    RecommenderError,
    UnknownEntityError,
)
from recommender.core.mastery import (
    MasteryLevel,
    MasteryRuleConfig,
    MasterySnapshot,
    MasteryState,
    MasteryUpdateRule,
)

__all__ = [
    # Exceptions
    "RecommenderError",
    "EvaluationError",
    "ExhaustedContentError",
    "ConcurrencyConflictError",
    "InstanceNotAnswerableError",
    "UnknownEntityError",
    "QuestionDataError",
    # Mastery
    "MasteryLevel",
    "MasteryState",
    "MasterySnapshot",
    "MasteryRuleConfig",
    "MasteryUpdateRule",
]
