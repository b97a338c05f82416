"""
Learning services.

- MasteryTracker: persisted mastery per (user, topic) with optimistic locking
- QuestionRecommender: weakest-topic-first question selection and delivery
- AttemptService: grading, points and mastery updates for submissions
"""

from recommender.learning.attempt_service import AttemptResult, AttemptService, grade_attempt
from recommender.learning.mastery_tracker import MasteryTracker
from recommender.learning.question_recommender import (
    QuestionRecommender,
    Recommendation,
    order_candidates,
    rank_topics,
)

__all__ = [
    "AttemptResult",
    "AttemptService",
    "MasteryTracker",
    "QuestionRecommender",
    "Recommendation",
    "grade_attempt",
    "order_candidates",
    "rank_topics",
]
