# SQLAlchemy models
from .base import Base
from .content import (
    DYNAMIC_VARIATION_ID,
    Course,
    CourseTopic,
    Question,
    QuestionDifficulty,
    Topic,
    TopicLevel,
)
from .learner import (
    Attempt,
    Mastery,
    QuestionInstance,
    User,
)

__all__ = [
    # Base
    "Base",
    # Content
    "Topic",
    "TopicLevel",
    "Course",
    "CourseTopic",
    "Question",
    "QuestionDifficulty",
    "DYNAMIC_VARIATION_ID",
    # Learner
    "User",
    "Mastery",
    "QuestionInstance",
    "Attempt",
]
