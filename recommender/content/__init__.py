"""Content authoring: topics, courses and question registration."""

from recommender.content.question_bank import ContentDocument, QuestionBank

__all__ = ["ContentDocument", "QuestionBank"]
