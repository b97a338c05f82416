"""
Evaluator: materializes dynamic questions.

Components:
- schema: Pydantic models for authored question data
- expression: Sandboxed arithmetic over an allow-list of functions
- distractors: Plausible wrong answers around a numeric value
- evaluator: Variables + methods -> resolved variables + answer options
"""

from recommender.evaluator.distractors import DistractorConfig
from recommender.evaluator.evaluator import EvaluationResult, QuestionEvaluator, evaluate
from recommender.evaluator.schema import (
    AnswerOption,
    MethodSpec,
    QuestionData,
    ResolvedVariable,
    VariableSpec,
    parse_question_data,
)

__all__ = [
    "AnswerOption",
    "DistractorConfig",
    "EvaluationResult",
    "MethodSpec",
    "QuestionData",
    "QuestionEvaluator",
    "ResolvedVariable",
    "VariableSpec",
    "evaluate",
    "parse_question_data",
]
