"""
Question data schema.

Authored question data is stored as JSON with camelCase keys (the editor's
format). These Pydantic models validate it and expose snake_case attributes:

    {
        "variables": [
            {"name": "V_{in}", "randomize": true, "min": 1, "max": 12,
             "step": 0.5, "decimalPlaces": 1, "unit": "V"},
            {"name": "I", "isFinalAnswer": true, "decimalPlaces": 3, "unit": "A"}
        ],
        "methods": [{"expr": "I = V_{in} / 220"}],
        "hints": [{"hint": "Ohm's law"}],
        "answers": null
    }

Dynamic questions carry variables + methods; static questions carry a fixed
answers list.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from recommender.core.exceptions import QuestionDataError


class _CamelModel(BaseModel):
    """Base model accepting both camelCase (stored JSON) and snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VariableSpec(_CamelModel):
    """An authored variable of a dynamic question."""

    name: str = Field(..., min_length=1)
    randomize: bool = False
    is_final_answer: bool = False
    unit: str | None = None
    default: str | None = None
    min: float | None = None
    max: float | None = None
    decimal_places: int | None = Field(None, ge=0, le=10)
    step: float | None = None
    key: str | None = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Cannot be empty")
        if "=" in value or "$" in value:
            raise ValueError("Equal and dollar signs not allowed")
        return value

    @field_validator("default", mode="before")
    @classmethod
    def _coerce_default(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return repr(value)
        return value


class MethodSpec(_CamelModel):
    """A derivation step 'lhs = rhs'."""

    expr: str = Field(..., min_length=1)
    explanation: str | None = None


class HintSpec(_CamelModel):
    hint: str


class AnswerOption(_CamelModel):
    """One selectable option of a question."""

    key: str
    answer_content: str = Field(..., min_length=1, max_length=500)
    is_correct: bool
    is_latex: bool = False


class ResolvedVariable(_CamelModel):
    """A variable after evaluation, as shown to the learner."""

    name: str
    unit: str | None = None
    value: float
    default: str  # display text, kept under the stored field name


class QuestionData(_CamelModel):
    """Full authored payload of a question."""

    variables: list[VariableSpec] | None = None
    methods: list[MethodSpec] | None = None
    hints: list[HintSpec] | None = None
    answers: list[AnswerOption] | None = None

    @property
    def is_dynamic(self) -> bool:
        return bool(self.methods)

    def to_json(self) -> dict[str, Any]:
        """Serialize with the stored camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_question_data(raw: dict[str, Any] | QuestionData) -> QuestionData:
    """
    Validate stored/authored question data.

    Raises:
        QuestionDataError: If the payload does not match the schema
    """
    if isinstance(raw, QuestionData):
        return raw
    try:
        return QuestionData.model_validate(raw or {})
    except ValidationError as e:
        raise QuestionDataError(f"Invalid question data: {e}") from e


def parse_answers(raw: list[dict[str, Any]]) -> list[AnswerOption]:
    """Validate a stored answer list."""
    try:
        return [AnswerOption.model_validate(item) for item in raw]
    except ValidationError as e:
        raise QuestionDataError(f"Invalid answer options: {e}") from e
