"""
Question Evaluator.

Turns the variables and methods of a dynamic question into a concrete
instance: sampled inputs, computed final answers and generated distractors.

Evaluation order:
1. Variables in declaration order. Randomized variables are sampled on their
   [min, max] grid (or keep their default when not randomizing); fixed
   variables evaluate their default, which may reference earlier variables.
   Final-answer variables are declared here and assigned by methods.
2. Methods in declaration order. Each is "lhs = rhs"; rhs may only use names
   that already hold a value.
3. Materialization. Non-final variables become the learner-visible variable
   list; each final answer becomes a correct option plus distractors.

Rounding policy:
- A randomized input is rounded to its decimalPlaces when sampled, and that
  rounded value is what later methods use (it is the value the learner sees).
- Values computed by methods stay unrounded through later methods and are
  rounded only when materialized.

Each call is independent. With randomize=False every random choice comes
from a generator seeded with `preview_seed`, so identical inputs give
identical output.
"""

from __future__ import annotations

import hashlib
import math
import random
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from recommender.core.exceptions import EvaluationError
from recommender.evaluator.distractors import (
    DistractorConfig,
    format_value,
    generate_distractors,
    percent_offsets,
)
from recommender.evaluator.expression import (
    ExpressionError,
    evaluate_expression,
    sanitize,
    substitute_names,
)
from recommender.evaluator.schema import (
    AnswerOption,
    MethodSpec,
    QuestionData,
    ResolvedVariable,
    VariableSpec,
    parse_question_data,
)

_GRID_TOLERANCE = 1e-9


@dataclass
class EvaluationResult:
    """Materialized dynamic question."""

    variables: list[ResolvedVariable]
    answers: list[AnswerOption]
    values: dict[str, float] = field(default_factory=dict)  # unrounded, by authored name

    def variables_json(self) -> list[dict]:
        return [v.model_dump(by_alias=True, exclude_none=True) for v in self.variables]

    def answers_json(self) -> list[dict]:
        return [a.model_dump(by_alias=True) for a in self.answers]


def option_key(name: str, text: str) -> str:
    """Stable, opaque key for an answer option."""
    return hashlib.sha1(f"{name}|{text}".encode()).hexdigest()[:10]


def sample_variable(spec: VariableSpec, rng: random.Random) -> float:
    """
    Draw a value for a randomized variable.

    With a step, v = min + k·step for k uniform over the grid; otherwise v is
    uniform on [min, max]. The result is rounded to decimalPlaces and kept
    inside [min, max].
    """
    low, high = spec.min, spec.max
    if spec.step:
        steps = math.floor((high - low) / spec.step + _GRID_TOLERANCE)
        value = low + rng.randint(0, steps) * spec.step
    else:
        value = rng.uniform(low, high)

    value = round(value, spec.decimal_places if spec.decimal_places is not None else 12)
    return min(max(value, low), high)


class QuestionEvaluator:
    """
    Evaluate dynamic question definitions.

    Example:
        evaluator = QuestionEvaluator()
        result = evaluator.evaluate(variables, methods, randomize=True)
        result.answers  # correct options + distractors
    """

    def __init__(
        self,
        distractor_config: DistractorConfig | None = None,
        rng: random.Random | None = None,
        preview_seed: int = 0,
    ):
        """
        Initialize evaluator.

        Args:
            distractor_config: Distractor grid/count (defaults match the editor)
            rng: Random source for the randomizing path
            preview_seed: Seed for the non-random path
        """
        self.distractor_config = distractor_config or DistractorConfig()
        self.rng = rng or random.Random()
        self.preview_seed = preview_seed

    def evaluate_question_data(
        self, question_data: QuestionData | dict, randomize: bool = True
    ) -> EvaluationResult:
        """Evaluate a stored question payload."""
        data = parse_question_data(question_data)
        return self.evaluate(data.variables or [], data.methods or [], randomize=randomize)

    def evaluate(
        self,
        variables: Sequence[VariableSpec | dict],
        methods: Sequence[MethodSpec | dict],
        randomize: bool = False,
    ) -> EvaluationResult:
        """
        Evaluate variables and methods.

        Args:
            variables: Variable definitions in declaration order
            methods: Method definitions in declaration order
            randomize: Re-sample every randomized variable

        Returns:
            EvaluationResult with resolved variables and answer options

        Raises:
            EvaluationError: On the first variable or method that fails
        """
        specs = [v if isinstance(v, VariableSpec) else VariableSpec.model_validate(v) for v in variables]
        steps = [m if isinstance(m, MethodSpec) else MethodSpec.model_validate(m) for m in methods]
        rng = self.rng if randomize else random.Random(self.preview_seed)

        tokens: dict[str, str] = {}  # authored name -> safe token
        names: dict[str, str] = {}  # safe token -> authored name
        env: dict[str, float] = {}  # safe token -> value

        def register(name: str) -> str:
            if name not in tokens:
                token = f"_v{len(tokens)}"
                tokens[name] = token
                names[token] = name
            return tokens[name]

        for index, spec in enumerate(specs):
            if spec.name in tokens:
                raise EvaluationError(
                    f"Duplicate variable name '{spec.name}'", stage="variable", index=index
                )

            if spec.is_final_answer:
                register(spec.name)
                continue

            if spec.randomize and (randomize or not spec.default):
                env_value = self._sample(spec, index, rng)
            elif spec.default not in (None, ""):
                env_value = self._run(
                    spec.default, tokens, names, env, stage="variable", index=index
                )
            else:
                register(spec.name)
                continue

            env[register(spec.name)] = env_value

        for index, method in enumerate(steps):
            expr = method.expr
            if expr.count("=") != 1:
                raise EvaluationError(
                    "Expression must contain exactly one '='",
                    stage="method",
                    index=index,
                    expr=expr,
                    sanitized=sanitize(expr),
                    substituted=sanitize(substitute_names(expr, tokens)),
                )
            lhs, rhs = (part.strip() for part in expr.split("="))
            if not lhs or not rhs:
                raise EvaluationError(
                    "Both sides of '=' must be non-empty",
                    stage="method",
                    index=index,
                    expr=expr,
                    sanitized=sanitize(expr),
                    substituted=sanitize(substitute_names(expr, tokens)),
                )
            value = self._run(rhs, tokens, names, env, stage="method", index=index, expr=expr)
            env[register(lhs)] = value
            logger.debug(f"method #{index}: {lhs} = {value}")

        for index, spec in enumerate(specs):
            if tokens[spec.name] not in env:
                reason = "Final answer is never computed" if spec.is_final_answer else "Variable has no value"
                raise EvaluationError(f"{reason}: '{spec.name}'", stage="variable", index=index)

        values = {name: env[token] for name, token in tokens.items()}
        return EvaluationResult(
            variables=self._resolve_variables(specs, values),
            answers=self._resolve_answers(specs, values, rng),
            values=values,
        )

    # ========================================
    # Internals
    # ========================================

    def _sample(self, spec: VariableSpec, index: int, rng: random.Random) -> float:
        if spec.min is None or spec.max is None:
            raise EvaluationError(
                f"Randomized variable '{spec.name}' needs min and max", stage="variable", index=index
            )
        if spec.min > spec.max:
            raise EvaluationError(
                f"min {spec.min} is above max {spec.max} for '{spec.name}'",
                stage="variable",
                index=index,
            )
        if spec.step is not None and spec.step <= 0:
            raise EvaluationError(
                f"step must be positive for '{spec.name}'", stage="variable", index=index
            )
        return sample_variable(spec, rng)

    def _run(
        self,
        text: str,
        tokens: dict[str, str],
        names: dict[str, str],
        env: dict[str, float],
        *,
        stage: str,
        index: int,
        expr: str | None = None,
    ) -> float:
        sanitized = sanitize(text)
        substituted = sanitize(substitute_names(text, tokens))
        try:
            return evaluate_expression(substituted, env, names)
        except ExpressionError as e:
            raise EvaluationError(
                str(e),
                stage=stage,
                index=index,
                expr=expr if expr is not None else text,
                sanitized=sanitized,
                substituted=substituted,
            ) from e

    def _resolve_variables(
        self, specs: list[VariableSpec], values: dict[str, float]
    ) -> list[ResolvedVariable]:
        resolved = []
        for spec in specs:
            if spec.is_final_answer:
                continue
            value = values[spec.name]
            if spec.decimal_places is not None:
                value = round(value, spec.decimal_places)
            resolved.append(
                ResolvedVariable(
                    name=spec.name,
                    unit=spec.unit,
                    value=value,
                    default=format_value(value, spec.decimal_places),
                )
            )
        return resolved

    def _resolve_answers(
        self, specs: list[VariableSpec], values: dict[str, float], rng: random.Random
    ) -> list[AnswerOption]:
        config = self.distractor_config
        answers: list[AnswerOption] = []
        for index, spec in enumerate(specs):
            if not spec.is_final_answer:
                continue
            value = values[spec.name]
            decimal_places = (
                spec.decimal_places if spec.decimal_places is not None else config.decimal_places
            )
            try:
                offsets = percent_offsets(
                    spec.min if spec.min is not None else config.min_percent,
                    spec.max if spec.max is not None else config.max_percent,
                    spec.step if spec.step is not None else config.step_percent,
                )
            except ValueError as e:
                raise EvaluationError(
                    f"Invalid distractor range for '{spec.name}': {e}",
                    stage="variable",
                    index=index,
                ) from e
            suffix = f" {spec.unit}" if spec.unit else ""

            correct_text = format_value(value, decimal_places) + suffix
            answers.append(
                AnswerOption(
                    key=option_key(spec.name, correct_text),
                    answer_content=correct_text,
                    is_correct=True,
                )
            )
            for text in generate_distractors(
                value,
                decimal_places=decimal_places,
                offsets=offsets,
                count=config.count,
                rng=rng,
            ):
                answers.append(
                    AnswerOption(
                        key=option_key(spec.name, text + suffix),
                        answer_content=text + suffix,
                        is_correct=False,
                    )
                )
        return answers


def evaluate(
    variables: Sequence[VariableSpec | dict],
    methods: Sequence[MethodSpec | dict],
    randomize: bool = False,
    *,
    distractor_config: DistractorConfig | None = None,
    rng: random.Random | None = None,
) -> EvaluationResult:
    """Module-level shortcut for a one-off evaluation."""
    return QuestionEvaluator(distractor_config=distractor_config, rng=rng).evaluate(
        variables, methods, randomize=randomize
    )
