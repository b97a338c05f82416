"""
Unit tests for the question evaluator.

Tests variable sampling, method chaining, answer materialization and the
diagnostics carried by EvaluationError.

Run: pytest tests/unit/test_evaluator.py -v
"""

import math
import random

import pytest

from recommender.core.exceptions import EvaluationError, QuestionDataError
from recommender.evaluator import (
    DistractorConfig,
    QuestionEvaluator,
    VariableSpec,
    evaluate,
)
from recommender.evaluator.evaluator import option_key, sample_variable


def _final(name="y", decimal_places=3, **extra):
    return {"name": name, "isFinalAnswer": True, "decimalPlaces": decimal_places, **extra}


class TestSampleVariable:
    """Test sample_variable on its range and grid."""

    @pytest.mark.parametrize(
        "low,high,step,decimals",
        [(1, 12, 0.5, 1), (0, 1, 0.1, 1), (-5, 5, 2.5, 2), (100, 200, 7, 0)],
    )
    def test_values_on_grid_and_in_range(self, low, high, step, decimals):
        spec = VariableSpec(
            name="x", randomize=True, min=low, max=high, step=step, decimal_places=decimals
        )
        rng = random.Random(42)
        for _ in range(300):
            value = sample_variable(spec, rng)
            assert low <= value <= high
            k = (value - low) / step
            assert abs(k - round(k)) < 1e-6

    def test_without_step_is_uniform_and_rounded(self):
        spec = VariableSpec(name="x", randomize=True, min=0.0, max=1.0, decimal_places=2)
        rng = random.Random(7)
        for _ in range(200):
            value = sample_variable(spec, rng)
            assert 0.0 <= value <= 1.0
            assert value == round(value, 2)

    def test_degenerate_range(self):
        spec = VariableSpec(name="x", randomize=True, min=3, max=3, step=1)
        assert sample_variable(spec, random.Random()) == 3


class TestEvaluate:
    """Test QuestionEvaluator.evaluate."""

    def test_ohms_law(self, ohms_law_data):
        result = QuestionEvaluator().evaluate(
            ohms_law_data["variables"], ohms_law_data["methods"], randomize=False
        )

        assert [v.name for v in result.variables] == ["V_{in}", "R"]
        assert result.values["I"] == pytest.approx(5 / 220)

        correct = [a for a in result.answers if a.is_correct]
        assert len(correct) == 1
        assert correct[0].answer_content == "0.0227 A"
        assert len(result.answers) == 4

    def test_fixed_default_may_reference_earlier_variables(self):
        result = evaluate(
            [{"name": "r", "default": "2"}, {"name": "c", "default": "2*pi*r"}, _final("y")],
            [{"expr": "y = c"}],
        )
        assert result.values["c"] == pytest.approx(4 * math.pi)

    def test_methods_see_earlier_methods(self):
        result = evaluate(
            [{"name": "x", "default": "3"}, _final("y")],
            [{"expr": "t = x ^ 2"}, {"expr": "y = t + 1"}],
        )
        assert result.values["y"] == 10.0

    def test_unit_appended_to_options(self):
        result = evaluate([{"name": "x", "default": "2"}, _final("y", unit="Ω")], [{"expr": "y = x"}])
        assert all(a.answer_content.endswith(" Ω") for a in result.answers)

    def test_distractors_distinct(self):
        result = evaluate([{"name": "x", "default": "12.5"}, _final("y", 2)], [{"expr": "y = x"}])
        texts = [a.answer_content for a in result.answers]
        assert len(texts) == len(set(texts)) == 4
        assert sum(a.is_correct for a in result.answers) == 1

    def test_zero_answer_gets_absolute_distractors(self):
        result = evaluate([{"name": "x", "default": "0"}, _final("y", 1)], [{"expr": "y = x"}])
        wrong = [a.answer_content for a in result.answers if not a.is_correct]
        assert len(wrong) == 3
        assert "0.0" not in wrong

    def test_final_answer_range_overrides_config(self):
        result = evaluate(
            [
                {"name": "x", "default": "100"},
                _final("y", 0, min=10, max=10, step=5),
            ],
            [{"expr": "y = x"}],
        )
        wrong = [a.answer_content for a in result.answers if not a.is_correct]
        assert wrong == ["110"]

    def test_multiple_final_answers(self):
        result = evaluate(
            [{"name": "x", "default": "4"}, _final("a"), _final("b")],
            [{"expr": "a = sqrt(x)"}, {"expr": "b = x * 2"}],
        )
        correct = [a.answer_content for a in result.answers if a.is_correct]
        assert correct == ["2.000", "8.000"]

    def test_option_keys_stable(self):
        first = evaluate([{"name": "x", "default": "2"}, _final()], [{"expr": "y = x"}])
        correct = next(a for a in first.answers if a.is_correct)
        assert correct.key == option_key("y", "2.000")

    def test_answers_json_shape(self):
        result = evaluate([{"name": "x", "default": "2"}, _final()], [{"expr": "y = x"}])
        option = result.answers_json()[0]
        assert set(option) == {"key", "answerContent", "isCorrect", "isLatex"}

    def test_no_distractors_when_count_zero(self):
        evaluator = QuestionEvaluator(distractor_config=DistractorConfig(count=0))
        result = evaluator.evaluate([{"name": "x", "default": "2"}, _final()], [{"expr": "y = x"}])
        assert len(result.answers) == 1


class TestDeterminism:
    """Re-evaluation behaviour of the two paths."""

    def test_non_random_path_is_reproducible(self, ohms_law_data):
        evaluator = QuestionEvaluator(rng=random.Random())
        first = evaluator.evaluate_question_data(ohms_law_data, randomize=False)
        second = evaluator.evaluate_question_data(ohms_law_data, randomize=False)

        assert first.variables_json() == second.variables_json()
        assert first.answers_json() == second.answers_json()

    def test_non_random_path_samples_when_no_default(self):
        variables = [{"name": "x", "randomize": True, "min": 1, "max": 100, "step": 1}, _final()]
        evaluator = QuestionEvaluator(preview_seed=5)
        first = evaluator.evaluate(variables, [{"expr": "y = x"}])
        second = evaluator.evaluate(variables, [{"expr": "y = x"}])
        assert first.values == second.values

    def test_randomize_resamples(self, ohms_law_data):
        evaluator = QuestionEvaluator(rng=random.Random(1))
        seen = {
            evaluator.evaluate_question_data(ohms_law_data, randomize=True).values["V_{in}"]
            for _ in range(30)
        }
        assert len(seen) > 1
        assert all(1 <= v <= 12 for v in seen)


class TestRoundingPolicy:
    """Sampled inputs are rounded at sampling; computed values are not."""

    def test_methods_use_rounded_sampled_input(self):
        variables = [
            {"name": "x", "randomize": True, "min": 1, "max": 2, "decimalPlaces": 1},
            _final("y", 6),
        ]
        evaluator = QuestionEvaluator(rng=random.Random(3))
        for _ in range(20):
            result = evaluator.evaluate(variables, [{"expr": "y = x * 1"}], randomize=True)
            assert result.values["x"] == round(result.values["x"], 1)
            assert result.values["y"] == result.values["x"]

    def test_computed_values_stay_unrounded_between_methods(self):
        result = evaluate(
            [_final("t", 2), _final("y", 3)],
            [{"expr": "t = 1 / 3"}, {"expr": "y = t * 3"}],
        )
        correct = [a.answer_content for a in result.answers if a.is_correct]
        assert correct == ["0.33", "1.000"]


class TestEvaluationErrors:
    """EvaluationError carries the failing step and its text."""

    def test_two_equals_signs(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate(
                [{"name": "x", "default": "1"}, _final()],
                [{"expr": "y = x"}, {"expr": "y = x = 2"}],
            )
        error = exc_info.value
        assert error.stage == "method"
        assert error.index == 1
        assert error.expr == "y = x = 2"
        assert error.sanitized == "y = x = 2"
        assert error.substituted == "_v1 = _v0 = 2"

    def test_missing_equals(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate([{"name": "x", "default": "1"}, _final()], [{"expr": "x + 1"}])
        assert exc_info.value.index == 0

    def test_empty_side(self):
        with pytest.raises(EvaluationError, match="non-empty") as exc_info:
            evaluate([{"name": "x", "default": "1"}, _final()], [{"expr": "y = "}])
        assert exc_info.value.substituted == "_v1 ="

    def test_undefined_identifier_reports_substituted_text(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate([{"name": "x", "default": "1"}, _final()], [{"expr": "y = x + z"}])
        error = exc_info.value
        assert "Undefined identifier 'z'" in error.message
        assert error.sanitized == "x + z"
        assert error.substituted == "_v0 + z"

    def test_forward_reference(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate([_final()], [{"expr": "y = w * 2"}, {"expr": "w = 3"}])
        assert exc_info.value.index == 0

    def test_division_by_zero_in_method(self):
        with pytest.raises(EvaluationError, match="Division by zero") as exc_info:
            evaluate(
                [{"name": "x", "default": "0"}, _final()],
                [{"expr": "y = 1 / x"}],
            )
        assert exc_info.value.stage == "method"

    def test_final_answer_never_computed(self):
        with pytest.raises(EvaluationError, match="never computed"):
            evaluate([{"name": "x", "default": "1"}, _final()], [{"expr": "t = x"}])

    def test_min_above_max(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate(
                [{"name": "x", "randomize": True, "min": 5, "max": 1}, _final()],
                [{"expr": "y = x"}],
                randomize=True,
            )
        assert exc_info.value.stage == "variable"
        assert exc_info.value.index == 0

    def test_duplicate_variable(self):
        with pytest.raises(EvaluationError, match="Duplicate"):
            evaluate(
                [{"name": "x", "default": "1"}, {"name": "x", "default": "2"}, _final()],
                [{"expr": "y = x"}],
            )

    def test_to_dict(self):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate([_final()], [{"expr": "y = = 1"}])
        payload = exc_info.value.to_dict()
        assert payload["index"] == 0
        assert set(payload) == {"message", "stage", "index", "expr", "sanitized", "substituted"}

    def test_invalid_question_data(self):
        with pytest.raises(QuestionDataError):
            QuestionEvaluator().evaluate_question_data({"variables": [{"name": "a=b"}]})
