"""
Unit tests for distractor generation.

Run: pytest tests/unit/test_distractors.py -v
"""

import random

import pytest

from config import Settings
from recommender.evaluator.distractors import (
    DistractorConfig,
    format_value,
    generate_distractors,
    percent_offsets,
)


class TestPercentOffsets:
    """Test percent_offsets function."""

    def test_default_grid(self):
        assert percent_offsets(-90, 90, 20) == [-90, -70, -50, -30, -10, 10, 30, 50, 70, 90]

    def test_zero_excluded(self):
        assert 0 not in percent_offsets(-20, 20, 10)

    def test_fractional_step(self):
        assert percent_offsets(0.5, 1.5, 0.5) == [0.5, 1.0, 1.5]

    def test_invalid_step(self):
        with pytest.raises(ValueError):
            percent_offsets(-10, 10, 0)

    def test_min_above_max(self):
        with pytest.raises(ValueError):
            percent_offsets(10, -10, 5)


class TestFormatValue:
    """Test format_value function."""

    def test_fixed_places(self):
        assert format_value(1.23456, 2) == "1.23"

    def test_negative_zero_normalized(self):
        assert format_value(-0.0001, 2) == "0.00"

    def test_no_places_integer(self):
        assert format_value(4.0, None) == "4"

    def test_no_places_float(self):
        assert format_value(0.1 + 0.2, None) == "0.3"


class TestGenerateDistractors:
    """Test generate_distractors function."""

    def test_count_and_distinct(self):
        result = generate_distractors(
            10.0,
            decimal_places=2,
            offsets=percent_offsets(-90, 90, 20),
            count=3,
            rng=random.Random(0),
        )
        assert len(result) == 3
        assert len(set(result)) == 3
        assert "10.00" not in result

    def test_values_come_from_grid(self):
        offsets = percent_offsets(-90, 90, 20)
        allowed = {format_value(10.0 * (1 + p / 100), 1) for p in offsets}
        result = generate_distractors(
            10.0, decimal_places=1, offsets=offsets, count=5, rng=random.Random(3)
        )
        assert set(result) <= allowed

    def test_collisions_dropped_at_low_precision(self):
        # 0.4 ± up to 90% at 0 decimals only yields "0" and "1"
        result = generate_distractors(
            0.4,
            decimal_places=0,
            offsets=percent_offsets(-90, 90, 20),
            count=3,
            rng=random.Random(1),
        )
        assert result == ["1"]

    def test_same_seed_same_choice(self):
        kwargs = {"decimal_places": 3, "offsets": percent_offsets(-90, 90, 20), "count": 3}
        first = generate_distractors(2.5, rng=random.Random(9), **kwargs)
        second = generate_distractors(2.5, rng=random.Random(9), **kwargs)
        assert first == second


class TestDistractorConfig:
    def test_from_settings(self):
        settings = Settings(distractor_count=5, distractor_step_percent=10)
        config = DistractorConfig.from_settings(settings)
        assert config.count == 5
        assert config.step_percent == 10
        assert config.decimal_places == 3
