"""
Distractor generation for numeric final answers.

A distractor is the correct value scaled by a percentage offset taken from a
grid (default -90%..90% in 20% steps, zero excluded). When the correct value
is 0 the offsets are used as absolute values instead. Candidates whose
formatted text collides with the correct answer or with an earlier
distractor are dropped, so every option the learner sees is distinct.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import Settings

_GRID_TOLERANCE = 1e-9


@dataclass(frozen=True)
class DistractorConfig:
    """Perturbation grid and count for generated distractors."""

    count: int = 3
    min_percent: float = -90.0
    max_percent: float = 90.0
    step_percent: float = 20.0
    decimal_places: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> DistractorConfig:
        return cls(**settings.get_distractor_config())


def percent_offsets(min_percent: float, max_percent: float, step_percent: float) -> list[float]:
    """
    Offsets on the grid min..max (inclusive) in step increments, without 0.

    Example:
        percent_offsets(-90, 90, 20) -> [-90, -70, -50, -30, -10, 10, 30, 50, 70, 90]
    """
    if step_percent <= 0:
        raise ValueError(f"step_percent must be positive, got {step_percent}")
    if min_percent > max_percent:
        raise ValueError(f"min_percent {min_percent} is above max_percent {max_percent}")

    steps = math.floor((max_percent - min_percent) / step_percent + _GRID_TOLERANCE)
    offsets = []
    for k in range(steps + 1):
        offset = round(min_percent + k * step_percent, 10)
        if abs(offset) > _GRID_TOLERANCE:
            offsets.append(offset)
    return offsets


def format_value(value: float, decimal_places: int | None) -> str:
    """Fixed-point text for a number; plain shortest text when no precision is set."""
    if decimal_places is None:
        value = round(value, 10)
        text = str(int(value)) if value.is_integer() else f"{value:.10g}"
    else:
        text = f"{value:.{decimal_places}f}"
    if text.startswith("-") and float(text) == 0:
        text = text[1:]
    return text


def generate_distractors(
    value: float,
    *,
    decimal_places: int,
    offsets: list[float],
    count: int,
    rng: random.Random,
) -> list[str]:
    """
    Build up to `count` distinct wrong answers around `value`.

    Args:
        value: Correct (unrounded) value
        decimal_places: Display precision shared with the correct answer
        offsets: Percentage offsets to choose from
        count: Number of distractors wanted
        rng: Source of randomness for choosing among the offsets

    Returns:
        Formatted distractor texts (may be fewer than `count` if the grid
        cannot produce enough distinct values at this precision)
    """
    correct_text = format_value(value, decimal_places)
    if value == 0:
        candidates = [offset / 100.0 for offset in offsets]
    else:
        candidates = [value * (1.0 + offset / 100.0) for offset in offsets]

    seen = {correct_text}
    distractors: list[str] = []
    for candidate in rng.sample(candidates, len(candidates)):
        if len(distractors) >= count:
            break
        text = format_value(candidate, decimal_places)
        if text in seen:
            continue
        seen.add(text)
        distractors.append(text)
    return distractors
