"""
Core Mastery Module.

Pure (database-free) mastery model shared by the tracker and the recommender.

Design:
- MasteryLevel: Enum for categorizing mastery scores
- MasteryState: Dataclass for the full per-user-per-topic state
- MasteryRuleConfig: Tunable constants of the update rule
- MasteryUpdateRule: Incremental update applied to one attempt outcome
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import Settings


class MasteryLevel(str, Enum):
    """
    Mastery level categorization.

    Aligned with learning science research on skill acquisition stages.
    """

    NOVICE = "novice"  # 0-39%
    DEVELOPING = "developing"  # 40-69%
    PROFICIENT = "proficient"  # 70-89%
    MASTERED = "mastered"  # 90-100%

    @classmethod
    def from_score(cls, score: float) -> MasteryLevel:
        """
        Convert a 0-1 mastery score to a level.

        Args:
            score: Mastery score between 0 and 1

        Returns:
            Corresponding MasteryLevel
        """
        if score < 0.4:
            return cls.NOVICE
        elif score < 0.7:
            return cls.DEVELOPING
        elif score < 0.9:
            return cls.PROFICIENT
        else:
            return cls.MASTERED

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.replace("_", " ").title()

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryLevel.NOVICE: "red",
            MasteryLevel.DEVELOPING: "yellow",
            MasteryLevel.PROFICIENT: "cyan",
            MasteryLevel.MASTERED: "green",
        }[self]


@dataclass(frozen=True)
class MasteryState:
    """Mastery state for one user on one topic."""

    mastery: float
    error_meter: int = 0
    flagged: bool = False
    last_flagged: datetime | None = None
    weekly_mastery: float | None = None
    fortnightly_mastery: float | None = None
    last_active: datetime | None = None

    @classmethod
    def initial(cls, prior: float) -> MasteryState:
        """State for a user who has never attempted the topic."""
        return cls(mastery=prior, weekly_mastery=prior, fortnightly_mastery=prior)

    @property
    def level(self) -> MasteryLevel:
        return MasteryLevel.from_score(self.mastery)


@dataclass(frozen=True)
class MasterySnapshot:
    """Read-only view of a stored mastery record, returned to callers."""

    user_id: str
    topic_slug: str
    topic_name: str
    mastery: float
    level: MasteryLevel
    error_meter: int
    flagged: bool
    last_flagged: datetime | None
    weekly_mastery: float
    fortnightly_mastery: float
    last_active: datetime | None

    @property
    def mastery_percentage(self) -> float:
        """Mastery as percentage (0-100)."""
        return self.mastery * 100


@dataclass(frozen=True)
class MasteryRuleConfig:
    """Tunable constants of the mastery update rule."""

    gain_rate: float = 0.2
    loss_rate: float = 0.2
    error_threshold: int = 3
    weekly_horizon_days: float = 7.0
    fortnightly_horizon_days: float = 14.0
    aggregate_min_weight: float = 0.05

    def __post_init__(self):
        if not 0.0 < self.gain_rate < 1.0:
            raise ValueError(f"gain_rate must be in (0, 1), got {self.gain_rate}")
        if not 0.0 < self.loss_rate < 1.0:
            raise ValueError(f"loss_rate must be in (0, 1), got {self.loss_rate}")
        if self.error_threshold < 1:
            raise ValueError("error_threshold must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> MasteryRuleConfig:
        return cls(**settings.get_mastery_config())


# ============================================================================
# Time helpers
# ============================================================================


def as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps (as returned by SQLite) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def calculate_days_since(last_active: datetime | None, now: datetime | None = None) -> float:
    """
    Calculate days elapsed since the last activity.

    Args:
        last_active: Timestamp of last activity (can be naive or aware)
        now: Current time (defaults to UTC now)

    Returns:
        Days elapsed as float, 0 if never active
    """
    if last_active is None:
        return 0.0

    if now is None:
        now = datetime.now(UTC)

    delta = as_utc(now) - as_utc(last_active)
    return max(0.0, delta.total_seconds() / 86400.0)


# ============================================================================
# Update rule
# ============================================================================


class MasteryUpdateRule:
    """
    Bounded incremental mastery update.

    Formula:
        correct:   m' = m + gain_rate × (1 − m)
        incorrect: m' = m − loss_rate × m

    Both branches are convex combinations of m with 1 or 0, so a mastery
    starting in [0, 1] never leaves it and never jumps straight to an end.
    """

    def __init__(self, config: MasteryRuleConfig | None = None):
        self.config = config or MasteryRuleConfig()

    def next_mastery(self, mastery: float, correct: bool) -> float:
        """Apply one outcome to a mastery value."""
        if correct:
            return mastery + self.config.gain_rate * (1.0 - mastery)
        return mastery - self.config.loss_rate * mastery

    def aggregate_weight(self, elapsed_days: float, horizon_days: float) -> float:
        """
        Pull of a new observation on a windowed aggregate.

        Weight = 1 − e^(−t/H), floored at aggregate_min_weight so a burst of
        attempts within minutes still moves the aggregate.
        """
        weight = 1.0 - math.exp(-elapsed_days / horizon_days)
        return min(1.0, max(self.config.aggregate_min_weight, weight))

    def apply(self, state: MasteryState, correct: bool, now: datetime) -> MasteryState:
        """
        Produce the state after one attempt.

        Args:
            state: State read from storage
            correct: Outcome of the attempt
            now: Submission time

        Returns:
            New MasteryState (the input is not modified)
        """
        mastery = self.next_mastery(state.mastery, correct)

        if correct:
            error_meter = 0
        else:
            error_meter = state.error_meter + 1

        flagged = state.flagged
        last_flagged = state.last_flagged
        if error_meter >= self.config.error_threshold:
            flagged = True
            last_flagged = now

        elapsed = calculate_days_since(state.last_active, now)
        weekly = state.weekly_mastery if state.weekly_mastery is not None else state.mastery
        fortnightly = (
            state.fortnightly_mastery if state.fortnightly_mastery is not None else state.mastery
        )
        weekly += self.aggregate_weight(elapsed, self.config.weekly_horizon_days) * (
            mastery - weekly
        )
        fortnightly += self.aggregate_weight(elapsed, self.config.fortnightly_horizon_days) * (
            mastery - fortnightly
        )

        return replace(
            state,
            mastery=mastery,
            error_meter=error_meter,
            flagged=flagged,
            last_flagged=last_flagged,
            weekly_mastery=weekly,
            fortnightly_mastery=fortnightly,
            last_active=now,
        )
