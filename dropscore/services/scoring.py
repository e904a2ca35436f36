"""Scoring rules: survival time in, points out.

Kept apart from validation and ranking so the formula can change without
touching either. The only contract is determinism and that a longer survival
never scores fewer points.
"""

from __future__ import annotations

from typing import Callable

POINTS_PER_SECOND = 100
MILESTONE_SECONDS = 5
MILESTONE_BONUS = 250

ScoringFunction = Callable[[float], int]


def calculate_score(survival_time_seconds: float) -> int:
    centiseconds = round(survival_time_seconds * POINTS_PER_SECOND)
    # Milestones count from the rounded value so 4.999 and 5.00 agree.
    milestones = centiseconds // (MILESTONE_SECONDS * POINTS_PER_SECOND)
    return centiseconds + milestones * MILESTONE_BONUS
