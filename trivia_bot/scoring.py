"""
Scoring rules for trivia sessions.

Each correct answer adds a difficulty weight to the running score. When the
session finishes, the running score is scaled by a time factor that stays at
1.0 for sessions completed within the grace period and shrinks afterwards.
"""
import math
from typing import Tuple

DIFFICULTY_WEIGHTS = {
    "easy": 1.0,
    "medium": 1.3,
    "hard": 1.7,
}
DEFAULT_WEIGHT = 1.0
GRACE_PERIOD_SECONDS = 60


def difficulty_weight(difficulty) -> float:
    """Return the score multiplier for a difficulty; unknown values weigh 1.0."""
    if not isinstance(difficulty, str):
        return DEFAULT_WEIGHT
    return DIFFICULTY_WEIGHTS.get(difficulty.strip().lower(), DEFAULT_WEIGHT)


def record_answer(
    correct_count: int,
    weighted_score_running: float,
    difficulty: str,
    correct: bool
) -> Tuple[int, float]:
    """
    Apply one resolved question to the running totals.

    Returns:
        Updated (correct_count, weighted_score_running)
    """
    if not correct:
        return correct_count, weighted_score_running
    return correct_count + 1, weighted_score_running + difficulty_weight(difficulty)


def time_factor(elapsed_seconds: float) -> float:
    """Return 60 / max(60, elapsed_seconds), a value in (0, 1]."""
    if elapsed_seconds is None or math.isnan(elapsed_seconds) or elapsed_seconds < 0:
        elapsed_seconds = 0
    return GRACE_PERIOD_SECONDS / max(GRACE_PERIOD_SECONDS, elapsed_seconds)


def final_weighted_score(weighted_score_running: float, elapsed_seconds: float) -> float:
    """Scale the running score by the time factor."""
    return weighted_score_running * time_factor(elapsed_seconds)
