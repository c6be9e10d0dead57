"""
Core data models for the Trivia Bot.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime


@dataclass(frozen=True)
class Question:
    """Represents a single trivia question. The correct answer is options[0]."""
    text: str
    correct_answer: str
    options: List[str] = field(default_factory=list)
    type: str = "multiple"
    category: str = ""
    difficulty: str = "medium"

    @property
    def is_boolean(self) -> bool:
        return self.type == "boolean"


@dataclass(frozen=True)
class GameOptions:
    """Options snapshot used to build one session's question request."""
    amount: int = 3
    category: int = 0
    difficulty: str = "any"
    type: str = "any"


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a quiz session handed to presentation listeners."""
    state: str
    current_index: int
    total_questions: int
    countdown_remaining: int
    answered: bool
    time_expired: bool
    correct_count: int
    weighted_score_running: float
    elapsed_seconds_total: float
    last_answer_correct: Optional[bool] = None


@dataclass(frozen=True)
class SessionResult:
    """Terminal event emitted when a session finishes."""
    correct_count: int
    final_weighted_score: float
    total_questions: int
    elapsed_seconds_total: float


@dataclass(frozen=True)
class LeaderboardEntry:
    """A completed session result as stored on the leaderboard."""
    name: str
    correct_count: int
    weighted_score: float
    timestamp: datetime
