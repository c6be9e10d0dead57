"""
Ranked, size-capped leaderboard of completed trivia sessions.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .data_manager import PersistenceError, Storage
from .models import LeaderboardEntry

logger = logging.getLogger(__name__)

LEADERBOARD_SLOT = "leaderboard"
MAX_ENTRIES = 10
DEFAULT_PLAYER_NAME = "Anonymous"
_EPOCH = datetime.fromtimestamp(0, timezone.utc)


def rank_key(entry: LeaderboardEntry):
    """Sort key: weighted score desc, correct count desc, earlier timestamp first."""
    timestamp = entry.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return (-entry.weighted_score, -entry.correct_count, timestamp)


def rank_entries(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    """Return entries ranked and truncated to the leaderboard size."""
    return sorted(entries, key=rank_key)[:MAX_ENTRIES]


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string; naive values are taken as UTC, bad ones as the epoch."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return _EPOCH
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _EPOCH


def entry_to_record(entry: LeaderboardEntry) -> Dict[str, Any]:
    return {
        'name': entry.name,
        'score': entry.correct_count,
        'trueScore': entry.weighted_score,
        'date': entry.timestamp.isoformat(),
    }


def record_to_entry(record: Any) -> Optional[LeaderboardEntry]:
    """
    Convert a persisted record into an entry.

    Records written before weighted scores existed have no `trueScore`; their
    correct count is used instead. Returns None for records that cannot be used.
    """
    if not isinstance(record, dict):
        return None

    name = record.get('name')
    score = record.get('score')
    if not isinstance(name, str) or isinstance(score, bool) or not isinstance(score, (int, float)):
        return None

    true_score = record.get('trueScore', score)
    if isinstance(true_score, bool) or not isinstance(true_score, (int, float)) or math.isnan(true_score):
        true_score = score

    return LeaderboardEntry(
        name=name,
        correct_count=int(score),
        weighted_score=float(true_score),
        timestamp=parse_timestamp(record.get('date')),
    )


class LeaderboardStore:
    """
    Loads, ranks and persists leaderboard entries through a storage backend.

    Storage failures never reach the caller: reads fall back to an empty
    board and failed writes still return the ranked in-memory list.
    """

    def __init__(self, storage: Storage, slot: str = LEADERBOARD_SLOT):
        self.storage = storage
        self.slot = slot

    def load(self) -> List[LeaderboardEntry]:
        """Read persisted entries in rank order; any failure yields []."""
        try:
            records = self.storage.read(self.slot)
        except PersistenceError as e:
            logger.warning(f"Could not read leaderboard: {e}")
            return []
        except Exception as e:
            logger.error(f"Unexpected error reading leaderboard: {e}")
            return []

        if records is None:
            return []
        if not isinstance(records, list):
            logger.warning(f"Leaderboard slot holds {type(records).__name__}, expected list")
            return []

        entries = []
        for record in records:
            entry = record_to_entry(record)
            if entry is None:
                logger.warning(f"Skipping malformed leaderboard record: {record!r}")
                continue
            entries.append(entry)
        return rank_entries(entries)

    def save(self, entry: LeaderboardEntry) -> List[LeaderboardEntry]:
        """
        Insert an entry, re-rank, keep the top 10 and persist them.

        Returns:
            The ranked leaderboard, whether or not the write succeeded
        """
        ranked = rank_entries(self.load() + [entry])
        try:
            self.storage.write(self.slot, [entry_to_record(e) for e in ranked])
        except PersistenceError as e:
            logger.warning(f"Could not persist leaderboard, keeping in-memory ranking: {e}")
        except Exception as e:
            logger.error(f"Unexpected error persisting leaderboard: {e}")
        else:
            logger.info(
                f"Saved leaderboard entry for {entry.name!r}: "
                f"{entry.correct_count} correct, weighted {entry.weighted_score:.2f}"
            )
        return ranked

    def record(
        self,
        name: str,
        correct_count: int,
        weighted_score: float,
        timestamp: Optional[datetime] = None
    ) -> List[LeaderboardEntry]:
        """Build an entry for a finished session and save it."""
        timestamp = timestamp or datetime.now(timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        entry = LeaderboardEntry(
            name=(name or "").strip() or DEFAULT_PLAYER_NAME,
            correct_count=correct_count,
            weighted_score=weighted_score,
            timestamp=timestamp,
        )
        return self.save(entry)

    def top(self, count: int = 3) -> List[LeaderboardEntry]:
        return self.load()[:max(0, count)]
