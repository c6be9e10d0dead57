"""
Storage backends for persisted bot data.

A backend maps named slots to JSON-compatible values. Every failure is raised
as PersistenceError so callers can decide whether to ignore it.
"""
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


class PersistenceError(Exception):
    """Raised when persisted data cannot be read or written."""
    pass


class Storage:
    """Interface for slot-based key/value storage."""

    def read(self, slot: str) -> Optional[Any]:
        """Return the value stored under slot, or None if the slot is empty."""
        raise NotImplementedError

    def write(self, slot: str, value: Any) -> None:
        """Replace the value stored under slot."""
        raise NotImplementedError


class InMemoryStorage(Storage):
    """Storage kept in a dict; values are deep-copied in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._slots: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def read(self, slot: str) -> Optional[Any]:
        return copy.deepcopy(self._slots.get(slot))

    def write(self, slot: str, value: Any) -> None:
        self._slots[slot] = copy.deepcopy(value)


class JsonFileStorage(Storage):
    """Stores all slots in a single JSON object on disk."""

    MAX_FILE_SIZE = 1024 * 1024  # 1MB

    def __init__(self, file_path: str = "./data/leaderboard.json"):
        """
        Initialize JsonFileStorage.

        Args:
            file_path: Path of the JSON file holding every slot
        """
        self.file_path = Path(file_path)
        self.logger = logging.getLogger(__name__)

    def read(self, slot: str) -> Optional[Any]:
        return self._load_all().get(slot)

    def write(self, slot: str, value: Any) -> None:
        try:
            data = self._load_all()
        except PersistenceError as e:
            # A corrupt file is replaced rather than blocking every future write
            self.logger.warning(f"Overwriting unreadable storage file {self.file_path}: {e}")
            data = {}
        data[slot] = value
        self._write_all(data)

    def _load_all(self) -> Dict[str, Any]:
        """
        Load and parse the whole storage file.

        Returns:
            Dictionary of slots; empty if the file does not exist yet
        """
        if not self.file_path.exists():
            return {}

        try:
            file_size = self.file_path.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                raise PersistenceError(
                    f"Storage file too large ({file_size / 1024:.1f}KB). "
                    f"Maximum size is {self.MAX_FILE_SIZE / 1024:.0f}KB"
                )
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Invalid JSON in {self.file_path}: {e}") from e
        except PermissionError as e:
            raise PersistenceError(f"Permission denied: Cannot read {self.file_path}") from e
        except OSError as e:
            raise PersistenceError(f"Failed to read {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"Expected a JSON object in {self.file_path}, got {type(data).__name__}")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        """Write all slots atomically: temp file in the same directory, then replace."""
        temp_path = None
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=str(self.file_path.parent),
                prefix=f".{self.file_path.name}.",
                suffix=".tmp"
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.file_path)
            temp_path = None
        except PermissionError as e:
            raise PersistenceError(f"Permission denied: Cannot write {self.file_path}") from e
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {self.file_path}: {e}") from e
        finally:
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)
