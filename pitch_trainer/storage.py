"""Persistence of learner progress.

The trainer only needs a very small key-value store: ``load(key)`` returns
a previously saved string (or ``None``) and ``save(key, value)`` stores one.
The core owns the record schema and serialises it as JSON; the store only
keeps the text.  Two stores are provided:

* :class:`MemoryStore`: a dictionary, used by tests and the web API.
* :class:`JsonFileStore`: every key lives in one JSON file on disk, by
  default ``~/.pitch_trainer_state.json`` (override with the
  ``PITCH_TRAINER_STATE_FILE`` environment variable).

Corrupt or unexpected records never surface as errors: they are logged and
replaced with zeroed defaults.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "ProgressRecord",
    "ProgressRepository",
    "PROGRESS_KEY",
    "DIFFICULTY_KEY",
    "MEMORY_LEVEL_KEY",
    "ACTIVITY_KEYS",
    "DEFAULT_STATE_FILE",
]

logger = logging.getLogger(__name__)

PROGRESS_KEY = "pitch_trainer_progress"
DIFFICULTY_KEY = "pitch_trainer_difficulty"
MEMORY_LEVEL_KEY = "pitch_trainer_memory_level"

# Identifiers of the per-activity counters inside the progress record.
ACTIVITY_KEYS = (
    "high_or_low",
    "match_sounds",
    "draw_melody",
    "sound_judgment",
    "memory_game",
)

env_path = os.environ.get("PITCH_TRAINER_STATE_FILE")
if env_path:
    DEFAULT_STATE_FILE = Path(env_path).expanduser()
else:
    DEFAULT_STATE_FILE = Path.home() / ".pitch_trainer_state.json"


class KeyValueStore(Protocol):
    def load(self, key: str) -> Optional[str]: ...
    def save(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-memory store backed by a plain dictionary."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def save(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """Store every key as a string entry inside one JSON document.

    Read and write failures are logged and otherwise ignored so that a
    missing or read-only state file never stops a game.
    """

    def __init__(self, path: Path = DEFAULT_STATE_FILE) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not load state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: expected a JSON object", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
        except OSError as exc:
            logger.error("Could not save state file %s: %s", self.path, exc)

    def load(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def save(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


@dataclass
class ProgressRecord:
    """Everything the trainer persists between sessions."""

    counts: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in ACTIVITY_KEYS})
    unlocked_patterns: List[str] = field(default_factory=lambda: ["up", "down"])
    memory_level: int = 0

    def count(self, activity_key: str) -> int:
        return self.counts.get(activity_key, 0)

    @property
    def overall(self) -> float:
        """Average of all activity counters."""
        return sum(self.count(k) for k in ACTIVITY_KEYS) / len(ACTIVITY_KEYS)


def _load_json(store: KeyValueStore, key: str):
    raw = store.load(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding corrupt %s record; falling back to defaults", key)
        return None


def _non_negative_int(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


class ProgressRepository:
    """Translate :class:`ProgressRecord` to and from a key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load(self) -> ProgressRecord:
        record = ProgressRecord()

        progress = _load_json(self.store, PROGRESS_KEY)
        if isinstance(progress, dict):
            for key in ACTIVITY_KEYS:
                record.counts[key] = _non_negative_int(progress.get(key, 0))
        elif progress is not None:
            logger.warning("Unexpected %s record %r; using zeroed progress", PROGRESS_KEY, progress)

        difficulty = _load_json(self.store, DIFFICULTY_KEY)
        if isinstance(difficulty, dict):
            patterns = difficulty.get("unlocked_patterns")
            if isinstance(patterns, list):
                merged = list(record.unlocked_patterns)
                merged.extend(p for p in patterns if isinstance(p, str) and p not in merged)
                record.unlocked_patterns = merged

        level = _load_json(self.store, MEMORY_LEVEL_KEY)
        if level is not None:
            record.memory_level = _non_negative_int(level)
        return record

    def save(self, record: ProgressRecord) -> None:
        self.store.save(PROGRESS_KEY, json.dumps({k: record.count(k) for k in ACTIVITY_KEYS}))
        self.store.save(DIFFICULTY_KEY, json.dumps({"unlocked_patterns": record.unlocked_patterns}))
        self.store.save(MEMORY_LEVEL_KEY, json.dumps(record.memory_level))

    def reset(self) -> ProgressRecord:
        for key in (PROGRESS_KEY, DIFFICULTY_KEY, MEMORY_LEVEL_KEY):
            self.store.remove(key)
        return ProgressRecord()
