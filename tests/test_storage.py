"""Tests for the key-value stores and the progress record schema.

Broken or unexpected persisted data must never surface as an error: the
repository logs it and falls back to zeroed defaults.
"""

import importlib
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

storage = importlib.import_module("pitch_trainer.storage")


def test_corrupt_json_falls_back_to_defaults(caplog):
    store = storage.MemoryStore({storage.PROGRESS_KEY: "{not json", storage.MEMORY_LEVEL_KEY: "]"})
    with caplog.at_level(logging.WARNING):
        record = storage.ProgressRepository(store).load()
    assert record == storage.ProgressRecord()
    assert "corrupt" in caplog.text


def test_unexpected_values_are_sanitised():
    store = storage.MemoryStore(
        {
            storage.PROGRESS_KEY: json.dumps({"high_or_low": -4, "match_sounds": "7", "memory_game": 3.9}),
            storage.DIFFICULTY_KEY: json.dumps({"unlocked_patterns": ["wave", 5, "up"]}),
        }
    )
    record = storage.ProgressRepository(store).load()
    assert record.count("high_or_low") == 0
    assert record.count("match_sounds") == 0
    assert record.count("memory_game") == 3
    assert record.unlocked_patterns == ["up", "down", "wave"]


def test_non_object_progress_is_ignored(caplog):
    store = storage.MemoryStore({storage.PROGRESS_KEY: json.dumps([1, 2, 3])})
    with caplog.at_level(logging.WARNING):
        record = storage.ProgressRepository(store).load()
    assert record.counts == {k: 0 for k in storage.ACTIVITY_KEYS}


def test_save_and_reset_round_trip():
    store = storage.MemoryStore()
    repo = storage.ProgressRepository(store)
    record = storage.ProgressRecord()
    record.counts["draw_melody"] = 2
    record.memory_level = 4
    repo.save(record)
    assert repo.load().count("draw_melody") == 2
    assert repo.load().memory_level == 4
    repo.reset()
    assert store.data == {}


def test_json_file_store(tmp_path):
    path = tmp_path / "nested" / "state.json"
    store = storage.JsonFileStore(path)
    assert store.load("missing") is None
    store.save("a", "1")
    store.save("b", "two")
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1", "b": "two"}
    store.remove("a")
    assert store.load("a") is None
    assert store.load("b") == "two"


def test_json_file_store_survives_broken_file(tmp_path, caplog):
    path = tmp_path / "state.json"
    path.write_text("garbage", encoding="utf-8")
    store = storage.JsonFileStore(path)
    with caplog.at_level(logging.ERROR):
        assert store.load("a") is None
    assert "Could not load state file" in caplog.text
    store.save("a", "1")
    assert store.load("a") == "1"


def test_overall_average():
    record = storage.ProgressRecord()
    record.counts["high_or_low"] = 10
    assert record.overall == 2.0
