"""Tests for stage thresholds, pattern unlocks and memory melody length."""

import importlib
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

difficulty = importlib.import_module("pitch_trainer.difficulty")
storage = importlib.import_module("pitch_trainer.storage")
events = importlib.import_module("pitch_trainer.events")
patterns = importlib.import_module("pitch_trainer.patterns")
ActivityMode = events.ActivityMode
PatternKind = patterns.PatternKind
UnlockKind = difficulty.UnlockKind


def _controller(counts=None, **extra):
    data = {}
    if counts is not None:
        data[storage.PROGRESS_KEY] = json.dumps(counts)
    for key, value in extra.items():
        data[key] = json.dumps(value)
    store = storage.MemoryStore(data)
    return difficulty.DifficultyController(storage.ProgressRepository(store)), store


def test_stage_unlocks_at_each_threshold():
    tracker = difficulty.StageTracker(ActivityMode.HIGH_OR_LOW)
    unlocked_at = []
    for _ in range(45):
        for event in tracker.record_correct():
            assert event.kind is UnlockKind.STAGE
            unlocked_at.append((event.progress, event.stage))
    assert unlocked_at == [(10, 2), (20, 3), (30, 4), (40, 5)]


def test_crossing_ten_from_nine():
    tracker = difficulty.StageTracker(ActivityMode.HIGH_OR_LOW, 9)
    assert tracker.stage == 1
    (event,) = tracker.record_correct()
    assert event.stage == 2
    assert event.message == difficulty.STAGE_MESSAGES[2]
    assert tracker.record_correct() == []


def test_wrong_answer_keeps_progress():
    controller, _ = _controller({"high_or_low": 12})
    controller.record_wrong_answer(ActivityMode.HIGH_OR_LOW)
    assert controller.progress(ActivityMode.HIGH_OR_LOW) == 12
    assert controller.high_or_low_stage == 2


def test_jump_unlocks_at_twenty():
    """At 19 correct matches ``jump`` is locked; the 20th unlocks it once."""

    controller, _ = _controller({"match_sounds": 19})
    assert PatternKind.WAVE in controller.unlocked_patterns
    assert PatternKind.JUMP not in controller.unlocked_patterns
    events_ = controller.record_correct_answer(ActivityMode.MATCH_SOUNDS)
    assert len(events_) == 1
    assert events_[0].kind is UnlockKind.PATTERN
    assert events_[0].pattern is PatternKind.JUMP
    assert PatternKind.JUMP in controller.unlocked_patterns
    assert controller.record_correct_answer(ActivityMode.MATCH_SOUNDS) == []


def test_base_patterns_always_unlocked():
    controller, _ = _controller()
    assert controller.unlocked_patterns == [PatternKind.UP, PatternKind.DOWN]


def test_memory_length_grows_on_third_success():
    controller, _ = _controller()
    lengths = []
    unlock_positions = []
    for success in range(1, 7):
        for event in controller.record_correct_answer(ActivityMode.MEMORY_GAME):
            unlock_positions.append((success, event.sequence_length))
        lengths.append(controller.memory_sequence_length)
    assert controller.memory_sequence_length == 4
    assert lengths == [2, 2, 3, 3, 3, 4]
    assert unlock_positions == [(3, 3), (6, 4)]


def test_memory_length_tiers():
    tracker = difficulty.SequenceLengthTracker(ActivityMode.MEMORY_GAME)
    for count, length in [(0, 2), (2, 2), (3, 3), (6, 4), (11, 5), (16, 6), (40, 6)]:
        tracker.progress_count = count
        assert tracker.sequence_length == length


def test_tone_pools():
    low, high = difficulty.tone_pools(1)
    assert "C5" in [t.name for t in high]
    assert all(t.midi < difficulty.REFERENCE_TONE.midi for t in low)
    for stage in (3, 4, 5):
        low, high = difficulty.tone_pools(stage)
        assert difficulty.REFERENCE_TONE not in low + high


def test_progress_is_persisted():
    controller, store = _controller()
    controller.record_correct_answer(ActivityMode.SOUND_JUDGMENT)
    controller.record_correct_answer(ActivityMode.MEMORY_GAME)
    restored = difficulty.DifficultyController(storage.ProgressRepository(store))
    assert restored.progress(ActivityMode.SOUND_JUDGMENT) == 1
    assert restored.progress(ActivityMode.MEMORY_GAME) == 1
    assert json.loads(store.data[storage.MEMORY_LEVEL_KEY]) == 1


def test_memory_level_restores_length():
    controller, _ = _controller(**{storage.MEMORY_LEVEL_KEY: 6})
    assert controller.memory_sequence_length == 4


def test_reset_clears_everything():
    controller, store = _controller({"match_sounds": 25, "high_or_low": 33})
    controller.reset()
    assert controller.progress(ActivityMode.MATCH_SOUNDS) == 0
    assert controller.high_or_low_stage == 1
    assert controller.unlocked_patterns == [PatternKind.UP, PatternKind.DOWN]
    assert store.data == {}


def test_summary_reports_overall_average():
    controller, _ = _controller({"high_or_low": 5, "match_sounds": 5})
    summary = controller.summary()
    assert summary["overall"] == 2.0
    assert summary["high_or_low_stage"] == 1
    assert summary["memory_sequence_length"] == 2


def test_idle_has_no_tracker():
    controller, _ = _controller()
    with pytest.raises(ValueError):
        controller.progress(ActivityMode.IDLE)
