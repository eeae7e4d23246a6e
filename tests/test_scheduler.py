"""Timing and cancellation tests for ``SequenceScheduler``.

All tests run on a :class:`ManualClock` so time only moves when a test calls
``advance``; no real sleeping is involved.
"""

import importlib
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

scheduler_mod = importlib.import_module("pitch_trainer.scheduler")
events = importlib.import_module("pitch_trainer.events")
ManualClock = scheduler_mod.ManualClock
SequenceScheduler = scheduler_mod.SequenceScheduler


class RecordingAudio:
    """Audio engine double that remembers when each note started."""

    def __init__(self, clock, fail_on=()):
        self.clock = clock
        self.fail_on = set(fail_on)
        self.calls = []
        self.stops = 0

    def play_note(self, note, duration, velocity=0.75):
        self.calls.append((self.clock.now(), note, duration))
        if note in self.fail_on:
            raise RuntimeError(f"cannot play {note}")

    def stop_all(self):
        self.stops += 1


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def audio(clock):
    return RecordingAudio(clock)


def test_pattern_plays_at_fixed_spacing(clock, audio):
    finished = []
    sched = SequenceScheduler(audio, clock)
    handle = sched.play_pattern(["C4", "D4", "E4", "F4", "G4"], on_complete=lambda: finished.append(clock.now()))
    clock.advance(5.0)
    assert [(t, n) for t, n, _ in audio.calls] == [
        (0.0, "C4"),
        (0.75, "D4"),
        (1.5, "E4"),
        (2.25, "F4"),
        (3.0, "G4"),
    ]
    assert all(d == pytest.approx(0.75) for _, _, d in audio.calls)
    assert finished == [3.75]
    assert handle.completed and handle.done
    assert not sched.active


def test_completion_waits_for_last_note(clock, audio):
    finished = []
    SequenceScheduler(audio, clock).play_pattern(["C4", "D4"], on_complete=lambda: finished.append(True))
    clock.advance(1.4)
    assert finished == []
    clock.advance(0.1)
    assert finished == [True]


def test_cancel_stops_further_notes(clock, audio):
    finished = []
    sched = SequenceScheduler(audio, clock)
    handle = sched.play_pattern(["C4", "D4", "E4", "F4", "G4"], on_complete=lambda: finished.append(True))
    clock.advance(0.75)
    handle.cancel()
    handle.cancel()
    clock.advance(10)
    assert [n for _, n, _ in audio.calls] == ["C4", "D4"]
    assert finished == []
    assert audio.stops == 1
    assert handle.cancelled and handle.done and not handle.completed
    assert clock.pending == 0


def test_new_play_cancels_previous(clock, audio):
    first_done = []
    sched = SequenceScheduler(audio, clock)
    first = sched.play_pattern(["C4", "D4", "E4"], on_complete=lambda: first_done.append(True))
    clock.advance(0.75)
    second = sched.play_pattern(["A4", "B4"])
    clock.advance(5)
    assert [n for _, n, _ in audio.calls] == ["C4", "D4", "A4", "B4"]
    assert first.cancelled
    assert first_done == []
    assert second.completed
    assert audio.stops == 1


def test_empty_sequence_is_ignored(clock, audio, caplog):
    sched = SequenceScheduler(audio, clock)
    running = sched.play_pattern(["C4", "D4"])
    with caplog.at_level(logging.WARNING):
        handle = sched.play([])
    assert handle.done
    assert "empty sequence" in caplog.text
    assert sched.current is running.session
    clock.advance(2)
    assert running.completed


def test_invalid_token_plays_nothing(clock, audio, caplog):
    sched = SequenceScheduler(audio, clock)
    with caplog.at_level(logging.ERROR):
        handle = sched.play_pattern(["C4", "X9", "E4"])
    assert audio.calls == []
    assert handle.done and not handle.completed
    assert "invalid note" in caplog.text


def test_failing_note_does_not_end_melody(clock, caplog):
    audio = RecordingAudio(clock, fail_on={"D4"})
    finished = []
    sched = SequenceScheduler(audio, clock)
    with caplog.at_level(logging.ERROR):
        sched.play_pattern(["C4", "D4", "E4"], on_complete=lambda: finished.append(True))
        clock.advance(3)
    assert [(t, n) for t, n, _ in audio.calls] == [(0.0, "C4"), (0.75, "D4"), (1.5, "E4")]
    assert finished == [True]
    assert "Failed to play note D4 at position 2" in caplog.text


def test_melody_honours_durations(clock, audio):
    SequenceScheduler(audio, clock).play_melody(["C4:h", "D4:e", "E4"], 500)
    clock.advance(3)
    assert audio.calls == [(0.0, "C4", 1.0), (1.0, "D4", 0.25), (1.25, "E4", 0.5)]


def test_try_play_rejects_while_active(clock, audio):
    sched = SequenceScheduler(audio, clock)
    sched.play_pattern(["C4", "D4"])
    assert sched.try_play([("E4", 100)]) is None
    clock.advance(2)
    assert sched.try_play([("E4", 100)]) is not None
    assert audio.calls[-1][1] == "E4"


def test_scheduler_publishes_events(clock, audio):
    bus = events.EventBus()
    seen = []
    bus.subscribe(None, seen.append)
    sched = SequenceScheduler(audio, clock, events=bus)
    sched.play_pattern(["C4", "G4"])
    clock.advance(2)
    started = [e for e in seen if isinstance(e, events.NoteStarted)]
    assert [e.index for e in started] == [0, 1]
    assert started[1].note.name == "G4"
    assert isinstance(seen[-1], events.SequenceCompleted)
    assert seen[-1].length == 2


def test_manual_clock_orders_callbacks():
    clock = ManualClock()
    fired = []
    clock.call_later(2, lambda: fired.append(("b", clock.now())))
    clock.call_later(1, lambda: fired.append(("a", clock.now())))
    cancelled = clock.call_later(1.5, lambda: fired.append(("x", clock.now())))
    cancelled.cancel()
    clock.advance(3)
    assert fired == [("a", 1), ("b", 2)]
    assert clock.now() == 3
    with pytest.raises(ValueError):
        clock.advance(-1)
