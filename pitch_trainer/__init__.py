#!/usr/bin/env python3
"""Pitch Trainer library.

This package implements small ear training games.  A learner hears notes
or short melodies and answers questions about them: is a tone high or
low, which contour does a melody follow, does a known tune sound right,
can a melody be repeated from memory, does a drawn line follow a melody.

Building blocks
---------------
* :mod:`~pitch_trainer.note_utils` parses the compact note notation
  (``C``, ``F#5``, ``G4:h``) used for every melody.
* :mod:`~pitch_trainer.patterns` generates contours (up, down, wave,
  jump), reference melodies and corrupted copies of them.
* :mod:`~pitch_trainer.difficulty` counts correct answers per activity and
  unlocks stages, contours and longer melodies at fixed thresholds.
* :mod:`~pitch_trainer.scheduler` plays ``(note, duration)`` sequences on
  an audio engine with cancellable, clock driven continuations.
* :mod:`~pitch_trainer.activities` is the state machine tying these
  together for the five activities.

A typical session::

    machine = ActivityStateMachine(create_audio_engine("fluidsynth"))
    machine.switch_mode("high_or_low")
    machine.play()
    machine.answer("high")

Both a terminal interface (``pitch-trainer --game memory_game``) and a
Flask JSON API (:func:`pitch_trainer.web_gui.create_app`) wrap the state
machine.
"""

__version__ = "0.1.0"

from .note_utils import (  # noqa: F401
    DurationClass,
    NoteToken,
    ParseError,
    ParseErrorKind,
    PitchClass,
    compare_pitch,
    duration_ms,
    midi_to_note,
    note_to_midi,
    parse_melody,
    parse_note,
    render_note,
)
from .patterns import (  # noqa: F401
    DEFAULT_PALETTE,
    MEMORY_NOTES,
    REFERENCE_PALETTE,
    Pattern,
    PatternGenerator,
    PatternKind,
)
from .events import ActivityMode, EventBus  # noqa: F401
from .difficulty import DifficultyController, UnlockEvent  # noqa: F401
from .storage import JsonFileStore, MemoryStore, ProgressRepository  # noqa: F401
from .scheduler import ManualClock, SequenceScheduler, ThreadingClock  # noqa: F401
from .playback import AudioEngineError, create_audio_engine  # noqa: F401
from .activities import ActivityStateMachine, Judgment  # noqa: F401
from .midi_io import create_midi_file  # noqa: F401


def run_cli():
    from .cli import run_cli as _run_cli
    _run_cli()


def main():
    from .cli import main as _main
    _main()


if __name__ == "__main__":
    main()
