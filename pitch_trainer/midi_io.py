"""Export patterns and melodies as Standard MIDI Files.

Modification summary
--------------------
* ``create_midi_file`` takes note tokens in the trainer notation and derives
  every note length from its duration suffix.
* The tempo is given as the length of one quarter note in milliseconds, the
  same unit the playback code uses, and written as a ``set_tempo`` event.
* The destination directory is created automatically.
* Imports from ``mido`` are deferred inside ``create_midi_file`` so the module
  can load even when the dependency is missing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Sequence, Union

if TYPE_CHECKING:
    from mido import MidiFile

from .note_utils import NoteToken, parse_note

__all__ = ["create_midi_file", "TICKS_PER_BEAT"]

logger = logging.getLogger(__name__)

TICKS_PER_BEAT = 480


def create_midi_file(
    notes: Sequence[Union[str, NoteToken]],
    output_file: Union[str, Path],
    quarter_ms: float = 700,
    program: int = 0,
    velocity: int = 64,
) -> "MidiFile":
    """Write ``notes`` to ``output_file`` as a single track MIDI file.

    Parameters
    ----------
    notes:
        Note tokens or notation strings, played one after another.
    output_file:
        Destination path. Missing parent folders are created.
    quarter_ms:
        Length of a quarter note in milliseconds.
    program:
        General MIDI instrument number.
    velocity:
        Base velocity; the first note is accented slightly.

    Returns
    -------
    MidiFile
        In-memory representation of the written file.

    Raises
    ------
    ValueError
        If ``notes`` is empty or ``quarter_ms`` is not positive.
    ParseError
        If a note string is not valid notation.
    """

    try:
        import mido
        from mido import Message, MidiFile, MidiTrack
    except ModuleNotFoundError as exc:
        raise ImportError(
            "mido is required to create MIDI files; install it with 'pip install mido'"
        ) from exc

    if quarter_ms <= 0:
        raise ValueError("quarter_ms must be positive")
    tokens = [n if isinstance(n, NoteToken) else parse_note(n) for n in notes]
    if not tokens:
        raise ValueError("cannot export an empty melody")

    mid = MidiFile(ticks_per_beat=TICKS_PER_BEAT)
    track = MidiTrack()
    mid.tracks.append(track)
    track.append(mido.MetaMessage("set_tempo", tempo=int(round(quarter_ms * 1000))))
    track.append(Message("program_change", program=program, time=0))

    for index, token in enumerate(tokens):
        ticks = int(TICKS_PER_BEAT * token.duration.multiplier)
        note_velocity = min(velocity + 10, 127) if index == 0 else velocity
        track.append(Message("note_on", note=token.midi, velocity=note_velocity, time=0))
        track.append(Message("note_off", note=token.midi, velocity=note_velocity, time=ticks))

    path = Path(output_file)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    mid.save(str(path))
    logger.info("Wrote %d notes to %s", len(tokens), path)
    return mid
