"""Parsing and rendering of the compact note notation.

Melodies throughout the trainer are written as short text tokens such as
``C``, ``F#5`` or ``G4:h``.  The grammar is::

    Token := Letter [ "#" ] [ Digit ] [ ":" DurSuffix ]

where ``Letter`` is ``A``-``G`` (case-insensitive) and ``DurSuffix`` one of
``w``, ``h``, ``q``, ``e`` or ``s``.  A missing octave means octave ``4`` and
a missing suffix means a quarter note.  The same notation is used for the
persisted melody catalogue so it has to parse and render identically
everywhere.

Example
-------
>>> from pitch_trainer.note_utils import parse_note, duration_ms
>>> token = parse_note("G4:h")
>>> token.pitch_class, token.octave, token.duration
(<PitchClass.G: 'G'>, 4, <DurationClass.HALF: 'h'>)
>>> duration_ms(token, 500)
1000.0
"""

# Modification Summary
# ---------------------
# * ``parse_note`` raises ``ParseError`` tagged with a ``ParseErrorKind`` so
#   callers can distinguish a bad pitch letter from a bad duration suffix.
# * Octaves outside ``MIN_OCTAVE``-``MAX_OCTAVE`` are rejected instead of
#   being passed on to the audio engine.
# * ``note_to_midi`` accepts the short forms (``"A"``, ``"C:e"``) so tone pools
#   and melody definitions can be compared directly.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterable, List, Union

__all__ = [
    "PitchClass",
    "DurationClass",
    "NoteToken",
    "ParseErrorKind",
    "ParseError",
    "parse_note",
    "render_note",
    "parse_melody",
    "duration_ms",
    "note_to_midi",
    "midi_to_note",
    "compare_pitch",
]

logger = logging.getLogger(__name__)

DEFAULT_OCTAVE = 4
MIN_OCTAVE = 3
MAX_OCTAVE = 7

# Diatonic letters in ascending order inside one octave. The pattern
# generator uses this order when it needs a "nearby" wrong letter.
LETTERS = ("C", "D", "E", "F", "G", "A", "B")

_TOKEN_RE = re.compile(r"^([A-Za-z])(#?)(\d?)(?::(.*))?$")


class PitchClass(Enum):
    """The twelve pitch classes, spelled with sharps."""

    C = "C"
    C_SHARP = "C#"
    D = "D"
    D_SHARP = "D#"
    E = "E"
    F = "F"
    F_SHARP = "F#"
    G = "G"
    G_SHARP = "G#"
    A = "A"
    A_SHARP = "A#"
    B = "B"

    @property
    def semitone(self) -> int:
        return _SEMITONES[self]

    @property
    def letter(self) -> str:
        return self.value[0]

    @property
    def sharp(self) -> bool:
        return self.value.endswith("#")


_SEMITONES = {pc: idx for idx, pc in enumerate(PitchClass)}
_BY_NAME = {pc.value: pc for pc in PitchClass}


class DurationClass(Enum):
    """Note lengths expressed by their notation suffix."""

    WHOLE = "w"
    HALF = "h"
    QUARTER = "q"
    EIGHTH = "e"
    SIXTEENTH = "s"

    @property
    def multiplier(self) -> float:
        """Length relative to a quarter note."""
        return _MULTIPLIERS[self]


_MULTIPLIERS = {
    DurationClass.WHOLE: 4.0,
    DurationClass.HALF: 2.0,
    DurationClass.QUARTER: 1.0,
    DurationClass.EIGHTH: 0.5,
    DurationClass.SIXTEENTH: 0.25,
}


class ParseErrorKind(Enum):
    INVALID_PITCH = "invalid_pitch"
    INVALID_DURATION = "invalid_duration"
    INVALID_OCTAVE = "invalid_octave"
    MALFORMED = "malformed"


class ParseError(ValueError):
    """Raised when a note token does not follow the notation."""

    def __init__(self, kind: ParseErrorKind, text: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.text = text


@dataclass(frozen=True)
class NoteToken:
    """Immutable parsed note.

    ``octave`` defaults to 4 and ``duration`` to a quarter note, mirroring
    the defaults of the text notation.
    """

    pitch_class: PitchClass
    octave: int = DEFAULT_OCTAVE
    duration: DurationClass = DurationClass.QUARTER

    @property
    def name(self) -> str:
        """Pitch and octave without duration, e.g. ``"F#5"``."""
        return f"{self.pitch_class.value}{self.octave}"

    @property
    def midi(self) -> int:
        return (self.octave + 1) * 12 + self.pitch_class.semitone

    def __str__(self) -> str:
        return render_note(self)


def parse_note(text: str) -> NoteToken:
    """Parse ``text`` into a :class:`NoteToken`.

    Parameters
    ----------
    text:
        Token in the compact notation (``X``, ``X#``, ``XN``, ``X#N``,
        ``X:d`` or ``X#N:d``). Surrounding whitespace is ignored.

    Raises
    ------
    ParseError
        ``INVALID_PITCH`` when the letter is not ``A``-``G``,
        ``INVALID_DURATION`` when the suffix is not one of ``w,h,q,e,s``,
        ``INVALID_OCTAVE`` for octaves outside ``3``-``7`` and ``MALFORMED``
        for anything else the grammar does not allow.
    """

    if not isinstance(text, str):
        raise ParseError(ParseErrorKind.MALFORMED, repr(text), f"Note token must be a string: {text!r}")
    return _parse_token(text)


@lru_cache(maxsize=512)
def _parse_token(text: str) -> NoteToken:
    stripped = text.strip()
    match = _TOKEN_RE.match(stripped)
    if not match:
        kind = ParseErrorKind.MALFORMED
        if stripped and stripped[0].upper() not in "ABCDEFG":
            kind = ParseErrorKind.INVALID_PITCH
        raise ParseError(kind, text, f"Invalid note token: {text!r}")

    letter, sharp, digit, suffix = match.groups()
    letter = letter.upper()
    if letter not in LETTERS:
        raise ParseError(ParseErrorKind.INVALID_PITCH, text, f"Invalid pitch letter {letter!r} in {text!r}")

    pitch = _BY_NAME.get(letter + sharp)
    if pitch is None:
        # ``E#`` and ``B#`` are not part of the sharp spelling table.
        raise ParseError(ParseErrorKind.INVALID_PITCH, text, f"Invalid pitch {letter + sharp!r} in {text!r}")

    octave = int(digit) if digit else DEFAULT_OCTAVE
    if not MIN_OCTAVE <= octave <= MAX_OCTAVE:
        raise ParseError(
            ParseErrorKind.INVALID_OCTAVE,
            text,
            f"Octave {octave} out of range {MIN_OCTAVE}-{MAX_OCTAVE} in {text!r}",
        )

    if suffix is None:
        duration = DurationClass.QUARTER
    else:
        try:
            duration = DurationClass(suffix.lower())
        except ValueError:
            raise ParseError(
                ParseErrorKind.INVALID_DURATION,
                text,
                f"Invalid duration suffix {suffix!r} in {text!r}",
            ) from None

    return NoteToken(pitch, octave, duration)


def render_note(token: NoteToken) -> str:
    """Return the canonical text form of ``token``.

    Quarter notes omit the ``:q`` suffix; everything else is written as
    ``<pitch><octave>:<suffix>`` so ``parse_note(render_note(t)) == t``.
    """

    text = token.name
    if token.duration is not DurationClass.QUARTER:
        text += f":{token.duration.value}"
    return text


def parse_melody(notes: Union[str, Iterable[str]]) -> List[NoteToken]:
    """Parse a whitespace separated string or an iterable of tokens.

    The first invalid token aborts parsing by re-raising its
    :class:`ParseError`; the failing position is logged.
    """

    if isinstance(notes, str):
        items = notes.split()
    else:
        try:
            items = list(notes)
        except TypeError:
            raise ParseError(
                ParseErrorKind.MALFORMED, repr(notes), f"Notes must be text or a list of tokens: {notes!r}"
            ) from None
    tokens: List[NoteToken] = []
    for position, item in enumerate(items):
        try:
            tokens.append(parse_note(item))
        except ParseError:
            logger.error("Invalid note %r at position %d", item, position + 1)
            raise
    return tokens


def duration_ms(note: Union[NoteToken, DurationClass], base_quarter_ms: float) -> float:
    """Convert a note length into milliseconds.

    ``base_quarter_ms`` is the caller supplied length of one quarter note;
    whole, half, eighth and sixteenth notes scale it by 4, 2, 0.5 and 0.25.
    """

    if base_quarter_ms <= 0:
        raise ValueError("base_quarter_ms must be positive")
    duration = note.duration if isinstance(note, NoteToken) else note
    return base_quarter_ms * duration.multiplier


def note_to_midi(note: Union[str, NoteToken]) -> int:
    """Convert a note token into a MIDI number (``C4`` == 60)."""

    token = note if isinstance(note, NoteToken) else parse_note(note)
    return token.midi


def midi_to_note(midi_note: int) -> str:
    """Convert a MIDI number into a note name using sharps.

    Raises
    ------
    ValueError
        If the resulting octave lies outside the supported ``3``-``7`` range.
    """

    octave = midi_note // 12 - 1
    if not MIN_OCTAVE <= octave <= MAX_OCTAVE:
        raise ValueError(f"MIDI note {midi_note} outside supported octaves {MIN_OCTAVE}-{MAX_OCTAVE}")
    return f"{list(PitchClass)[midi_note % 12].value}{octave}"


def compare_pitch(first: Union[str, NoteToken], second: Union[str, NoteToken]) -> int:
    """Return ``1`` if ``second`` sounds higher than ``first``, ``-1`` if lower, else ``0``."""

    a, b = note_to_midi(first), note_to_midi(second)
    return (b > a) - (b < a)
