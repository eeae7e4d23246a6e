"""Procedural melodic pattern generation.

Every generator works over an ordered *palette* of :class:`NoteToken`
values (ascending pitch) and draws its randomness from an injectable
``random.Random`` instance so results are reproducible in tests.

The contours mirror the pictures shown to the learner:

* ``up``  : five consecutive palette notes going upwards (a rocket).
* ``down``: five consecutive palette notes going downwards (a slide).
* ``wave``: two neighbouring notes alternating ``a b a b a``.
* ``jump``: five notes each at least three palette steps apart.

``generate_reference`` builds a short random-walk melody and
``corrupt`` swaps one inner note of a pattern for a nearby wrong letter so
the learner can practise spotting mistakes.

Known deviation
---------------
``generate_down`` clamps indices at the bottom of the palette instead of
resampling, so on very small palettes the tail of a ``down`` pattern may
repeat the lowest note.  ``generate_jump`` falls back to the farthest
reachable note once ``MAX_JUMP_ATTEMPTS`` random draws have failed, which
can produce a smaller jump near the palette edges of tiny palettes.  Both
behaviours are kept deliberately; with the default palettes neither occurs.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .note_utils import LETTERS, NoteToken, PitchClass, parse_melody, render_note

__all__ = [
    "PatternKind",
    "Pattern",
    "PatternGenerator",
    "DEFAULT_PALETTE",
    "REFERENCE_PALETTE",
    "MEMORY_NOTES",
    "PATTERN_LENGTH",
    "CONTOUR_KINDS",
]

logger = logging.getLogger(__name__)

PATTERN_LENGTH = 5
MIN_JUMP = 3
MAX_JUMP_ATTEMPTS = 100

# C3 - C6 without accidentals. Used by the matching activity.
DEFAULT_PALETTE: Tuple[NoteToken, ...] = tuple(
    parse_melody(
        "C3 D3 E3 F3 G3 A3 B3 "
        "C4 D4 E4 F4 G4 A4 B4 "
        "C5 D5 E5 F5 G5 A5 B5 C6"
    )
)

# Narrower range used for draw-melody references and drawn melodies.
REFERENCE_PALETTE: Tuple[NoteToken, ...] = tuple(
    parse_melody("C3 D3 E3 F3 G3 A3 B3 C4 D4 E4 F4 G4")
)

# Pentatonic subset used by the memory game (no F and no B).
MEMORY_NOTES: Tuple[NoteToken, ...] = tuple(parse_melody("C4 D4 E4 G4 A4"))


class PatternKind(Enum):
    UP = "up"
    DOWN = "down"
    WAVE = "wave"
    JUMP = "jump"
    REFERENCE = "reference"
    CORRUPTED_REFERENCE = "corruptedReference"


CONTOUR_KINDS = (PatternKind.UP, PatternKind.DOWN, PatternKind.WAVE, PatternKind.JUMP)


@dataclass(frozen=True)
class Pattern:
    """An ordered note sequence tagged with the contour it represents."""

    kind: PatternKind
    notes: Tuple[NoteToken, ...]

    def __len__(self) -> int:
        return len(self.notes)

    def __iter__(self):
        return iter(self.notes)

    def as_text(self) -> List[str]:
        return [render_note(note) for note in self.notes]


class PatternGenerator:
    """Generate contour patterns from an ascending note palette."""

    def __init__(
        self,
        palette: Sequence[NoteToken] = DEFAULT_PALETTE,
        rng: Optional[random.Random] = None,
    ) -> None:
        if len(palette) < 2:
            raise ValueError("palette must contain at least two notes")
        self.palette: Tuple[NoteToken, ...] = tuple(palette)
        self.rng = rng or random.Random()

    def _pattern(self, kind: PatternKind, indices: Sequence[int]) -> Pattern:
        return Pattern(kind, tuple(self.palette[i] for i in indices))

    def generate(self, kind: PatternKind) -> Pattern:
        """Dispatch to the generator matching ``kind``."""

        if kind is PatternKind.UP:
            return self.generate_up()
        if kind is PatternKind.DOWN:
            return self.generate_down()
        if kind is PatternKind.WAVE:
            return self.generate_wave()
        if kind is PatternKind.JUMP:
            return self.generate_jump()
        if kind is PatternKind.REFERENCE:
            return self.generate_reference()
        raise ValueError(f"{kind.value} patterns are derived with corrupt(), not generated")

    def generate_up(self) -> Pattern:
        """Return five consecutive ascending notes.

        The start index is drawn from the lower two thirds of the palette
        and capped so the last note never runs past the top.
        """

        size = len(self.palette)
        if size < PATTERN_LENGTH:
            raise ValueError(f"up patterns need at least {PATTERN_LENGTH} palette notes")
        highest_start = min(size - PATTERN_LENGTH, (2 * size) // 3)
        start = self.rng.randint(0, highest_start)
        return self._pattern(PatternKind.UP, range(start, start + PATTERN_LENGTH))

    def generate_down(self) -> Pattern:
        """Return five descending notes starting in the upper half."""

        size = len(self.palette)
        highest_start = size - 2 if size > 2 else size - 1
        lowest_start = min(size // 2, highest_start)
        start = self.rng.randint(lowest_start, highest_start)
        indices = [max(0, start - step) for step in range(PATTERN_LENGTH)]
        return self._pattern(PatternKind.DOWN, indices)

    def generate_wave(self) -> Pattern:
        """Return ``[a, b, a, b, a]`` with ``b`` one to three steps from ``a``."""

        size = len(self.palette)
        first = self.rng.randrange(max(1, size - PATTERN_LENGTH))
        interval = self.rng.randint(1, 3)
        if self.rng.random() < 0.5:
            interval = -interval
        second = first + interval
        if not 0 <= second < size:
            # Mirror back into the palette.
            second = first - interval
        second = max(0, min(size - 1, second))
        if second == first:
            second = first + 1 if first + 1 < size else first - 1
        return self._pattern(PatternKind.WAVE, [first, second, first, second, first])

    def generate_jump(self) -> Pattern:
        """Return five notes where consecutive notes are >= 3 steps apart."""

        size = len(self.palette)
        indices = [self.rng.randrange(size)]
        while len(indices) < PATTERN_LENGTH:
            previous = indices[-1]
            for _ in range(MAX_JUMP_ATTEMPTS):
                candidate = self.rng.randrange(size)
                if abs(candidate - previous) >= MIN_JUMP:
                    break
            else:
                candidate = 0 if previous >= size - 1 - previous else size - 1
                logger.debug(
                    "No jump of %d steps found from index %d; using %d", MIN_JUMP, previous, candidate
                )
            indices.append(candidate)
        return self._pattern(PatternKind.JUMP, indices)

    def generate_reference(self, length: int = 6) -> Pattern:
        """Return a random-walk melody of ``length`` notes.

        The walk starts in the middle of the palette and moves by a random
        step between -2 and +2, clamped to the palette bounds.
        """

        if length <= 0:
            raise ValueError("length must be positive")
        size = len(self.palette)
        if size > 4:
            index = self.rng.randint(2, size - 3)
        else:
            index = size // 2
        indices = [index]
        for _ in range(length - 1):
            index = max(0, min(size - 1, index + self.rng.randint(-2, 2)))
            indices.append(index)
        return self._pattern(PatternKind.REFERENCE, indices)

    def corrupt(self, pattern: Pattern) -> Tuple[Pattern, bool]:
        """Return a copy of ``pattern`` with one inner note replaced.

        A position other than the first or last is chosen and its letter
        moved one or two diatonic steps up or down (never onto itself).
        Octave and duration are preserved; a sharp is dropped because the
        replacement is always a natural note.
        """

        notes = list(pattern.notes)
        if len(notes) < 3:
            raise ValueError("corrupt() needs at least three notes")
        position = self.rng.randint(1, len(notes) - 2)
        original = notes[position]
        letter_index = LETTERS.index(original.pitch_class.letter)
        shifts = [
            shift
            for shift in (-2, -1, 1, 2)
            if 0 <= letter_index + shift < len(LETTERS)
        ]
        new_letter = LETTERS[letter_index + self.rng.choice(shifts)]
        notes[position] = NoteToken(PitchClass(new_letter), original.octave, original.duration)
        logger.debug(
            "Corrupted position %d: %s -> %s", position, render_note(original), render_note(notes[position])
        )
        return Pattern(PatternKind.CORRUPTED_REFERENCE, tuple(notes)), True

    def random_walk(self, notes: Sequence[NoteToken], length: int) -> List[NoteToken]:
        """Pick ``length`` notes from ``notes`` without immediate repeats."""

        if length <= 0:
            raise ValueError("length must be positive")
        if len(notes) < 2:
            raise ValueError("need at least two notes to avoid repeats")
        sequence = [self.rng.choice(notes)]
        while len(sequence) < length:
            sequence.append(self.rng.choice([n for n in notes if n != sequence[-1]]))
        return sequence
