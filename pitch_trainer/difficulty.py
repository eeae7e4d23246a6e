"""Progressive difficulty tracking.

Each activity keeps an independent, never decreasing count of correct
answers.  Fixed thresholds turn that count into what the learner is
offered next:

* High or low: five stages at 10/20/30/40 correct answers.  Stages one and
  two play a single tone from a low or high pool; from stage three on the
  learner compares two tones, and the pools move closer together.
* Match sounds: ``up`` and ``down`` contours are always available, ``wave``
  unlocks at 10 and ``jump`` at 20 correct answers.
* Memory game: the melody grows from 2 to 6 notes at 3/6/11/16 successes.

Every threshold compares with ``>=`` *after* the increment, so the answer
that reaches a boundary value is the one that unlocks it.  Wrong answers
never lower a count.  The controller only reports :class:`UnlockEvent`
objects; showing a message is up to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .events import ActivityMode
from .note_utils import NoteToken, parse_melody, parse_note
from .patterns import PatternKind
from .storage import ProgressRecord, ProgressRepository

__all__ = [
    "UnlockKind",
    "UnlockEvent",
    "ProgressTracker",
    "StageTracker",
    "PatternUnlockTracker",
    "SequenceLengthTracker",
    "DifficultyController",
    "STAGE_THRESHOLDS",
    "PATTERN_UNLOCKS",
    "MEMORY_LENGTH_STEPS",
    "MEMORY_LENGTHS",
    "TWO_TONE_STAGE",
    "REFERENCE_TONE",
    "tone_pools",
]

logger = logging.getLogger(__name__)

STAGE_THRESHOLDS = (10, 20, 30, 40)
PATTERN_UNLOCKS: Dict[PatternKind, int] = {PatternKind.WAVE: 10, PatternKind.JUMP: 20}
MEMORY_LENGTH_STEPS = (3, 6, 11, 16)
MEMORY_LENGTHS = (2, 3, 4, 5, 6)

# From this stage on a reference tone is played before the tone to judge.
TWO_TONE_STAGE = 3
REFERENCE_TONE: NoteToken = parse_note("C5")

_LOW_TONES = {
    1: "C3 C#3 D3 D#3 E3 F3",
    2: "C3 C#3 D3 D#3 E3 F3 F#3 G3",
    3: "C3 C#3 D3 D#3 E3 F3 F#3 G3",
    4: "D3 D#3 E3 F3 F#3 G3 G#3 A3",
    5: "E3 F3 F#3 G3 G#3 A3 A#3 B3",
}
_HIGH_TONES = {
    1: "C5 C#5 D5 D#5 E5 F5 F#5 G5 G#5 A5 A#5 B5 C6",
    2: "C5 C#5 D5 D#5 E5 F5 F#5 G5 G#5 A5 A#5 B5 C6",
    3: "C5 C#5 D5 D#5 E5 F5 F#5 G5 G#5 A5 A#5 B5 C6",
    4: "B4 C5 C#5 D5 D#5 E5 F5 F#5",
    5: "A4 A#4 B4 C5 C#5 D5 D#5 E5",
}

STAGE_MESSAGES = {
    2: "🎉 Stage 2 reached! The tones are now closer together!",
    3: "🎵 Stage 3 reached! You now hear two tones in sequence!",
    4: "🚀 Stage 4 reached! The tones are even closer together!",
    5: "🏆 Master level reached! Ultimate challenge unlocked!",
}
PATTERN_MESSAGES = {
    PatternKind.WAVE: "Great! You unlocked wavy melodies! 🌊",
    PatternKind.JUMP: "Amazing! You unlocked random jump melodies! 🐸",
}


def tone_pools(stage: int) -> Tuple[Tuple[NoteToken, ...], Tuple[NoteToken, ...]]:
    """Return ``(low_pool, high_pool)`` for a high-or-low ``stage``.

    Two-tone stages drop any tone equal to :data:`REFERENCE_TONE` so the
    comparison always has a definite answer.
    """

    stage = stage if stage in _LOW_TONES else 1
    low = tuple(parse_melody(_LOW_TONES[stage]))
    high = tuple(parse_melody(_HIGH_TONES[stage]))
    if stage >= TWO_TONE_STAGE:
        low = tuple(t for t in low if t.midi != REFERENCE_TONE.midi)
        high = tuple(t for t in high if t.midi != REFERENCE_TONE.midi)
    return low, high


class UnlockKind(Enum):
    STAGE = "stage"
    PATTERN = "pattern"
    SEQUENCE_LENGTH = "sequence_length"


@dataclass(frozen=True)
class UnlockEvent:
    """Something new became available after a correct answer."""

    mode: ActivityMode
    kind: UnlockKind
    progress: int
    message: str
    stage: Optional[int] = None
    pattern: Optional[PatternKind] = None
    sequence_length: Optional[int] = None


def _tier(progress: int, thresholds: Sequence[int]) -> int:
    return sum(1 for threshold in thresholds if progress >= threshold)


class ProgressTracker:
    """A plain correct-answer counter without thresholds."""

    def __init__(self, mode: ActivityMode, progress: int = 0) -> None:
        if progress < 0:
            raise ValueError("progress must not be negative")
        self.mode = mode
        self.progress_count = progress

    def record_correct(self) -> List[UnlockEvent]:
        before = self.progress_count
        self.progress_count += 1
        return self._unlocks(before)

    def record_wrong(self) -> None:
        """Wrong answers never reduce progress."""

    def _unlocks(self, before: int) -> List[UnlockEvent]:
        return []


class StageTracker(ProgressTracker):
    """Five-stage progression of the high-or-low activity."""

    thresholds = STAGE_THRESHOLDS

    @property
    def stage(self) -> int:
        return 1 + _tier(self.progress_count, self.thresholds)

    @property
    def two_tone(self) -> bool:
        return self.stage >= TWO_TONE_STAGE

    def tone_pools(self):
        return tone_pools(self.stage)

    def _unlocks(self, before: int) -> List[UnlockEvent]:
        old_stage = 1 + _tier(before, self.thresholds)
        if self.stage <= old_stage:
            return []
        return [
            UnlockEvent(
                self.mode,
                UnlockKind.STAGE,
                self.progress_count,
                STAGE_MESSAGES.get(self.stage, f"Stage {self.stage} reached!"),
                stage=self.stage,
            )
        ]


class PatternUnlockTracker(ProgressTracker):
    """Pattern availability for the match-sounds activity."""

    base_patterns = (PatternKind.UP, PatternKind.DOWN)

    def __init__(
        self,
        mode: ActivityMode,
        progress: int = 0,
        unlocked: Sequence[PatternKind] = (),
    ) -> None:
        super().__init__(mode, progress)
        self.unlocked: List[PatternKind] = list(self.base_patterns)
        for kind in unlocked:
            if kind not in self.unlocked:
                self.unlocked.append(kind)
        # Counts restored from storage imply their unlocks even if the
        # difficulty record was lost.
        for kind, threshold in PATTERN_UNLOCKS.items():
            if self.progress_count >= threshold and kind not in self.unlocked:
                self.unlocked.append(kind)

    def is_unlocked(self, kind: PatternKind) -> bool:
        return kind in self.unlocked

    def _unlocks(self, before: int) -> List[UnlockEvent]:
        events = []
        for kind, threshold in PATTERN_UNLOCKS.items():
            if self.progress_count >= threshold and kind not in self.unlocked:
                self.unlocked.append(kind)
                events.append(
                    UnlockEvent(
                        self.mode,
                        UnlockKind.PATTERN,
                        self.progress_count,
                        PATTERN_MESSAGES[kind],
                        pattern=kind,
                    )
                )
        return events


class SequenceLengthTracker(ProgressTracker):
    """Melody length tiers of the memory game."""

    steps = MEMORY_LENGTH_STEPS
    lengths = MEMORY_LENGTHS

    @property
    def sequence_length(self) -> int:
        return self.lengths[_tier(self.progress_count, self.steps)]

    def _unlocks(self, before: int) -> List[UnlockEvent]:
        old_length = self.lengths[_tier(before, self.steps)]
        if self.sequence_length <= old_length:
            return []
        return [
            UnlockEvent(
                self.mode,
                UnlockKind.SEQUENCE_LENGTH,
                self.progress_count,
                f"Well done! Melodies now have {self.sequence_length} notes.",
                sequence_length=self.sequence_length,
            )
        ]


class DifficultyController:
    """Own one tracker per activity and persist their counts.

    Parameters
    ----------
    repository:
        Optional :class:`ProgressRepository`.  When given, state is restored
        from it on construction and written back after every correct answer.
    """

    def __init__(self, repository: Optional[ProgressRepository] = None) -> None:
        self.repository = repository
        record = repository.load() if repository else ProgressRecord()
        self._build(record)

    def _build(self, record: ProgressRecord) -> None:
        unlocked = []
        for name in record.unlocked_patterns:
            try:
                unlocked.append(PatternKind(name))
            except ValueError:
                logger.warning("Ignoring unknown unlocked pattern %r", name)
        memory = max(record.memory_level, record.count(ActivityMode.MEMORY_GAME.value))
        self.trackers: Dict[ActivityMode, ProgressTracker] = {
            ActivityMode.HIGH_OR_LOW: StageTracker(
                ActivityMode.HIGH_OR_LOW, record.count(ActivityMode.HIGH_OR_LOW.value)
            ),
            ActivityMode.MATCH_SOUNDS: PatternUnlockTracker(
                ActivityMode.MATCH_SOUNDS, record.count(ActivityMode.MATCH_SOUNDS.value), unlocked
            ),
            ActivityMode.DRAW_MELODY: ProgressTracker(
                ActivityMode.DRAW_MELODY, record.count(ActivityMode.DRAW_MELODY.value)
            ),
            ActivityMode.SOUND_JUDGMENT: ProgressTracker(
                ActivityMode.SOUND_JUDGMENT, record.count(ActivityMode.SOUND_JUDGMENT.value)
            ),
            ActivityMode.MEMORY_GAME: SequenceLengthTracker(ActivityMode.MEMORY_GAME, memory),
        }

    def tracker(self, mode: ActivityMode) -> ProgressTracker:
        try:
            return self.trackers[mode]
        except KeyError:
            raise ValueError(f"No progress is tracked for {mode.value}") from None

    def progress(self, mode: ActivityMode) -> int:
        return self.tracker(mode).progress_count

    def record_correct_answer(self, mode: ActivityMode) -> List[UnlockEvent]:
        """Count a correct answer for ``mode`` and return any new unlocks."""

        events = self.tracker(mode).record_correct()
        for event in events:
            logger.info("Unlocked in %s: %s", mode.value, event.message)
        self.save()
        return events

    def record_wrong_answer(self, mode: ActivityMode) -> None:
        self.tracker(mode).record_wrong()

    @property
    def high_or_low(self) -> StageTracker:
        return self.trackers[ActivityMode.HIGH_OR_LOW]  # type: ignore[return-value]

    @property
    def match_sounds(self) -> PatternUnlockTracker:
        return self.trackers[ActivityMode.MATCH_SOUNDS]  # type: ignore[return-value]

    @property
    def memory_game(self) -> SequenceLengthTracker:
        return self.trackers[ActivityMode.MEMORY_GAME]  # type: ignore[return-value]

    @property
    def high_or_low_stage(self) -> int:
        return self.high_or_low.stage

    @property
    def unlocked_patterns(self) -> List[PatternKind]:
        return list(self.match_sounds.unlocked)

    @property
    def memory_sequence_length(self) -> int:
        return self.memory_game.sequence_length

    def record(self) -> ProgressRecord:
        return ProgressRecord(
            counts={mode.value: t.progress_count for mode, t in self.trackers.items()},
            unlocked_patterns=[kind.value for kind in self.match_sounds.unlocked],
            memory_level=self.memory_game.progress_count,
        )

    def save(self) -> None:
        if self.repository is not None:
            self.repository.save(self.record())

    def reset(self) -> None:
        """Forget all progress, including the persisted records."""

        record = self.repository.reset() if self.repository else ProgressRecord()
        self._build(record)
        logger.info("Progress reset")

    def summary(self) -> Dict[str, object]:
        record = self.record()
        return {
            "counts": dict(record.counts),
            "overall": record.overall,
            "high_or_low_stage": self.high_or_low_stage,
            "unlocked_patterns": [k.value for k in self.unlocked_patterns],
            "memory_sequence_length": self.memory_sequence_length,
        }
