"""Activity state machine tying generation, difficulty and playback together.

The learner is always in exactly one :class:`ActivityMode`.  Each mode has
a handler object that knows how to build its next :class:`Round` and how
to judge an answer:

``high_or_low``
    One tone (stages 1-2) or the reference tone C5 followed by a second tone
    (stage 3 on). The answer is ``"high"`` or ``"low"``.
``match_sounds``
    A five note contour from the unlocked :class:`PatternKind` values. The
    answer is the contour name.
``draw_melody``
    In challenge mode a six note reference melody; the answer is a drawn
    melody compared by contour. Outside challenge mode drawings are only
    played back.
``sound_judgment``
    A known melody that has a wrong note half of the time. The answer is
    ``True`` when the learner thinks it sounds right.
``memory_game``
    A short melody to repeat note by note. The first wrong note ends the
    attempt.

All mutable per-activity data lives in one :class:`ActivityContext` owned by
the :class:`ActivityStateMachine`.  Switching modes cancels the running
playback session and any pending follow-up and clears the context.  After a
complete answer the machine waits :data:`FEEDBACK_DELAY_S` seconds on its
clock and then moves on: a new round after a correct answer, a replay or a
retry of the same round after a wrong one.
"""

# Modification Summary
# ---------------------
# * High-or-low rejects answers and play requests while a tone is still
#   sounding; every other activity stops the sound and judges at once.
# * ``auto_advance=False`` turns off the delayed follow-up so request driven
#   front-ends (the web API) decide themselves when to ask for a new round.
# * Sound judgment skips melodies whose notation fails to parse and never
#   repeats the previous melody.

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .difficulty import REFERENCE_TONE, DifficultyController, UnlockEvent, UnlockKind
from .drawing import CONTOUR_PASS_RATIO, contour_agreement, path_to_melody
from .events import ActivityMode, AnswerJudged, EventBus, ModeChanged, StageUnlocked
from .melodies import KNOWN_MELODIES, melody_timeline, safe_tokens
from .note_utils import NoteToken, compare_pitch, parse_note
from .patterns import (
    CONTOUR_KINDS,
    DEFAULT_PALETTE,
    MEMORY_NOTES,
    REFERENCE_PALETTE,
    Pattern,
    PatternGenerator,
    PatternKind,
)
from .scheduler import PATTERN_NOTE_MS, Clock, PlaybackHandle, SequenceScheduler, TimerHandle

__all__ = [
    "ActivityContext",
    "ActivityStateMachine",
    "FollowUp",
    "Judgment",
    "NoActiveSequenceError",
    "Round",
    "FEEDBACK_DELAY_S",
    "MATCH_NOTE_MS",
    "MEMORY_NOTE_MS",
    "HIGH_LOW_TONE_MS",
    "DRAW_NOTE_MS",
    "REFERENCE_NOTE_MS",
]

logger = logging.getLogger(__name__)

FEEDBACK_DELAY_S = 2.0
MATCH_NOTE_MS = PATTERN_NOTE_MS
MEMORY_NOTE_MS = 600
HIGH_LOW_TONE_MS = 900
DRAW_NOTE_MS = 300
REFERENCE_NOTE_MS = 500
REFERENCE_LENGTH = 6
# Attempts at drawing a melody different from the previous one.
MAX_MELODY_PICKS = 10

Timeline = List[Tuple[NoteToken, float]]


class NoActiveSequenceError(RuntimeError):
    """Raised when an answer arrives before any round exists."""


class FollowUp(Enum):
    """What happens once the feedback delay after an answer has passed."""

    NEXT_AND_PLAY = "next_and_play"
    NEXT = "next"
    REPLAY = "replay"
    KEEP = "keep"


@dataclass
class Round:
    """One question put to the learner."""

    mode: ActivityMode
    sequence: Timeline
    expected: Any
    pattern: Optional[Pattern] = None
    melody_id: Optional[str] = None
    has_wrong_note: bool = False
    played: bool = False

    @property
    def notes(self) -> List[str]:
        return [note.name for note, _ in self.sequence]


@dataclass(frozen=True)
class Judgment:
    """Outcome of one answer.

    ``complete`` is ``False`` only for a correct but unfinished memory
    attempt; such judgments carry no feedback and change no progress.
    """

    mode: ActivityMode
    correct: bool
    complete: bool
    expected: Any
    given: Any
    feedback: str = ""
    unlocks: Tuple[UnlockEvent, ...] = ()


@dataclass
class ActivityContext:
    """Everything that changes while the learner plays."""

    mode: ActivityMode = ActivityMode.IDLE
    round: Optional[Round] = None
    user_input: List[str] = field(default_factory=list)
    feedback: str = ""
    playback: Optional[PlaybackHandle] = None
    pending: Optional[TimerHandle] = None
    last_melody_id: Optional[str] = None
    challenge: bool = False

    def clear(self) -> None:
        self.round = None
        self.user_input = []
        self.feedback = ""
        self.playback = None
        self.pending = None
        self.challenge = False


class ActivityHandler:
    """Base class of the per-mode behaviour."""

    mode: ActivityMode
    # Reject answers and replays while the round is still sounding.
    exclusive_playback = False

    def __init__(self, machine: "ActivityStateMachine") -> None:
        self.machine = machine

    @property
    def rng(self) -> random.Random:
        return self.machine.rng

    def new_round(self) -> Round:
        raise NotImplementedError

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        raise NotImplementedError

    def follow_up(self, correct: bool) -> FollowUp:
        return FollowUp.NEXT_AND_PLAY if correct else FollowUp.REPLAY


class HighOrLowActivity(ActivityHandler):
    mode = ActivityMode.HIGH_OR_LOW
    exclusive_playback = True

    _ANSWERS = {"high": "high", "higher": "high", "h": "high", "low": "low", "lower": "low", "l": "low"}

    def new_round(self) -> Round:
        tracker = self.machine.difficulty.high_or_low
        low, high = tracker.tone_pools()
        if tracker.two_tone:
            second = self.rng.choice(high if self.rng.random() < 0.5 else low)
            expected = "high" if compare_pitch(REFERENCE_TONE, second) > 0 else "low"
            notes = [REFERENCE_TONE, second]
        elif self.rng.random() < 0.5:
            notes, expected = [self.rng.choice(high)], "high"
        else:
            notes, expected = [self.rng.choice(low)], "low"
        logger.debug("High or low stage %d: %s -> %s", tracker.stage, [n.name for n in notes], expected)
        return Round(self.mode, [(n, HIGH_LOW_TONE_MS) for n in notes], expected)

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        given = self._ANSWERS.get(str(answer).strip().lower())
        if given is None:
            raise ValueError(f"Answer must be 'high' or 'low', got {answer!r}")
        correct = given == rnd.expected
        two_tone = len(rnd.sequence) > 1
        if two_tone:
            word = "higher" if rnd.expected == "high" else "lower"
            text = "Correct! The second tone was {0}!" if correct else "Try again. The second tone was {0}."
        else:
            word = rnd.expected
            text = "Correct! The tone was {0}!" if correct else "Try again. The tone was {0}."
        return Judgment(self.mode, correct, True, rnd.expected, given, text.format(word))

    def follow_up(self, correct: bool) -> FollowUp:
        return FollowUp.NEXT_AND_PLAY if correct else FollowUp.NEXT


class MatchSoundsActivity(ActivityHandler):
    mode = ActivityMode.MATCH_SOUNDS

    def new_round(self) -> Round:
        kind = self.rng.choice(self.machine.difficulty.unlocked_patterns)
        pattern = self.machine.generator.generate(kind)
        return Round(self.mode, [(n, MATCH_NOTE_MS) for n in pattern], kind, pattern=pattern)

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        try:
            given = answer if isinstance(answer, PatternKind) else PatternKind(str(answer).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown pattern {answer!r}") from None
        if given not in CONTOUR_KINDS:
            raise ValueError(f"{given.value} is not a contour")
        correct = given is rnd.expected
        feedback = "Great job! That's correct!" if correct else "Not quite. Let's try again!"
        return Judgment(self.mode, correct, True, rnd.expected.value, given.value, feedback)

    def follow_up(self, correct: bool) -> FollowUp:
        return FollowUp.NEXT_AND_PLAY if correct else FollowUp.KEEP


class DrawMelodyActivity(ActivityHandler):
    mode = ActivityMode.DRAW_MELODY

    def new_round(self) -> Round:
        pattern = self.machine.reference_generator.generate_reference(REFERENCE_LENGTH)
        return Round(
            self.mode,
            [(n, REFERENCE_NOTE_MS) for n in pattern],
            [n.name for n in pattern],
            pattern=pattern,
        )

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        drawn = [n if isinstance(n, NoteToken) else parse_note(n) for n in answer]
        score = contour_agreement(drawn, rnd.pattern.notes if rnd.pattern else [])
        correct = score >= CONTOUR_PASS_RATIO
        if correct:
            feedback = f"Great drawing! {score:.0%} of the melody moves the right way."
        else:
            feedback = f"Only {score:.0%} of the melody moves the right way. Listen again!"
        return Judgment(self.mode, correct, True, rnd.expected, [n.name for n in drawn], feedback)

    def follow_up(self, correct: bool) -> FollowUp:
        return FollowUp.NEXT_AND_PLAY if correct else FollowUp.KEEP


class SoundJudgmentActivity(ActivityHandler):
    mode = ActivityMode.SOUND_JUDGMENT

    _ANSWERS = {"right": True, "yes": True, "y": True, "good": True, "wrong": False, "no": False, "n": False, "bad": False}

    def _pick_melody_id(self) -> str:
        ids = list(KNOWN_MELODIES)
        last = self.machine.context.last_melody_id
        choice = self.rng.choice(ids)
        for _ in range(MAX_MELODY_PICKS):
            if choice != last:
                return choice
            choice = self.rng.choice(ids)
        return ids[(ids.index(last) + 1) % len(ids)] if last in ids else choice

    def new_round(self) -> Round:
        ids = list(KNOWN_MELODIES)
        melody_id = self._pick_melody_id()
        for offset in range(len(ids)):
            candidate = KNOWN_MELODIES[ids[(ids.index(melody_id) + offset) % len(ids)]]
            tokens = safe_tokens(candidate)
            if tokens:
                break
        else:
            raise RuntimeError("No playable melody in the catalogue")

        has_wrong_note = self.rng.random() < 0.5
        if has_wrong_note:
            corrupted, _ = self.machine.generator.corrupt(Pattern(PatternKind.REFERENCE, tuple(tokens)))
            tokens = list(corrupted.notes)
        self.machine.context.last_melody_id = candidate.melody_id
        logger.debug("Sound judgment: %s (wrong note: %s)", candidate.melody_id, has_wrong_note)
        return Round(
            self.mode,
            melody_timeline(tokens, candidate.quarter_ms),
            not has_wrong_note,
            melody_id=candidate.melody_id,
            has_wrong_note=has_wrong_note,
        )

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        if isinstance(answer, bool):
            given = answer
        else:
            given = self._ANSWERS.get(str(answer).strip().lower())
            if given is None:
                raise ValueError(f"Answer must be 'right' or 'wrong', got {answer!r}")
        correct = given == rnd.expected
        if correct:
            feedback = "Well done! You heard correctly!"
        elif rnd.has_wrong_note:
            feedback = "Listen again! There was a wrong note."
        else:
            feedback = "The melody was correct. Try again!"
        return Judgment(self.mode, correct, True, rnd.expected, given, feedback)


class MemoryGameActivity(ActivityHandler):
    mode = ActivityMode.MEMORY_GAME

    def new_round(self) -> Round:
        length = self.machine.difficulty.memory_sequence_length
        notes = self.machine.generator.random_walk(MEMORY_NOTES, length)
        return Round(self.mode, [(n, MEMORY_NOTE_MS) for n in notes], [n.name for n in notes])

    def judge(self, rnd: Round, answer: Any) -> Judgment:
        note = answer if isinstance(answer, NoteToken) else parse_note(str(answer))
        self.machine.play_key(note)
        context = self.machine.context
        position = len(context.user_input)
        context.user_input.append(note.name)
        if note.name != rnd.expected[position]:
            return Judgment(
                self.mode, False, True, rnd.expected, list(context.user_input), "Let's try again. Listen carefully!"
            )
        if len(context.user_input) < len(rnd.expected):
            return Judgment(self.mode, True, False, rnd.expected, list(context.user_input))
        return Judgment(
            self.mode, True, True, rnd.expected, list(context.user_input), "Amazing memory! You got it right!"
        )


_HANDLERS = (
    HighOrLowActivity,
    MatchSoundsActivity,
    DrawMelodyActivity,
    SoundJudgmentActivity,
    MemoryGameActivity,
)


class ActivityStateMachine:
    """Drive the five activities against an audio engine.

    Parameters
    ----------
    audio:
        Audio engine (see :mod:`pitch_trainer.playback`).
    difficulty:
        Progress tracking; a fresh in-memory controller when omitted.
    clock:
        Clock for playback and follow-up delays. Defaults to real time.
    rng:
        Random source shared by every generator.
    events:
        Bus receiving playback, judgment, unlock and mode events.
    auto_advance:
        Run the delayed follow-up after each complete answer.
    """

    def __init__(
        self,
        audio,
        difficulty: Optional[DifficultyController] = None,
        *,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        events: Optional[EventBus] = None,
        auto_advance: bool = True,
    ) -> None:
        self.audio = audio
        self.difficulty = difficulty or DifficultyController()
        self.rng = rng or random.Random()
        self.events = events or EventBus()
        self.auto_advance = auto_advance
        self.scheduler = SequenceScheduler(audio, clock, self.events)
        self.clock = self.scheduler.clock
        self.generator = PatternGenerator(DEFAULT_PALETTE, self.rng)
        self.reference_generator = PatternGenerator(REFERENCE_PALETTE, self.rng)
        self.context = ActivityContext()
        self._handlers: Dict[ActivityMode, ActivityHandler] = {cls.mode: cls(self) for cls in _HANDLERS}
        missing = set(ActivityMode) - set(self._handlers) - {ActivityMode.IDLE}
        if missing:
            raise RuntimeError(f"Activities without handler: {sorted(m.value for m in missing)}")
        self._lock = threading.RLock()
        self._generation = 0

    # ------------------------------------------------------------------
    # Mode handling
    # ------------------------------------------------------------------
    @property
    def mode(self) -> ActivityMode:
        return self.context.mode

    @property
    def current_round(self) -> Optional[Round]:
        return self.context.round

    @property
    def playing(self) -> bool:
        return self.scheduler.active

    def _handler(self) -> ActivityHandler:
        if self.context.mode is ActivityMode.IDLE:
            raise ValueError("No activity selected")
        return self._handlers[self.context.mode]

    def _cancel_pending(self) -> None:
        self._generation += 1
        if self.context.pending is not None:
            self.context.pending.cancel()
            self.context.pending = None

    def switch_mode(self, mode: Union[ActivityMode, str]) -> ActivityMode:
        """Enter ``mode``, stopping playback and clearing the context."""

        new_mode = mode if isinstance(mode, ActivityMode) else ActivityMode(mode)
        with self._lock:
            previous = self.context.mode
            self._cancel_pending()
            self.scheduler.cancel()
            self.context.clear()
            self.context.mode = new_mode
        logger.info("Mode changed from %s to %s", previous.value, new_mode.value)
        self.events.publish(ModeChanged(previous, new_mode))
        return previous

    # ------------------------------------------------------------------
    # Rounds and playback
    # ------------------------------------------------------------------
    def next_round(self) -> Round:
        """Discard the current round and build a new one for the mode."""

        with self._lock:
            handler = self._handler()
            self._cancel_pending()
            self.scheduler.cancel()
            rnd = handler.new_round()
            self.context.round = rnd
            self.context.user_input = []
            self.context.feedback = ""
            return rnd

    def play(self) -> Optional[PlaybackHandle]:
        """Play the current round, creating one first if needed.

        Returns ``None`` when the request is rejected because a high-or-low
        tone is still sounding.
        """

        with self._lock:
            handler = self._handler()
            if handler.exclusive_playback and self.scheduler.active:
                logger.info("Ignoring play request while a tone is sounding")
                return None
            if self.context.round is None:
                self.next_round()
            self.context.user_input = []
            self.context.round.played = True
            handle = self.scheduler.play(self.context.round.sequence)
            self.context.playback = handle
            return handle

    def play_key(self, note: NoteToken) -> None:
        """Sound a single pressed key of the memory keyboard."""

        try:
            self.audio.play_note(note.name, MEMORY_NOTE_MS / 1000.0)
        except Exception:  # noqa: BLE001 - a missing key sound must not stop the game
            logger.exception("Failed to play key %s", note.name)

    def preview_pattern(self, kind: Union[PatternKind, str]) -> Pattern:
        """Play a contour without scoring (match sounds free play)."""

        kind = kind if isinstance(kind, PatternKind) else PatternKind(kind)
        if kind not in CONTOUR_KINDS:
            raise ValueError(f"{kind.value} is not a contour")
        with self._lock:
            pattern = self.generator.generate(kind)
            self.context.playback = self.scheduler.play_pattern(list(pattern), MATCH_NOTE_MS)
        return pattern

    def set_challenge(self, enabled: bool) -> Optional[Round]:
        """Toggle the draw-melody challenge; enabling plays a new reference."""

        with self._lock:
            if self.context.mode is not ActivityMode.DRAW_MELODY:
                raise ValueError("Challenges are only available while drawing")
            self.context.challenge = enabled
            if not enabled:
                self._cancel_pending()
                self.scheduler.cancel()
                self.context.round = None
                return None
            rnd = self.next_round()
            self.play()
            return rnd

    def submit_drawing(
        self, points: Sequence[Tuple[float, float]], height: float
    ) -> Tuple[List[NoteToken], Optional[Judgment]]:
        """Turn a drawing into a melody, judge it in challenge mode and play it."""

        with self._lock:
            if self.context.mode is not ActivityMode.DRAW_MELODY:
                raise ValueError("Drawings are only accepted in draw_melody mode")
            melody = path_to_melody(points, height)
            if not melody:
                logger.info("Ignoring empty drawing")
                return melody, None
            judgment = None
            if self.context.challenge and self.context.round is not None:
                judgment = self.answer(melody)
            self.context.playback = self.scheduler.play_pattern(melody, DRAW_NOTE_MS)
            return melody, judgment

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------
    def _require_round(self) -> Round:
        if self.context.round is None:
            raise NoActiveSequenceError(f"No round in progress for {self.context.mode.value}")
        return self.context.round

    def answer(self, value: Any) -> Optional[Judgment]:
        """Judge ``value`` against the current round.

        Returns ``None`` when the answer is ignored: no round exists yet, or
        a high-or-low tone has not been played or is still sounding.

        Raises
        ------
        ValueError
            If ``value`` is not a valid answer for the current mode.
        """

        with self._lock:
            try:
                rnd = self._require_round()
            except NoActiveSequenceError as exc:
                logger.info("Ignoring answer %r: %s", value, exc)
                return None
            handler = self._handlers[rnd.mode]
            if handler.exclusive_playback and self.scheduler.active:
                logger.info("Ignoring answer %r while a tone is sounding", value)
                return None
            if handler.exclusive_playback and not rnd.played:
                logger.info("Ignoring answer %r before the tone was played", value)
                return None
            self.scheduler.cancel()

            judgment = handler.judge(rnd, value)
            if not judgment.complete:
                return judgment

            unlocks: List[UnlockEvent] = []
            if judgment.correct:
                unlocks = self.difficulty.record_correct_answer(rnd.mode)
            else:
                self.difficulty.record_wrong_answer(rnd.mode)
            feedback = judgment.feedback
            for unlock in unlocks:
                if unlock.kind is UnlockKind.STAGE:
                    feedback = unlock.message
            judgment = Judgment(
                judgment.mode,
                judgment.correct,
                True,
                judgment.expected,
                judgment.given,
                feedback,
                tuple(unlocks),
            )
            self.context.feedback = feedback
            self._after_answer(handler.follow_up(judgment.correct))

        logger.info("%s answer %r: %s", rnd.mode.value, value, "correct" if judgment.correct else "wrong")
        self.events.publish(
            AnswerJudged(judgment.mode, judgment.correct, True, judgment.expected, judgment.given, feedback)
        )
        for unlock in unlocks:
            self.events.publish(StageUnlocked(unlock))
        return judgment

    def _after_answer(self, action: FollowUp) -> None:
        self._cancel_pending()
        self.context.user_input = []
        if action in (FollowUp.NEXT, FollowUp.NEXT_AND_PLAY):
            self.context.round = None
        if not self.auto_advance or action is FollowUp.KEEP:
            return
        generation = self._generation
        self.context.pending = self.clock.call_later(
            FEEDBACK_DELAY_S, lambda: self._run_follow_up(action, generation)
        )

    def _run_follow_up(self, action: FollowUp, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.context.mode is ActivityMode.IDLE:
                return
            self.context.pending = None
            self.context.feedback = ""
            if action is FollowUp.REPLAY:
                if self.context.round is not None:
                    self.play()
                return
            self.next_round()
            if action is FollowUp.NEXT_AND_PLAY:
                self.play()

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def reset_progress(self) -> None:
        """Forget all progress and start the current activity afresh."""

        with self._lock:
            self._cancel_pending()
            self.scheduler.cancel()
            self.difficulty.reset()
            mode = self.context.mode
            self.context.clear()
            self.context.mode = mode

    def summary(self) -> Dict[str, object]:
        summary = self.difficulty.summary()
        summary["mode"] = self.context.mode.value
        return summary

    def shutdown(self) -> None:
        """Stop playback and drop any pending follow-up."""

        with self._lock:
            self._cancel_pending()
            self.scheduler.cancel()
