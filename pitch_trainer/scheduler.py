"""Timed playback of note sequences.

The :class:`SequenceScheduler` walks a list of ``(note, duration_ms)``
pairs.  The first note is handed to the audio engine immediately; every
following note is scheduled on a :class:`Clock` once the previous note's
duration has elapsed.  After the last note's duration the optional
``on_complete`` callback runs.

Each run is a :class:`PlaybackSession` guarded by a
:class:`CancellationToken`.  Every scheduled continuation checks the token
before touching the audio engine, so a cancelled session never plays
another note and never calls ``on_complete``.  Only one session is active
per scheduler: :meth:`SequenceScheduler.play` cancels the previous one
(including a ``stop_all`` on the audio engine) before starting.

Two clocks are provided.  :class:`ThreadingClock` uses
:class:`threading.Timer` for real playback; :class:`ManualClock` keeps
virtual time that tests advance explicitly.

Example
-------
>>> clock = ManualClock()
>>> scheduler = SequenceScheduler(audio, clock)          # doctest: +SKIP
>>> handle = scheduler.play_pattern(["C4", "D4", "E4"])  # doctest: +SKIP
>>> clock.advance(2.25)                                  # doctest: +SKIP
"""

# Modification Summary
# ---------------------
# * ``play`` logs and ignores empty sequences instead of raising so a round
#   without notes cannot stop an activity.
# * A failing ``play_note`` call is logged and playback continues with the
#   next note after the failed note's duration.
# * ``try_play`` rejects new requests while a session is still running so
#   late user input cannot restart a melody mid-way.

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

from .events import EventBus, NoteStarted, SequenceCompleted
from .note_utils import NoteToken, ParseError, duration_ms, parse_note

__all__ = [
    "Clock",
    "TimerHandle",
    "ThreadingClock",
    "ManualClock",
    "CancellationToken",
    "EmptySequenceError",
    "PlaybackSession",
    "PlaybackHandle",
    "SequenceScheduler",
    "PATTERN_NOTE_MS",
    "DEFAULT_VELOCITY",
]

logger = logging.getLogger(__name__)

# Fixed spacing used by the simple pattern player.
PATTERN_NOTE_MS = 750
DEFAULT_VELOCITY = 0.75

NoteLike = Union[NoteToken, str]
Step = Tuple[NoteLike, float]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> float: ...
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingClock:
    """Real-time clock running callbacks on :class:`threading.Timer` threads."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer


class _ManualTimer:
    __slots__ = ("due", "callback", "cancelled")

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Virtual clock for tests and simulations.

    Callbacks only run inside :meth:`advance`, in due-time order (ties in
    scheduling order), with :meth:`now` reporting each callback's due time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: List[Tuple[float, int, _ManualTimer]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._queue, (timer.due, next(self._counter), timer))
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("cannot move time backwards")
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            self._now = due
            if not timer.cancelled:
                timer.callback()
        self._now = target


class CancellationToken:
    """One-way flag checked before every scheduled continuation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class EmptySequenceError(ValueError):
    """Raised when a playback session is created without notes."""


class PlaybackSession:
    """Transient state of one melody being played."""

    def __init__(
        self,
        session_id: int,
        sequence: Sequence[Tuple[NoteToken, float]],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        if not sequence:
            raise EmptySequenceError("cannot play an empty sequence")
        self.session_id = session_id
        self.sequence: List[Tuple[NoteToken, float]] = list(sequence)
        self.on_complete = on_complete
        self.cursor = 0
        self.token = CancellationToken()
        self.timer: Optional[TimerHandle] = None
        self.completed = False
        self.finished = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class PlaybackHandle:
    """Returned by :meth:`SequenceScheduler.play` to control one session."""

    def __init__(self, scheduler: Optional["SequenceScheduler"], session: Optional[PlaybackSession]) -> None:
        self._scheduler = scheduler
        self.session = session

    def cancel(self) -> None:
        """Stop the session; calling this more than once is harmless."""

        if self._scheduler is not None and self.session is not None:
            self._scheduler._cancel_session(self.session)

    @property
    def cancelled(self) -> bool:
        return self.session is not None and self.session.cancelled

    @property
    def done(self) -> bool:
        return self.session is None or self.session.finished.is_set()

    @property
    def completed(self) -> bool:
        return self.session is not None and self.session.completed

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session finished (only useful with real clocks)."""

        if self.session is None:
            return True
        return self.session.finished.wait(timeout)


class SequenceScheduler:
    """Play note sequences one note at a time on an audio engine.

    Parameters
    ----------
    audio:
        Object providing ``play_note(note, duration_seconds, velocity)`` and
        ``stop_all()`` (see :mod:`pitch_trainer.playback`).
    clock:
        Where continuations are scheduled. Defaults to :class:`ThreadingClock`.
    events:
        Optional :class:`EventBus` receiving :class:`NoteStarted` and
        :class:`SequenceCompleted` events.
    velocity:
        Loudness between ``0`` and ``1`` passed with every note.
    """

    def __init__(
        self,
        audio,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        velocity: float = DEFAULT_VELOCITY,
    ) -> None:
        self.audio = audio
        self.clock = clock or ThreadingClock()
        self.events = events
        self.velocity = velocity
        self._lock = threading.RLock()
        self._session: Optional[PlaybackSession] = None
        self._ids = itertools.count(1)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def current(self) -> Optional[PlaybackSession]:
        return self._session

    def play(
        self,
        sequence: Sequence[Step],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> PlaybackHandle:
        """Start playing ``sequence``, cancelling any session in progress.

        Notes may be :class:`NoteToken` values or notation strings. A token
        that fails to parse aborts this melody (logged, nothing is played)
        and an empty sequence is a no-op; in both cases the running session
        is left untouched and an already finished handle is returned.
        """

        try:
            steps = [(self._token(note), float(ms)) for note, ms in sequence]
        except ParseError as exc:
            logger.error("Not playing melody with invalid note: %s", exc)
            return PlaybackHandle(None, None)

        with self._lock:
            try:
                session = PlaybackSession(next(self._ids), steps, on_complete)
            except EmptySequenceError:
                logger.warning("Ignoring request to play an empty sequence")
                return PlaybackHandle(None, None)
            if self._session is not None:
                logger.debug("Cancelling session %d before starting %d", self._session.session_id, session.session_id)
                self._cancel_session(self._session)
            self._session = session
        self._advance(session)
        return PlaybackHandle(self, session)

    def try_play(
        self,
        sequence: Sequence[Step],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> Optional[PlaybackHandle]:
        """Like :meth:`play` but refuse to interrupt a running session."""

        with self._lock:
            if self._session is not None:
                logger.info("Playback request rejected: session %d still running", self._session.session_id)
                return None
            return self.play(sequence, on_complete)

    def play_pattern(
        self,
        notes: Sequence[NoteLike],
        note_ms: float = PATTERN_NOTE_MS,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> PlaybackHandle:
        """Play ``notes`` with a fixed spacing, ignoring duration suffixes."""

        return self.play([(note, note_ms) for note in notes], on_complete)

    def play_melody(
        self,
        notes: Sequence[NoteLike],
        quarter_ms: float,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> PlaybackHandle:
        """Play ``notes`` honouring each token's duration class."""

        try:
            tokens = [self._token(note) for note in notes]
        except ParseError as exc:
            logger.error("Not playing melody with invalid note: %s", exc)
            return PlaybackHandle(None, None)
        return self.play([(t, duration_ms(t, quarter_ms)) for t in tokens], on_complete)

    def cancel(self) -> None:
        """Cancel whatever session is currently running."""

        with self._lock:
            session = self._session
        if session is not None:
            self._cancel_session(session)

    @staticmethod
    def _token(note: NoteLike) -> NoteToken:
        return note if isinstance(note, NoteToken) else parse_note(note)

    def _cancel_session(self, session: PlaybackSession) -> None:
        with self._lock:
            if session.cancelled or session.completed or session.finished.is_set():
                return
            session.token.cancel()
            if session.timer is not None:
                session.timer.cancel()
            if self._session is session:
                self._session = None
            session.finished.set()
            try:
                self.audio.stop_all()
            except Exception:  # noqa: BLE001 - keep cancelling even if the engine fails
                logger.exception("Audio engine failed to stop all notes")
            logger.debug("Session %d cancelled at note %d", session.session_id, session.cursor)

    def _advance(self, session: PlaybackSession) -> None:
        complete = False
        with self._lock:
            if session.cancelled or self._session is not session:
                return
            if session.cursor >= len(session.sequence):
                self._session = None
                session.completed = True
                complete = True
            else:
                index = session.cursor
                note, ms = session.sequence[index]
                session.cursor += 1
                try:
                    self.audio.play_note(note.name, ms / 1000.0, self.velocity)
                except Exception:  # noqa: BLE001 - a bad note must not end the melody
                    logger.exception("Failed to play note %s at position %d", note.name, index + 1)
                if self.events is not None:
                    self.events.publish(NoteStarted(session.session_id, index, note, ms))
                session.timer = self.clock.call_later(ms / 1000.0, lambda: self._advance(session))

        if complete:
            logger.debug("Session %d complete after %d notes", session.session_id, len(session.sequence))
            if self.events is not None:
                self.events.publish(SequenceCompleted(session.session_id, len(session.sequence)))
            try:
                if session.on_complete is not None:
                    session.on_complete()
            finally:
                session.finished.set()
