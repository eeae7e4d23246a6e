"""Structured events emitted by the trainer core.

The core never touches a display.  Instead it publishes small immutable
event objects on an :class:`EventBus`; front-ends (terminal, web, tests)
subscribe to the types they care about and render them however they like.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, DefaultDict, List, Optional, Type

if TYPE_CHECKING:
    from .difficulty import UnlockEvent
    from .note_utils import NoteToken

__all__ = [
    "ActivityMode",
    "NoteStarted",
    "SequenceCompleted",
    "AnswerJudged",
    "StageUnlocked",
    "ModeChanged",
    "EventBus",
]

logger = logging.getLogger(__name__)


class ActivityMode(Enum):
    """The activities a learner can switch between."""

    HIGH_OR_LOW = "high_or_low"
    MATCH_SOUNDS = "match_sounds"
    DRAW_MELODY = "draw_melody"
    SOUND_JUDGMENT = "sound_judgment"
    MEMORY_GAME = "memory_game"
    IDLE = "idle"


@dataclass(frozen=True)
class NoteStarted:
    session_id: int
    index: int
    note: "NoteToken"
    duration_ms: float


@dataclass(frozen=True)
class SequenceCompleted:
    session_id: int
    length: int


@dataclass(frozen=True)
class AnswerJudged:
    mode: ActivityMode
    correct: bool
    complete: bool
    expected: Any
    given: Any
    feedback: str


@dataclass(frozen=True)
class StageUnlocked:
    unlock: "UnlockEvent"


@dataclass(frozen=True)
class ModeChanged:
    previous: ActivityMode
    current: ActivityMode


Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe dispatcher keyed by event class.

    Handlers run in the publisher's thread in subscription order.  A
    failing handler is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Optional[type], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Optional[Type[Any]], handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (``None`` means every event).

        Returns a callable that removes the subscription again.
        """

        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[event_type].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: Any) -> None:
        for handler in list(self._handlers[type(event)]) + list(self._handlers[None]):
            try:
                handler(event)
            except Exception:  # noqa: BLE001 - subscribers must not break the core
                logger.exception("Event handler failed for %s", type(event).__name__)
