"""Catalogue of well-known children's melodies.

The sound judgment activity plays one of these tunes, sometimes with a
single wrong note, and asks whether it sounds right.  Notes are stored in
the compact notation from :mod:`pitch_trainer.note_utils`; each tune has its
own quarter-note length in milliseconds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .note_utils import NoteToken, ParseError, duration_ms, parse_melody

__all__ = ["KnownMelody", "KNOWN_MELODIES", "get_melody", "melody_timeline", "safe_tokens"]

logger = logging.getLogger(__name__)

DEFAULT_QUARTER_MS = 700


@dataclass(frozen=True)
class KnownMelody:
    """A named tune in notation form."""

    melody_id: str
    names: Dict[str, str] = field(hash=False)
    notes: Tuple[str, ...]
    quarter_ms: int = DEFAULT_QUARTER_MS

    def name(self, language: str = "en") -> str:
        return self.names.get(language) or self.names["en"]

    def tokens(self) -> List[NoteToken]:
        """Parse the notes, raising :class:`ParseError` on a bad token."""
        return parse_melody(self.notes)


def _melody(melody_id: str, en: str, de: str, quarter_ms: int, notes: str) -> KnownMelody:
    return KnownMelody(melody_id, {"en": en, "de": de}, tuple(notes.split()), quarter_ms)


KNOWN_MELODIES: Dict[str, KnownMelody] = {
    m.melody_id: m
    for m in (
        _melody(
            "twinkle",
            "Twinkle, Twinkle, Little Star",
            "Funkel, funkel, kleiner Stern",
            500,
            "C C4 G4 G4 A4 A4 G4:h F4 F4 E4 E4 D4 D4 C4:h",
        ),
        _melody(
            "jingle",
            "Jingle Bells",
            "Jingle Bells",
            450,
            "E E4 E4:h E4 E4 E4:h E4 G4 C4 D4 E4:h",
        ),
        _melody(
            "happy",
            "Happy Birthday",
            "Alles Gute zum Geburtstag",
            600,
            "G3:e G3:e A3:q G3:q C4:q B3:h G3:e G3:e A3:q G3:q D4:q C4:h",
        ),
        _melody(
            "happy-birthday",
            "Happy Birthday To You",
            "Zum Geburtstag viel Glück",
            600,
            "C:e C4:e D4:q C4:q F4:q E4:h C4:e C4:e D4:q C4:q G4:q F4:h",
        ),
        _melody(
            "frere-jacques",
            "Brother John (Frère Jacques)",
            "Bruder Jakob",
            500,
            "C D4 E4 C4 C4 D4 E4 C4 E4 F4 G4:h E4 F4 G4:h",
        ),
        _melody(
            "are-you-sleeping",
            "Are You Sleeping?",
            "Schlaf, Kindlein, schlaf",
            550,
            "C D4 E4 C4 C4 D4 E4 C4 E4 F4 G4:h E4 F4 G4:h",
        ),
        _melody(
            "little-hans",
            "Little Hans",
            "Hänschen klein",
            550,
            "G E4 E4:h A4 D4 D4:h C4 D4 E4 F4 G4 G4 G4:h",
        ),
        _melody(
            "all-my-little-ducklings",
            "All My Little Ducklings",
            "Alle meine Entchen",
            550,
            "C D4 E4 F4 G4:h G4:h A A A A G:h",
        ),
        _melody(
            "old-mcdonald",
            "Old McDonald Had a Farm",
            "Old MacDonald hat ne Farm",
            500,
            "F F4 C4 C4 D4 D4 C4:h A4 A4 G4 G4 F4:h",
        ),
    )
}


def get_melody(melody_id: str) -> KnownMelody:
    """Return the catalogue entry for ``melody_id``.

    Raises
    ------
    KeyError
        If no melody with that identifier exists.
    """

    try:
        return KNOWN_MELODIES[melody_id]
    except KeyError:
        raise KeyError(f"Unknown melody: {melody_id}") from None


def melody_timeline(
    notes: List[NoteToken], quarter_ms: float = DEFAULT_QUARTER_MS
) -> List[Tuple[NoteToken, float]]:
    """Pair each note with its playback length in milliseconds."""

    return [(note, duration_ms(note, quarter_ms)) for note in notes]


def safe_tokens(melody: KnownMelody) -> Optional[List[NoteToken]]:
    """Parse ``melody`` and return ``None`` (after logging) if it is malformed."""

    try:
        return melody.tokens()
    except ParseError as exc:
        logger.error("Skipping melody %s: %s", melody.melody_id, exc)
        return None
