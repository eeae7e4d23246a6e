"""Turn a freehand line into a melody.

The draw activity lets the learner sketch a line on a canvas.  The line is
sampled at a handful of evenly spaced points and each point's height is
mapped onto a note palette: the higher on screen, the higher the pitch.
In challenge mode the sketch is compared with a reference melody by
contour (up, down or same between neighbouring notes).
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .note_utils import NoteToken
from .patterns import REFERENCE_PALETTE

__all__ = ["MAX_SAMPLES", "CONTOUR_PASS_RATIO", "path_to_melody", "contour", "contour_agreement"]

logger = logging.getLogger(__name__)

MAX_SAMPLES = 8
# Fraction of matching contour steps a drawing needs in challenge mode.
CONTOUR_PASS_RATIO = 0.75


def _even_indices(length: int, count: int) -> np.ndarray:
    if length <= count:
        return np.arange(length)
    return np.round(np.linspace(0, length - 1, count)).astype(int)


def path_to_melody(
    points: Sequence[Tuple[float, float]],
    height: float,
    palette: Sequence[NoteToken] = REFERENCE_PALETTE,
    max_samples: int = MAX_SAMPLES,
) -> List[NoteToken]:
    """Map a drawn path onto ``palette``.

    Parameters
    ----------
    points:
        ``(x, y)`` canvas coordinates in drawing order; ``y`` grows
        downwards as on a screen.
    height:
        Canvas height used to normalise ``y``.
    palette:
        Ascending notes the drawing is mapped to.
    max_samples:
        Upper bound on the number of notes returned.

    Returns
    -------
    list of NoteToken
        Empty when ``points`` is empty.

    Raises
    ------
    ValueError
        If ``height`` or ``max_samples`` is not positive or ``palette`` is empty.
    """

    if height <= 0:
        raise ValueError("height must be positive")
    if max_samples <= 0:
        raise ValueError("max_samples must be positive")
    if not palette:
        raise ValueError("palette must not be empty")
    if len(points) == 0:
        return []

    coords = np.asarray(points, dtype=float).reshape(-1, 2)
    count = min(max_samples, len(coords))
    sampled = coords[np.arange(count) * (len(coords) // count)]
    relative = 1.0 - np.clip(sampled[:, 1] / height, 0.0, 1.0)
    indices = np.minimum(np.floor(relative * len(palette)).astype(int), len(palette) - 1)
    melody = [palette[i] for i in indices]
    logger.debug("Drawn path of %d points mapped to %s", len(coords), " ".join(n.name for n in melody))
    return melody


def contour(notes: Sequence[NoteToken]) -> np.ndarray:
    """Return ``-1``/``0``/``1`` for every step between neighbouring notes."""

    if len(notes) < 2:
        return np.zeros(0, dtype=int)
    return np.sign(np.diff([n.midi for n in notes])).astype(int)


def contour_agreement(drawn: Sequence[NoteToken], reference: Sequence[NoteToken]) -> float:
    """Fraction of contour steps in which ``drawn`` follows ``reference``.

    The longer melody is resampled to the length of the shorter one first.
    Melodies with fewer than two notes have no contour and score ``0.0``.
    """

    size = min(len(drawn), len(reference))
    if size < 2:
        return 0.0
    a = contour([drawn[i] for i in _even_indices(len(drawn), size)])
    b = contour([reference[i] for i in _even_indices(len(reference), size)])
    return float(np.mean(a == b))
