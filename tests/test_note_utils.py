"""Tests for the note token notation.

Every valid token must survive a render/parse round trip, defaults must be
applied for missing octaves and durations, and each kind of malformed
token must be reported with the matching :class:`ParseErrorKind`.
"""

import importlib
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

note_utils = importlib.import_module("pitch_trainer.note_utils")
DurationClass = note_utils.DurationClass
NoteToken = note_utils.NoteToken
ParseError = note_utils.ParseError
ParseErrorKind = note_utils.ParseErrorKind
PitchClass = note_utils.PitchClass


def test_half_note_scenario():
    """``G4:h`` is a half note lasting twice the quarter length."""

    token = note_utils.parse_note("G4:h")
    assert token.pitch_class is PitchClass.G
    assert token.octave == 4
    assert token.duration is DurationClass.HALF
    assert note_utils.duration_ms(token, 500) == 1000


@pytest.mark.parametrize("pitch", list(PitchClass))
def test_round_trip_for_every_token(pitch):
    """``parse_note(render_note(t)) == t`` across octaves and durations."""

    for octave in range(note_utils.MIN_OCTAVE, note_utils.MAX_OCTAVE + 1):
        for duration in DurationClass:
            token = NoteToken(pitch, octave, duration)
            assert note_utils.parse_note(note_utils.render_note(token)) == token


def test_bare_letter_defaults():
    """A bare letter means octave 4 and a quarter note."""

    assert note_utils.parse_note("A") == NoteToken(PitchClass.A, 4, DurationClass.QUARTER)
    assert note_utils.parse_note("c#") == NoteToken(PitchClass.C_SHARP)
    assert note_utils.parse_note("C:e") == NoteToken(PitchClass.C, 4, DurationClass.EIGHTH)


def test_render_omits_quarter_suffix():
    assert note_utils.render_note(NoteToken(PitchClass.F_SHARP, 5)) == "F#5"
    assert note_utils.render_note(NoteToken(PitchClass.D, 3, DurationClass.WHOLE)) == "D3:w"


@pytest.mark.parametrize(
    "text, kind",
    [
        ("H4", ParseErrorKind.INVALID_PITCH),
        ("E#4", ParseErrorKind.INVALID_PITCH),
        ("1C", ParseErrorKind.INVALID_PITCH),
        ("C4:x", ParseErrorKind.INVALID_DURATION),
        ("C4:", ParseErrorKind.INVALID_DURATION),
        ("C9", ParseErrorKind.INVALID_OCTAVE),
        ("C2", ParseErrorKind.INVALID_OCTAVE),
        ("", ParseErrorKind.MALFORMED),
        ("C44", ParseErrorKind.MALFORMED),
    ],
)
def test_invalid_tokens(text, kind):
    with pytest.raises(ParseError) as exc:
        note_utils.parse_note(text)
    assert exc.value.kind is kind


@pytest.mark.parametrize("value", [5, None, ["C4"], ("C", 4)])
def test_non_string_token_is_malformed(value):
    with pytest.raises(ParseError) as exc:
        note_utils.parse_note(value)
    assert exc.value.kind is ParseErrorKind.MALFORMED


def test_parse_melody_rejects_non_iterable():
    with pytest.raises(ParseError) as exc:
        note_utils.parse_melody(5)
    assert exc.value.kind is ParseErrorKind.MALFORMED
    with pytest.raises(ParseError):
        note_utils.parse_melody(["C4", 7])


def test_duration_multipliers():
    base = 400
    expected = {"w": 1600, "h": 800, "q": 400, "e": 200, "s": 100}
    for suffix, ms in expected.items():
        assert note_utils.duration_ms(note_utils.parse_note(f"C4:{suffix}"), base) == ms


def test_duration_requires_positive_base():
    with pytest.raises(ValueError):
        note_utils.duration_ms(DurationClass.QUARTER, 0)


def test_parse_melody_stops_at_first_error(caplog):
    """The failing position is logged and the error re-raised."""

    assert [t.name for t in note_utils.parse_melody("C D4 E5:h")] == ["C4", "D4", "E5"]
    with caplog.at_level(logging.ERROR):
        with pytest.raises(ParseError):
            note_utils.parse_melody(["C4", "X4", "Q"])
    assert "position 2" in caplog.text


def test_midi_conversion():
    assert note_utils.note_to_midi("C4") == 60
    assert note_utils.note_to_midi("A") == 69
    assert note_utils.note_to_midi("C#4:e") == 61
    assert note_utils.midi_to_note(61) == "C#4"
    assert note_utils.midi_to_note(note_utils.note_to_midi("B7")) == "B7"
    with pytest.raises(ValueError):
        note_utils.midi_to_note(12)


def test_compare_pitch():
    assert note_utils.compare_pitch("C5", "D5") == 1
    assert note_utils.compare_pitch("C5", "B4") == -1
    assert note_utils.compare_pitch("C5", "C5:h") == 0
