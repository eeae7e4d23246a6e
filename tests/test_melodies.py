"""Tests for the known melody catalogue."""

import importlib
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

melodies = importlib.import_module("pitch_trainer.melodies")


@pytest.mark.parametrize("melody_id", sorted(melodies.KNOWN_MELODIES))
def test_every_melody_parses(melody_id):
    melody = melodies.get_melody(melody_id)
    tokens = melodies.safe_tokens(melody)
    assert tokens
    assert melody.name("de")
    assert melody.quarter_ms > 0


def test_names_fall_back_to_english():
    twinkle = melodies.get_melody("twinkle")
    assert twinkle.name() == "Twinkle, Twinkle, Little Star"
    assert twinkle.name("de") == "Funkel, funkel, kleiner Stern"
    assert twinkle.name("fr") == twinkle.name()


def test_unknown_melody():
    with pytest.raises(KeyError, match="Unknown melody"):
        melodies.get_melody("nope")


def test_timeline_uses_durations():
    tokens = melodies.get_melody("twinkle").tokens()
    timeline = melodies.melody_timeline(tokens, 500)
    assert timeline[0] == (tokens[0], 500)
    assert timeline[6][1] == 1000
    assert sum(ms for _, ms in timeline) == 16 * 500


def test_malformed_melody_is_skipped(caplog):
    broken = melodies.KnownMelody("broken", {"en": "Broken"}, ("C4", "Z4"))
    with caplog.at_level(logging.ERROR):
        assert melodies.safe_tokens(broken) is None
    assert "Skipping melody broken" in caplog.text
