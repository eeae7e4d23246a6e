"""Tests for mapping drawn lines onto notes and comparing contours."""

import importlib
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

drawing = importlib.import_module("pitch_trainer.drawing")
note_utils = importlib.import_module("pitch_trainer.note_utils")
patterns = importlib.import_module("pitch_trainer.patterns")


def test_top_and_bottom_of_canvas():
    melody = drawing.path_to_melody([(0, 0), (5, 200)], 200)
    assert [n.name for n in melody] == ["G4", "C3"]


def test_rising_line_gives_ascending_melody():
    points = [(x, 400 - x) for x in range(0, 400, 50)]
    melody = drawing.path_to_melody(points, 400)
    midi = [n.midi for n in melody]
    assert midi == sorted(midi)
    assert midi[0] < midi[-1]


def test_long_paths_are_sampled():
    points = [(i, 100 - i) for i in range(100)]
    melody = drawing.path_to_melody(points, 100)
    assert len(melody) == drawing.MAX_SAMPLES
    assert len(drawing.path_to_melody(points, 100, max_samples=3)) == 3


def test_custom_palette():
    palette = note_utils.parse_melody("C5 E5")
    melody = drawing.path_to_melody([(0, 90), (1, 10)], 100, palette=palette)
    assert [n.name for n in melody] == ["C5", "E5"]


def test_empty_path():
    assert drawing.path_to_melody([], 100) == []


@pytest.mark.parametrize("kwargs", [{"height": 0}, {"height": -5}, {"height": 10, "max_samples": 0}])
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        drawing.path_to_melody([(0, 0)], **kwargs)


def test_contour_steps():
    notes = note_utils.parse_melody("C4 E4 E4 D4")
    assert drawing.contour(notes).tolist() == [1, 0, -1]
    assert drawing.contour(notes[:1]).tolist() == []


def test_contour_agreement():
    up = note_utils.parse_melody("C4 D4 E4 F4 G4")
    down = list(reversed(up))
    assert drawing.contour_agreement(up, up) == 1.0
    assert drawing.contour_agreement(up, down) == 0.0
    assert drawing.contour_agreement(up[:1], up) == 0.0


def test_agreement_resamples_longer_melody():
    reference = note_utils.parse_melody("C4 D4 E4 F4 G4 A4")
    drawn = note_utils.parse_melody("C3 D3 E3 F3 G3 A3 B3 C4")
    assert drawing.contour_agreement(drawn, reference) == 1.0
