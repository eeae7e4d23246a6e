"""Tests for the audio engines and SoundFont resolution."""

import importlib
import sys
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

playback = importlib.import_module("pitch_trainer.playback")


class RecordingEngine(playback.AudioEngine):
    def __init__(self):
        super().__init__()
        self.messages = []

    def _note_on(self, midi_note, velocity):
        self.messages.append(("on", midi_note, velocity))

    def _note_off(self, midi_note):
        self.messages.append(("off", midi_note))


def test_resolve_soundfont_from_env(tmp_path, monkeypatch):
    sf2 = tmp_path / "bank.sf2"
    sf2.write_bytes(b"")
    monkeypatch.setenv("SOUND_FONT", str(sf2))
    assert playback._resolve_soundfont(None) == str(sf2)
    assert playback._resolve_soundfont(str(sf2)) == str(sf2)


def test_resolve_soundfont_missing(tmp_path):
    with pytest.raises(playback.AudioEngineError):
        playback._resolve_soundfont(str(tmp_path / "missing.sf2"))


def test_missing_fluidsynth_is_reported(monkeypatch):
    monkeypatch.setitem(sys.modules, "fluidsynth", None)
    with pytest.raises(playback.AudioEngineError):
        playback.FluidSynthAudioEngine()


def test_create_audio_engine():
    assert isinstance(playback.create_audio_engine("silent"), playback.SilentAudioEngine)
    with pytest.raises(ValueError):
        playback.create_audio_engine("theremin")


def test_silent_engine_records_notes():
    engine = playback.SilentAudioEngine()
    engine.play_note("F#4", 0.5)
    engine.stop_all()
    assert engine.played == [("F#4", 0.5)]
    assert engine.stop_count == 1


def test_stop_all_releases_sounding_notes():
    engine = RecordingEngine()
    engine.play_note("A4", 30, 1.0)
    engine.play_note("C4", 30)
    engine.stop_all()
    assert engine.messages[:2] == [("on", 69, 127), ("on", 60, 95)]
    assert sorted(engine.messages[2:]) == [("off", 60), ("off", 69)]
    engine.stop_all()
    assert len(engine.messages) == 4


def test_note_is_released_after_duration():
    engine = RecordingEngine()
    engine.play_note("C4", 0.01)
    for _ in range(200):
        if ("off", 60) in engine.messages:
            break
        time.sleep(0.01)
    assert engine.messages == [("on", 60, 95), ("off", 60)]


def test_play_note_sequence_calls_back():
    engine = playback.SilentAudioEngine()
    started = []
    ended = []
    handle = engine.play_note_sequence(
        ["C4", "E4", "G4"],
        note_duration=0.01,
        on_note_start=lambda i, n: started.append((i, n)),
        on_sequence_end=lambda: ended.append(True),
    )
    assert handle.wait(timeout=5)
    assert engine.played == [("C4", 0.01), ("E4", 0.01), ("G4", 0.01)]
    assert started == [(0, "C4"), (1, "E4"), (2, "G4")]
    assert ended == [True]


def test_sequence_can_be_stopped():
    engine = playback.SilentAudioEngine()
    handle = engine.play_note_sequence(["C4", "E4", "G4"], tempo=6)
    handle.stop()
    assert handle.done
    assert engine.played == [("C4", 10.0)]
    assert engine.stop_count == 1


def test_midi_port_engine_sends_messages(monkeypatch):
    mido = pytest.importorskip("mido")

    class FakePort:
        name = "fake"

        def __init__(self):
            self.sent = []
            self.resets = 0
            self.closed = False

        def send(self, message):
            self.sent.append(message)

        def reset(self):
            self.resets += 1

        def close(self):
            self.closed = True

    port = FakePort()
    monkeypatch.setattr(mido, "open_output", lambda name=None: port)
    engine = playback.MidiPortAudioEngine()
    engine.play_note("C4", 30, 0.5)
    engine.close()
    assert [(m.type, m.note) for m in port.sent] == [("note_on", 60), ("note_off", 60)]
    assert port.sent[0].velocity == 64
    assert port.resets == 1
    assert port.closed
