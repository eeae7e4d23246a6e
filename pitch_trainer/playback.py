"""Audio engines that turn note names into sound.

Every engine offers the same small surface used by the activities:

``play_note(note, duration_seconds, velocity=None)``
    Start one note (``"C4"``, ``"F#5"``) and release it after the duration.
``play_note_sequence(notes, tempo=None, note_duration=None, ...)``
    Play a list of notes one after another and return a handle with
    ``stop()``.
``stop_all()``
    Silence everything that is currently sounding.

Three engines are provided:

* :class:`FluidSynthAudioEngine` synthesises through PyFluidSynth and a
  SoundFont (``SOUND_FONT`` environment variable or a platform default).
* :class:`MidiPortAudioEngine` sends note messages to a MIDI output port via
  ``mido`` so an external synthesiser or DAW produces the sound.
* :class:`SilentAudioEngine` only logs and records the notes. It backs the
  ``--silent`` CLI flag, the web API and the tests.

Example usage
-------------
>>> from pitch_trainer.playback import create_audio_engine
>>> engine = create_audio_engine("silent")
>>> engine.play_note("C4", 0.5)
"""

# Revision note
# -------------
# ``_resolve_soundfont`` keeps the platform defaults for Windows, macOS and
# Linux so the synthesiser works without configuration when a General MIDI
# bank is installed in the usual place.
#
# Note-off messages are sent from ``threading.Timer`` callbacks. Each engine
# remembers its pending timers so ``stop_all`` can cancel them and release the
# sounding notes at once.

from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .events import EventBus, NoteStarted
from .note_utils import NoteToken, note_to_midi, parse_note
from .scheduler import DEFAULT_VELOCITY, PlaybackHandle, SequenceScheduler, ThreadingClock

__all__ = [
    "AudioEngineError",
    "AudioEngine",
    "SilentAudioEngine",
    "FluidSynthAudioEngine",
    "MidiPortAudioEngine",
    "SequencePlayback",
    "create_audio_engine",
]


logger = logging.getLogger(__name__)

DEFAULT_NOTE_SECONDS = 0.7


class AudioEngineError(RuntimeError):
    """Raised when an audio backend cannot be started or used."""


def _resolve_soundfont(sf: Optional[str]) -> str:
    """Return the path to the soundfont to use for synthesis.

    Parameters
    ----------
    sf:
        Optional path supplied directly by the caller. When ``None`` the
        ``SOUND_FONT`` environment variable is consulted followed by
        platform-specific defaults.

    Returns
    -------
    str
        Absolute path to an existing SoundFont or DLS file.

    Raises
    ------
    AudioEngineError
        If no valid file can be located.
    """

    if sf:
        candidate = sf
    else:
        candidate = os.environ.get("SOUND_FONT")
        if not candidate:
            if sys.platform.startswith("win"):
                candidate = r"C:\\Windows\\System32\\drivers\\gm.dls"
            elif sys.platform == "darwin":
                candidate = "/Library/Audio/Sounds/Banks/FluidR3_GM.sf2"
            else:
                candidate = "/usr/share/sounds/sf2/TimGM6mb.sf2"

    candidate = os.path.expanduser(os.path.expandvars(candidate))

    if not os.path.isfile(candidate):
        raise AudioEngineError(
            "SoundFont not found. Provide a valid path via --soundfont or the "
            "SOUND_FONT environment variable, or install a General MIDI soundfont."
        )

    return candidate


def _velocity(velocity: Optional[float]) -> int:
    """Map a ``0..1`` loudness to a MIDI velocity."""

    value = DEFAULT_VELOCITY if velocity is None else velocity
    return max(1, min(127, int(round(value * 127))))


class SequencePlayback:
    """Handle returned by :meth:`AudioEngine.play_note_sequence`."""

    def __init__(self, handle: PlaybackHandle) -> None:
        self._handle = handle

    def stop(self) -> None:
        self._handle.cancel()

    @property
    def done(self) -> bool:
        return self._handle.done

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._handle.wait(timeout)


class AudioEngine:
    """Shared behaviour of the concrete engines.

    Subclasses implement :meth:`_note_on` and :meth:`_note_off`; this class
    handles timing of note releases and sequence playback.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[int, Tuple[int, threading.Timer]] = {}
        self._next_id = 0

    def _note_on(self, midi_note: int, velocity: int) -> None:
        raise NotImplementedError

    def _note_off(self, midi_note: int) -> None:
        raise NotImplementedError

    def play_note(self, note: str, duration_seconds: float, velocity: Optional[float] = None) -> None:
        """Sound ``note`` for ``duration_seconds``.

        Raises
        ------
        ParseError
            If ``note`` is not valid notation.
        """

        midi_note = note_to_midi(note)
        self._note_on(midi_note, _velocity(velocity))
        with self._lock:
            self._next_id += 1
            key = self._next_id
            timer = threading.Timer(max(0.0, duration_seconds), self._release, args=(key,))
            timer.daemon = True
            self._pending[key] = (midi_note, timer)
        timer.start()

    def _release(self, key: int) -> None:
        with self._lock:
            entry = self._pending.pop(key, None)
        if entry is not None:
            self._note_off(entry[0])

    def play_note_sequence(
        self,
        notes: Sequence[str],
        tempo: Optional[float] = None,
        note_duration: Optional[float] = None,
        on_note_start: Optional[Callable[[int, str], None]] = None,
        on_sequence_end: Optional[Callable[[], None]] = None,
    ) -> SequencePlayback:
        """Play ``notes`` back to back.

        ``note_duration`` (seconds) wins over ``tempo`` (beats per minute);
        without either each note lasts :data:`DEFAULT_NOTE_SECONDS`.
        """

        if note_duration is not None:
            seconds = note_duration
        elif tempo:
            seconds = 60.0 / tempo
        else:
            seconds = DEFAULT_NOTE_SECONDS

        scheduler = SequenceScheduler(self, ThreadingClock())
        if on_note_start is not None:
            bus = EventBus()
            bus.subscribe(NoteStarted, lambda event: on_note_start(event.index, event.note.name))
            scheduler.events = bus
        handle = scheduler.play_pattern(list(notes), seconds * 1000.0, on_sequence_end)
        return SequencePlayback(handle)

    def stop_all(self) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for midi_note, timer in pending:
            timer.cancel()
            self._note_off(midi_note)

    def close(self) -> None:
        self.stop_all()


class SilentAudioEngine(AudioEngine):
    """Engine that produces no sound and keeps a log of what it was asked."""

    def __init__(self) -> None:
        super().__init__()
        self.played: List[Tuple[str, float]] = []
        self.stop_count = 0

    def play_note(self, note: str, duration_seconds: float, velocity: Optional[float] = None) -> None:
        token = parse_note(note) if not isinstance(note, NoteToken) else note
        logger.debug("play %s for %.3fs", token.name, duration_seconds)
        self.played.append((token.name, duration_seconds))

    def stop_all(self) -> None:
        self.stop_count += 1
        logger.debug("stop all notes")


class FluidSynthAudioEngine(AudioEngine):
    """Synthesise notes with PyFluidSynth.

    Parameters
    ----------
    soundfont:
        Optional path to the SoundFont ``.sf2`` file. When omitted the
        ``SOUND_FONT`` environment variable or a system default is used.
    program:
        General MIDI program number (``0`` is the acoustic grand piano).

    Raises
    ------
    AudioEngineError
        If PyFluidSynth or the FluidSynth library is unavailable, no SoundFont
        can be found or the audio driver fails to start.
    """

    CHANNEL = 0

    def __init__(self, soundfont: Optional[str] = None, program: int = 0) -> None:
        super().__init__()
        try:
            import fluidsynth  # type: ignore
        except FileNotFoundError as exc:  # type: ignore[attr-defined]
            raise AudioEngineError(
                "fluidsynth not installed. Install the FluidSynth library and "
                "pyFluidSynth package."
            ) from exc
        except Exception as exc:  # type: ignore
            raise AudioEngineError("PyFluidSynth is required for playback") from exc

        sf_path = _resolve_soundfont(soundfont)

        try:
            self._synth = fluidsynth.Synth()
        except FileNotFoundError as exc:
            raise AudioEngineError(
                "fluidsynth not installed. Install the FluidSynth library and "
                "pyFluidSynth package."
            ) from exc
        try:
            self._synth.start()
        except Exception as exc:
            self._synth.delete()
            raise AudioEngineError(f"Could not start audio driver: {exc}") from exc

        try:
            sfid = self._synth.sfload(sf_path)
            self._synth.program_select(self.CHANNEL, sfid, 0, program)
        except Exception as exc:
            self._synth.delete()
            raise AudioEngineError(f"Could not load SoundFont {sf_path}: {exc}") from exc
        logger.info("FluidSynth ready with %s", sf_path)

    def _note_on(self, midi_note: int, velocity: int) -> None:
        self._synth.noteon(self.CHANNEL, midi_note, velocity)

    def _note_off(self, midi_note: int) -> None:
        self._synth.noteoff(self.CHANNEL, midi_note)

    def close(self) -> None:
        super().close()
        self._synth.delete()


class MidiPortAudioEngine(AudioEngine):
    """Send notes to a MIDI output port opened with ``mido``.

    ``port_name`` of ``None`` opens the system default output.
    """

    def __init__(self, port_name: Optional[str] = None, channel: int = 0) -> None:
        super().__init__()
        import mido

        self._mido = mido
        self.channel = channel
        try:
            self._port = mido.open_output(port_name)
        except (OSError, IOError) as exc:
            raise AudioEngineError(f"Could not open MIDI output {port_name or '(default)'}: {exc}") from exc
        logger.info("Using MIDI output %s", self._port.name)

    def _note_on(self, midi_note: int, velocity: int) -> None:
        self._port.send(self._mido.Message("note_on", note=midi_note, velocity=velocity, channel=self.channel))

    def _note_off(self, midi_note: int) -> None:
        self._port.send(self._mido.Message("note_off", note=midi_note, velocity=0, channel=self.channel))

    def stop_all(self) -> None:
        super().stop_all()
        self._port.reset()

    def close(self) -> None:
        super().close()
        self._port.close()


def create_audio_engine(
    kind: str = "fluidsynth",
    *,
    soundfont: Optional[str] = None,
    midi_port: Optional[str] = None,
) -> AudioEngine:
    """Build the engine named by ``kind`` (``fluidsynth``, ``midi`` or ``silent``).

    Raises
    ------
    ValueError
        For an unknown engine name.
    AudioEngineError
        When the chosen backend cannot be started.
    """

    if kind == "silent":
        return SilentAudioEngine()
    if kind == "midi":
        return MidiPortAudioEngine(midi_port)
    if kind == "fluidsynth":
        return FluidSynthAudioEngine(soundfont)
    raise ValueError(f"Unknown audio engine: {kind}")
