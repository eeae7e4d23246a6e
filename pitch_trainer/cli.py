"""Command line interface for the pitch trainer.

Modification summary
--------------------
* ``--game`` runs the activities as an interactive terminal game. Answers are
  typed; ``r`` replays the current round and ``q`` quits.
* Audio engine start-up failures are logged and end the program with exit
  code ``1`` instead of a traceback. ``--silent`` runs without sound.
* Progress is kept in the JSON state file selected with ``--state-file`` or
  the ``PITCH_TRAINER_STATE_FILE`` environment variable.

Example
-------
Running ``python -m pitch_trainer --play "C4 D4 E4 F4 G4:h" --quarter-ms 500``
plays a short phrase through FluidSynth, ``python -m pitch_trainer --melody
twinkle --export twinkle.mid`` writes a known melody to a MIDI file and
``python -m pitch_trainer --game memory_game`` starts the memory game.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from typing import List, Optional

from .activities import ActivityStateMachine
from .difficulty import DifficultyController
from .events import ActivityMode
from .melodies import DEFAULT_QUARTER_MS, KNOWN_MELODIES, get_melody
from .midi_io import create_midi_file
from .note_utils import ParseError, parse_melody, parse_note, render_note
from .playback import AudioEngineError, create_audio_engine
from .scheduler import SequenceScheduler
from .storage import DEFAULT_STATE_FILE, JsonFileStore, ProgressRepository

__all__ = ["run_cli", "main", "build_parser"]

PROMPTS = {
    ActivityMode.HIGH_OR_LOW: "high or low? ",
    ActivityMode.MATCH_SOUNDS: "up, down, wave or jump? ",
    ActivityMode.DRAW_MELODY: "notes of your melody (e.g. C4 E4 G4)? ",
    ActivityMode.SOUND_JUDGMENT: "right or wrong? ",
    ActivityMode.MEMORY_GAME: "repeat the notes (e.g. C4 E4)? ",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pitch-trainer",
        description="Ear training games and note notation tools.",
    )
    parser.add_argument("--parse", metavar="TOKEN", help="Parse a note token and print its parts")
    parser.add_argument("--play", metavar="NOTES", help='Play notes given in notation, e.g. "C4 D4 G4:h"')
    parser.add_argument("--quarter-ms", type=float, help="Quarter note length in milliseconds for --play and --export")
    parser.add_argument("--melody", metavar="ID", help="Use a known melody (see --list-melodies)")
    parser.add_argument("--list-melodies", action="store_true", help="List the known melodies and exit")
    parser.add_argument("--export", metavar="PATH", help="Write the --play notes or --melody to a MIDI file")
    parser.add_argument(
        "--game",
        metavar="MODE",
        choices=[m.value for m in ActivityMode if m is not ActivityMode.IDLE],
        help="Start an interactive game: %(choices)s",
    )
    parser.add_argument("--progress", action="store_true", help="Show saved progress and exit")
    parser.add_argument("--reset-progress", action="store_true", help="Delete all saved progress")
    parser.add_argument("--state-file", default=str(DEFAULT_STATE_FILE), help="JSON file holding the progress")
    parser.add_argument("--soundfont", help="Path to a SoundFont (.sf2) file for FluidSynth playback")
    parser.add_argument("--midi-port", help="Send notes to this MIDI output port instead of FluidSynth")
    parser.add_argument("--silent", action="store_true", help="Do not produce sound; only log the notes")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible rounds")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _audio_engine(args: argparse.Namespace):
    if args.silent:
        kind = "silent"
    elif args.midi_port:
        kind = "midi"
    else:
        kind = "fluidsynth"
    try:
        return create_audio_engine(kind, soundfont=args.soundfont, midi_port=args.midi_port)
    except AudioEngineError as exc:
        logging.error("%s (use --silent to run without sound)", exc)
        sys.exit(1)


def _print_progress(summary: dict) -> None:
    for key, count in summary["counts"].items():
        print(f"{key}: {count}")
    print(f"overall: {summary['overall']:.1f}")
    print(f"high_or_low stage: {summary['high_or_low_stage']}")
    print(f"unlocked patterns: {', '.join(summary['unlocked_patterns'])}")
    print(f"memory melody length: {summary['memory_sequence_length']}")


def _announce_unlocks(judgment) -> None:
    for unlock in judgment.unlocks:
        print(unlock.message)


def play_game(machine: ActivityStateMachine, mode: ActivityMode) -> None:
    """Run rounds of ``mode`` until the player quits."""

    machine.switch_mode(mode)
    if mode is ActivityMode.DRAW_MELODY:
        machine.set_challenge(True)
    print("Type 'r' to hear the round again and 'q' to quit.")
    replay = True
    while True:
        if machine.current_round is None:
            machine.next_round()
            replay = True
        if replay:
            handle = machine.play()
            if handle is not None:
                handle.wait()
        try:
            reply = input(PROMPTS[mode]).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if reply.lower() in ("q", "quit"):
            break
        if reply.lower() in ("r", "replay", ""):
            replay = True
            continue

        try:
            judgment = _submit(machine, mode, reply)
        except ValueError as exc:
            print(exc)
            replay = False
            continue
        if judgment is None:
            replay = False
            continue
        print(judgment.feedback)
        _announce_unlocks(judgment)
        replay = True
    machine.shutdown()


def _submit(machine: ActivityStateMachine, mode: ActivityMode, reply: str):
    if mode is ActivityMode.DRAW_MELODY:
        return machine.answer(parse_melody(reply))
    if mode is not ActivityMode.MEMORY_GAME:
        return machine.answer(reply)
    judgment = None
    for token in reply.split():
        judgment = machine.answer(token)
        if judgment is None or judgment.complete:
            return judgment
    if judgment is not None:
        print(f"{len(judgment.given)} of {len(judgment.expected)} notes so far, keep going.")
    return None


def run_cli(argv: Optional[List[str]] = None) -> None:
    """Parse command line arguments and run the requested action."""

    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.list_melodies:
        for melody in KNOWN_MELODIES.values():
            print(f"{melody.melody_id}: {melody.name()} ({melody.quarter_ms} ms per quarter)")
        return

    if args.parse:
        try:
            token = parse_note(args.parse)
        except ParseError as exc:
            logging.error("%s", exc)
            sys.exit(1)
        print(f"pitch class: {token.pitch_class.value}")
        print(f"octave: {token.octave}")
        print(f"duration: {token.duration.name.lower()}")
        print(f"midi: {token.midi}")
        print(f"canonical: {render_note(token)}")
        return

    repository = ProgressRepository(JsonFileStore(args.state_file))

    if args.reset_progress:
        DifficultyController(repository).reset()
        logging.info("Progress in %s has been reset.", args.state_file)
        if not (args.progress or args.game):
            return

    if args.progress:
        _print_progress(DifficultyController(repository).summary())
        return

    if args.play or args.melody:
        if args.quarter_ms is not None and args.quarter_ms <= 0:
            logging.error("Quarter note length must be positive.")
            sys.exit(1)
        try:
            if args.melody:
                melody = get_melody(args.melody)
                tokens = melody.tokens()
                quarter_ms = args.quarter_ms or melody.quarter_ms
            else:
                tokens = parse_melody(args.play)
                quarter_ms = args.quarter_ms or DEFAULT_QUARTER_MS
        except KeyError as exc:
            logging.error("%s", exc.args[0])
            sys.exit(1)
        except ParseError as exc:
            logging.error("%s", exc)
            sys.exit(1)

        if args.export:
            try:
                create_midi_file(tokens, args.export, quarter_ms)
            except OSError as exc:
                logging.error("Could not write MIDI file: %s", exc)
                sys.exit(1)
            return

        audio = _audio_engine(args)
        scheduler = SequenceScheduler(audio)
        handle = scheduler.play_melody(tokens, quarter_ms)
        try:
            handle.wait()
        except KeyboardInterrupt:
            handle.cancel()
        finally:
            audio.close()
        return

    if args.export:
        logging.error("--export needs --play or --melody.")
        sys.exit(1)

    if args.game:
        audio = _audio_engine(args)
        rng = random.Random(args.seed) if args.seed is not None else None
        machine = ActivityStateMachine(
            audio, DifficultyController(repository), rng=rng, auto_advance=False
        )
        try:
            play_game(machine, ActivityMode(args.game))
        finally:
            audio.close()
        return

    build_parser().print_help()


def main() -> None:
    """Entry point for ``pitch-trainer`` and ``python -m pitch_trainer``."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    run_cli()


if __name__ == "__main__":
    main()
