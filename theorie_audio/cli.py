from __future__ import annotations

import argparse
import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Iterable

from rich.console import Console

from .config import AudioConfig, SynthConfig
from .logging_utils import DEBUG_ENV, configure_logging, get_log_path, log_exception
from .playback import available_playback_backends
from .services import MidiAudioService, SynthesizedAudioService
from .spinner import Spinner, render_error
from .synth import PianoSynth, frequency_of

_LOGGER = logging.getLogger("theorie_audio.cli")
_CONSOLE = Console()


def _report(lines: Iterable[str]) -> None:
    for line in lines:
        _CONSOLE.print(line)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="theorie-audio")
    sub = parser.add_subparsers(dest="command", required=True)

    render = sub.add_parser("render", help="Render a note (one pitch) or chord to a wav file.")
    render.add_argument("pitches", nargs="+", type=int)
    render.add_argument("--duration", type=float, default=2.0)
    render.add_argument("--velocity", type=int, default=100)
    render.add_argument("--output", type=str, default="note.wav")

    play = sub.add_parser("play", help="Audition pitches through the synthesizer.")
    play.add_argument("pitches", nargs="+", type=int)
    play.add_argument("--duration", type=float, default=1.0)
    play.add_argument("--velocity", type=int, default=100)
    play.add_argument("--melody", action="store_true", help="Play pitches one after another.")
    play.add_argument("--gap", type=float, default=0.05)
    play.add_argument("--playback", type=str, default=None)

    sub.add_parser("doctor", help="Report playback devices, MIDI ports and log location.")
    return parser


def _render(
    pitches: Sequence[int],
    duration: float,
    velocity: int,
    output: str,
    synth_config: SynthConfig,
) -> str:
    synth = PianoSynth(synth_config)
    with Spinner("Rendering audio"):
        if len(pitches) == 1:
            asset = synth.note(pitches[0], velocity, duration)
        else:
            asset = synth.chord(pitches, velocity, duration)
    path = asset.save(output)
    hz = ", ".join(f"{frequency_of(pitch):.1f}" for pitch in pitches)
    return f"Wrote {asset.duration:.2f}s ({hz} Hz) to {path} (sr={asset.sample_rate})"


async def _play(args: argparse.Namespace, config: AudioConfig) -> int:
    playback = args.playback or config.playback
    service = SynthesizedAudioService(config.synth, playback_name=playback, volume=config.volume)
    if not await service.initialize():
        _CONSOLE.print(f"No audio output available (playback={playback}).")
        return 1
    try:
        if args.melody:
            await service.play_melody(
                args.pitches,
                note_duration=args.duration,
                gap_duration=args.gap,
                velocity=args.velocity,
            )
            await asyncio.sleep(args.duration)
        elif len(args.pitches) == 1:
            await service.play_note(args.pitches[0], velocity=args.velocity, duration=args.duration)
            await asyncio.sleep(args.duration)
        else:
            await service.play_harmony(args.pitches, duration=args.duration, velocity=args.velocity)
            await asyncio.sleep(args.duration)
    finally:
        await service.dispose()
    return 0


def _doctor(config: AudioConfig) -> list[str]:
    backends = available_playback_backends()
    ports = MidiAudioService().available_ports()
    return [
        f"Playback backends: {', '.join(backends) if backends else 'none'}",
        f"MIDI outputs: {', '.join(ports) if ports else 'none'}",
        f"Log file: {get_log_path(config.log_dir)}",
        "Hints:",
        "- Install sounddevice or simpleaudio for synthesized playback.",
        "- Install mido (with python-rtmidi) for the MIDI backend.",
        "- Set THEORIE_AUDIO_BACKEND / THEORIE_AUDIO_PLAYBACK to choose backends.",
        "- Set THEORIE_AUDIO_LOG_LEVEL=DEBUG for verbose console logs.",
    ]


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    log_dir: Path | None = None
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        config = AudioConfig.from_env()
        log_dir = config.log_dir
        configure_logging(level=config.log_level, log_dir=log_dir, force=True)

        if args.command == "render":
            summary = _render(args.pitches, args.duration, args.velocity, args.output, config.synth)
            _CONSOLE.print(summary)
            return 0

        if args.command == "play":
            return asyncio.run(_play(args, config))

        if args.command == "doctor":
            _report(_doctor(config))
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get(DEBUG_ENV))
        _LOGGER.warning("theorie-audio CLI failed: %s", exc, exc_info=debug)
        log_exception("theorie-audio CLI", exc, log_dir=log_dir)
        render_error("theorie-audio CLI", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
