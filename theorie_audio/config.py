from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidConfigError
from .logging_utils import LOG_DIR_ENV, resolve_level

_LOGGER = logging.getLogger("theorie_audio.config")

BackendKind: TypeAlias = Literal["synth", "midi", "files"]
HarmonicSeries: TypeAlias = tuple[tuple[float, float], ...]

SAMPLE_RATE = 44_100
DEFAULT_VOLUME = 0.7
# Placeholder length for notes played without a duration; they ring until stopped.
DEFAULT_NOTE_SECONDS = 10.0

# (multiple of fundamental, relative weight); the 7th partial is weak on a piano.
PIANO_HARMONICS: HarmonicSeries = (
    (1.0, 1.0),
    (2.0, 0.7),
    (3.0, 0.5),
    (4.0, 0.4),
    (5.0, 0.3),
    (6.0, 0.2),
    (8.0, 0.15),
)
CHORD_HARMONICS: HarmonicSeries = PIANO_HARMONICS[:6]

BACKEND_ENV = "THEORIE_AUDIO_BACKEND"
PLAYBACK_ENV = "THEORIE_AUDIO_PLAYBACK"
VOLUME_ENV = "THEORIE_AUDIO_VOLUME"
MIDI_PORT_ENV = "THEORIE_AUDIO_MIDI_PORT"
SAMPLE_DIR_ENV = "THEORIE_AUDIO_SAMPLE_DIR"
LOG_LEVEL_ENV = "THEORIE_AUDIO_LOG_LEVEL"

_BACKEND_ALIASES: Mapping[str, BackendKind] = MappingProxyType(
    {
        "synth": "synth",
        "web": "synth",
        "midi": "midi",
        "files": "files",
        "samples": "files",
    }
)


class EnvelopeConfig(BaseModel):
    """Struck-string amplitude envelope (seconds and per-phase rate constants)."""

    attack: float = Field(default=0.003, gt=0.0)
    decay: float = Field(default=0.4, gt=0.0)
    sustain_level: float = Field(default=0.5, ge=0.0, le=1.0)
    decay_rate: float = 3.0
    natural_decay_rate: float = 0.3
    release: float = Field(default=2.0, gt=0.0)
    release_rate: float = 5.0

    model_config = ConfigDict(frozen=True, extra="forbid")


class SynthConfig(BaseModel):
    """Tuning for the additive piano synthesizer."""

    sample_rate: int = Field(default=SAMPLE_RATE, gt=0)
    note_harmonics: HarmonicSeries = PIANO_HARMONICS
    chord_harmonics: HarmonicSeries = CHORD_HARMONICS
    inharmonic_weight: float = 0.1
    inharmonicity: float = 0.0002
    output_scale: float = 6000.0
    chord_headroom: float = Field(default=2.5, gt=0.0)
    envelope: EnvelopeConfig = EnvelopeConfig()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("note_harmonics", "chord_harmonics")
    @classmethod
    def _non_empty(cls, value: HarmonicSeries) -> HarmonicSeries:
        if not value:
            raise ValueError("harmonic series must contain at least the fundamental")
        return value


class AudioConfig(BaseModel):
    """Startup selection of the audio backend and its collaborators."""

    backend: BackendKind = "synth"
    playback: str = "auto"
    volume: float = DEFAULT_VOLUME
    midi_port: str | None = None
    sample_dir: Path | None = None
    log_level: str | None = None
    log_dir: Path | None = None
    synth: SynthConfig = SynthConfig()

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("volume", mode="before")
    @classmethod
    def _clamp_volume(cls, value: object) -> object:
        if isinstance(value, (int, float)):
            return min(max(float(value), 0.0), 1.0)
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str | None) -> str | None:
        if value is None:
            return None
        resolve_level(value)
        return value.strip().upper()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AudioConfig":
        env = os.environ if environ is None else environ
        data: dict[str, object] = {}

        raw_backend = env.get(BACKEND_ENV)
        if raw_backend:
            data["backend"] = parse_backend(raw_backend)
        raw_playback = env.get(PLAYBACK_ENV)
        if raw_playback:
            data["playback"] = raw_playback.strip().lower()
        raw_volume = env.get(VOLUME_ENV)
        if raw_volume:
            try:
                data["volume"] = float(raw_volume)
            except ValueError as exc:
                raise InvalidConfigError(f"{VOLUME_ENV} must be a number, got {raw_volume!r}") from exc
        if env.get(MIDI_PORT_ENV):
            data["midi_port"] = env[MIDI_PORT_ENV]
        if env.get(SAMPLE_DIR_ENV):
            data["sample_dir"] = Path(env[SAMPLE_DIR_ENV]).expanduser()
        if env.get(LOG_LEVEL_ENV):
            data["log_level"] = env[LOG_LEVEL_ENV]
        if env.get(LOG_DIR_ENV):
            data["log_dir"] = Path(env[LOG_DIR_ENV]).expanduser()

        try:
            config = cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidConfigError(str(exc)) from exc
        _LOGGER.debug("Audio config from environment: %s", config.model_dump(exclude={"synth"}))
        return config


def parse_backend(value: str) -> BackendKind:
    try:
        return _BACKEND_ALIASES[value.strip().lower()]
    except KeyError as exc:
        raise InvalidConfigError(
            f"Unknown audio backend: {value!r}. Valid: {sorted(set(_BACKEND_ALIASES.values()))}"
        ) from exc
