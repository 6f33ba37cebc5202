"""
Architecture:

1. Primitives: pitch math, struck-string envelope
2. Voices: single-note and chord additive synthesis into int16 sample buffers
3. PianoSynth: config-bound helper that clamps requests and emits AudioAssets
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray

from .audio import AudioAsset, SampleBuffer, encode_to_audio_asset
from .config import EnvelopeConfig, HarmonicSeries, SynthConfig

FloatArray: TypeAlias = NDArray[np.float64]

PCM16_LIMIT = 32_767
MIN_PITCH = 0
MAX_PITCH = 127
MIN_VELOCITY = 1
MAX_VELOCITY = 127

_DEFAULT_SYNTH = SynthConfig()
_DEFAULT_ENVELOPE = EnvelopeConfig()


# =============================================================================
# PART 1: PITCH AND ENVELOPE PRIMITIVES
# =============================================================================


def clamp_pitch(pitch: int) -> int:
    return min(max(int(pitch), MIN_PITCH), MAX_PITCH)


def clamp_velocity(velocity: int) -> int:
    return min(max(int(velocity), MIN_VELOCITY), MAX_VELOCITY)


def velocity_to_amplitude(velocity: int) -> float:
    """Map a velocity onto the 0..1 amplitude used by the synthesizer."""
    return min(max(velocity / MAX_VELOCITY, 0.0), 1.0)


def frequency_of(pitch: int) -> float:
    """Equal-tempered frequency, pitch 69 = 440 Hz."""
    return 440.0 * 2.0 ** ((pitch - 69) / 12.0)


def envelope_curve(
    times: FloatArray | Sequence[float],
    total_duration: float,
    envelope: EnvelopeConfig = _DEFAULT_ENVELOPE,
) -> FloatArray:
    """Vectorised struck-string envelope.

    Phases are picked from absolute elapsed time in attack, decay, sustain,
    release order. When ``total_duration`` is shorter than
    attack + decay + release the release start lies inside (or before) the
    decay phase and the curve drops abruptly at the end of decay; this is
    reproduced as-is rather than rescaling the phases.
    """
    t = np.asarray(times, dtype=np.float64)
    attack = envelope.attack
    decay_end = attack + envelope.decay
    sustain = envelope.sustain_level
    release_start = total_duration - envelope.release

    def _held(at: FloatArray | float) -> Any:
        return sustain * np.exp(-envelope.natural_decay_rate * (np.asarray(at) - decay_end))

    attack_phase = t / attack
    decay_phase = sustain + (1.0 - sustain) * np.exp(
        -envelope.decay_rate * (t - attack) / envelope.decay
    )
    sustain_phase = _held(t)
    release_phase = _held(release_start) * np.exp(
        -envelope.release_rate * np.maximum(t - release_start, 0.0) / envelope.release
    )

    curve = np.select(
        [t < attack, t < decay_end, t < release_start],
        [attack_phase, decay_phase, sustain_phase],
        default=release_phase,
    )
    return np.clip(curve, 0.0, 1.0)


def envelope_amplitude(
    t: float,
    total_duration: float,
    envelope: EnvelopeConfig = _DEFAULT_ENVELOPE,
) -> float:
    """Envelope value at a single point in time (seconds)."""
    return float(envelope_curve(np.array([t]), total_duration, envelope)[0])


# =============================================================================
# PART 2: ADDITIVE VOICES
# =============================================================================


def _sample_times(duration: float, sr: int) -> FloatArray:
    count = int(round(sr * duration)) if duration > 0 else 0
    return np.arange(count, dtype=np.float64) / sr


def _harmonic_sum(frequency: float, series: HarmonicSeries, t: FloatArray) -> FloatArray:
    wave = np.zeros_like(t)
    for multiple, weight in series:
        wave += weight * np.sin(2.0 * np.pi * frequency * multiple * t)
    return wave


def _to_pcm16(wave: FloatArray) -> SampleBuffer:
    pcm = np.clip(np.rint(wave), -PCM16_LIMIT, PCM16_LIMIT).astype(np.int16)
    pcm.setflags(write=False)
    return pcm


def synthesize_note(
    frequency: float,
    duration: float,
    amplitude: float,
    config: SynthConfig = _DEFAULT_SYNTH,
) -> SampleBuffer:
    """Render one piano-like note: harmonics, one stretched partial, envelope."""
    t = _sample_times(duration, config.sample_rate)
    wave = _harmonic_sum(frequency, config.note_harmonics, t)

    # String stiffness pushes the partial slightly sharp of the fundamental.
    stretched = frequency * (1.0 + config.inharmonicity * frequency / 1000.0)
    wave += config.inharmonic_weight * np.sin(2.0 * np.pi * stretched * t)

    env = envelope_curve(t, duration, config.envelope)
    return _to_pcm16(wave * env * amplitude * config.output_scale)


def synthesize_chord(
    frequencies: Sequence[float],
    duration: float,
    amplitude: float,
    config: SynthConfig = _DEFAULT_SYNTH,
) -> SampleBuffer:
    """Render several notes into one buffer with per-note headroom."""
    t = _sample_times(duration, config.sample_rate)
    wave = np.zeros_like(t)
    if frequencies:
        per_note = amplitude / (math.sqrt(len(frequencies)) * config.chord_headroom)
        for frequency in frequencies:
            wave += per_note * _harmonic_sum(frequency, config.chord_harmonics, t)

    env = envelope_curve(t, duration, config.envelope)
    return _to_pcm16(wave * env * config.output_scale)


# =============================================================================
# PART 3: CONFIG-BOUND SYNTHESIZER
# =============================================================================


class PianoSynth:
    """Renders clamped note/chord requests into playable AudioAssets."""

    def __init__(self, config: SynthConfig | None = None) -> None:
        self.config = config or SynthConfig()

    @property
    def sample_rate(self) -> int:
        return self.config.sample_rate

    def note(self, pitch: int, velocity: int, duration: float) -> AudioAsset:
        frequency = frequency_of(clamp_pitch(pitch))
        amplitude = velocity_to_amplitude(clamp_velocity(velocity))
        samples = synthesize_note(frequency, duration, amplitude, self.config)
        return encode_to_audio_asset(samples, self.sample_rate)

    def chord(self, pitches: Sequence[int], velocity: int, duration: float) -> AudioAsset:
        frequencies = [frequency_of(clamp_pitch(pitch)) for pitch in pitches]
        amplitude = velocity_to_amplitude(clamp_velocity(velocity))
        samples = synthesize_chord(frequencies, duration, amplitude, self.config)
        return encode_to_audio_asset(samples, self.sample_rate)
