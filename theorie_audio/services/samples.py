from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import numpy as np

from ..audio import SampleBuffer, read_wav_file
from ..config import DEFAULT_VOLUME
from ..errors import EncodingError, InitializationError, PlaybackError
from ..playback import AUTO, PlaybackBackend, Voice, resolve_playback
from ..scheduling import ScheduledTask, schedule_after
from ..synth import PCM16_LIMIT, clamp_pitch, clamp_velocity, velocity_to_amplitude
from .base import AudioService, NoteRequest

_Sample = tuple[SampleBuffer, int]


class FileSampleAudioService(AudioService[_Sample | None, Voice]):
    """Plays pre-recorded ``<pitch>.wav`` samples from a directory."""

    name = "files"

    def __init__(
        self,
        sample_dir: str | Path | None,
        *,
        playback: PlaybackBackend | None = None,
        playback_name: str = AUTO,
        volume: float = DEFAULT_VOLUME,
    ) -> None:
        super().__init__(volume=volume)
        self.sample_dir = Path(sample_dir) if sample_dir is not None else None
        self._playback = playback
        self._owns_playback = playback is None
        self._playback_name = playback_name
        self._cache: dict[int, _Sample | None] = {}
        self._harmony: list[Voice] = []
        self._harmony_timer: ScheduledTask | None = None

    def sample_path(self, pitch: int) -> Path | None:
        if self.sample_dir is None:
            return None
        return self.sample_dir / f"{clamp_pitch(pitch)}.wav"

    def _open(self) -> None:
        if self.sample_dir is None or not self.sample_dir.is_dir():
            raise InitializationError(f"Sample directory not found: {self.sample_dir}")
        if self._playback is None:
            self._playback = resolve_playback(self._playback_name)
        found = sorted(path.stem for path in self.sample_dir.glob("*.wav"))
        self._logger.info("Found %d samples in %s", len(found), self.sample_dir)

    def _close(self) -> None:
        self._cache.clear()
        if self._playback is None:
            return
        self._playback.close()
        if self._owns_playback:
            self._playback = None

    def _load(self, pitch: int) -> _Sample | None:
        if pitch in self._cache:
            return self._cache[pitch]
        path = self.sample_path(pitch)
        sample: _Sample | None = None
        if path is not None and path.is_file():
            sample = read_wav_file(path)
        else:
            self._logger.warning("No sample for pitch %s at %s", pitch, path)
        self._cache[pitch] = sample
        return sample

    def _scaled(self, sample: _Sample, amplitude: float) -> SampleBuffer:
        samples, _ = sample
        scaled = np.rint(samples.astype(np.float64) * amplitude)
        return np.clip(scaled, -PCM16_LIMIT, PCM16_LIMIT).astype(np.int16)

    def _start(self, sample: _Sample, amplitude: float) -> Voice:
        assert self._playback is not None
        return self._playback.start_voice(self._scaled(sample, amplitude), sample[1], self._volume)

    def _prepare_note(self, request: NoteRequest) -> _Sample | None:
        try:
            return self._load(request.pitch)
        except MemoryError as exc:
            raise EncodingError(f"Out of memory loading sample {request.pitch}") from exc

    def _start_note(self, request: NoteRequest, prepared: _Sample | None) -> Voice:
        if prepared is None:
            raise PlaybackError(f"No sample loaded for pitch {request.pitch}")
        return self._start(prepared, request.amplitude)

    def _release_note(self, pitch: int, handle: Voice) -> None:
        _ = pitch
        handle.stop()

    async def play_harmony(
        self,
        pitches: Sequence[int],
        duration: float = 2.0,
        velocity: int = 100,
    ) -> None:
        """Start every sample at once and stop them together after ``duration``."""
        if not self._initialized or not pitches:
            self._logger.warning("Cannot play harmony - not initialized or no notes")
            return
        amplitude = velocity_to_amplitude(clamp_velocity(velocity))
        loaded = [self._load(clamp_pitch(pitch)) for pitch in pitches]
        self._stop_harmony()
        voices: list[Voice] = []
        try:
            for sample in loaded:
                if sample is not None:
                    voices.append(self._start(sample, amplitude))
        except PlaybackError as exc:
            self._logger.warning("Playback failed for harmony %s: %s", list(pitches), exc, exc_info=True)
            # A partial chord is dropped whole.
            for voice in voices:
                voice.stop()
            return
        self._harmony = voices
        self._harmony_timer = schedule_after(
            max(duration, 0.0),
            lambda: self._stop_harmony_group(voices),
            name="files-harmony-stop",
        )

    def _stop_harmony_group(self, voices: list[Voice]) -> None:
        if self._harmony is voices:
            self._stop_harmony()

    def _stop_harmony(self) -> None:
        if self._harmony_timer is not None:
            self._harmony_timer.cancel()
            self._harmony_timer = None
        for voice in self._harmony:
            voice.stop()
        self._harmony = []

    def _apply_volume(self, volume: float) -> None:
        for voice in self._voices.values():
            voice.set_gain(volume)
        for voice in self._harmony:
            voice.set_gain(volume)
