from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .audio import SampleBuffer, to_float32
from .errors import PlaybackError

_LOGGER = logging.getLogger("theorie_audio.playback")

AUTO = "auto"
NULL = "null"


def _clamp_gain(gain: float) -> float:
    return min(max(float(gain), 0.0), 1.0)


class Voice:
    """Handle to one sounding buffer on a playback device."""

    def __init__(self, sample_count: int, sample_rate: int, gain: float) -> None:
        self.sample_count = sample_count
        self.sample_rate = sample_rate
        self.gain = _clamp_gain(gain)
        self.started_at = time.monotonic()
        self.stopped = False

    @property
    def duration(self) -> float:
        return self.sample_count / self.sample_rate if self.sample_rate > 0 else 0.0

    @property
    def is_playing(self) -> bool:
        if self.stopped:
            return False
        return time.monotonic() - self.started_at < self.duration

    def stop(self) -> None:
        self.stopped = True

    def set_gain(self, gain: float) -> None:
        self.gain = _clamp_gain(gain)


class PlaybackBackend(BaseModel):
    name: str
    start_voice: Callable[[SampleBuffer, int, float], Voice]
    close: Callable[[], None]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


_LOADERS: dict[str, Callable[[], PlaybackBackend | None]] = {}


def _loader(name: str) -> Callable[[Callable[[], PlaybackBackend | None]], Callable[[], PlaybackBackend | None]]:
    def _register(fn: Callable[[], PlaybackBackend | None]) -> Callable[[], PlaybackBackend | None]:
        _LOADERS[name] = fn
        return fn

    return _register


def resolve_playback(name: str = AUTO) -> PlaybackBackend:
    """Load a playback backend by name; ``auto`` tries real devices in order."""
    key = name.strip().lower()
    if key == AUTO:
        backend = _load_sounddevice() or _load_simpleaudio()
        if backend is None:
            raise PlaybackError(
                "Playback requires sounddevice or simpleaudio. "
                "Install one of them, or select the 'null' playback backend."
            )
        return backend
    loader = _LOADERS.get(key)
    if loader is None:
        raise PlaybackError(f"Unknown playback backend: {name!r}. Valid: {[AUTO, *_LOADERS]}")
    backend = loader()
    if backend is None:
        raise PlaybackError(f"Playback backend {name!r} is not available on this host")
    return backend


def available_playback_backends() -> list[str]:
    names: list[str] = []
    for name, loader in _LOADERS.items():
        if name == NULL:
            continue
        backend = loader()
        if backend is not None:
            names.append(name)
            backend.close()
    return names


# -----------------------------------------------------------------------------
# null: silent voices that keep their lifecycle
# -----------------------------------------------------------------------------


class NullVoice(Voice):
    pass


def null_playback(voices: list[NullVoice] | None = None) -> PlaybackBackend:
    """Silent backend; started voices are appended to ``voices`` when given."""
    started = voices if voices is not None else []

    def _start_voice(samples: SampleBuffer, sample_rate: int, gain: float) -> Voice:
        voice = NullVoice(int(np.asarray(samples).size), sample_rate, gain)
        started.append(voice)
        return voice

    def _close() -> None:
        for voice in started:
            voice.stop()

    return PlaybackBackend(name=NULL, start_voice=_start_voice, close=_close)


@_loader(NULL)
def _load_null() -> PlaybackBackend | None:
    return null_playback()


# -----------------------------------------------------------------------------
# sounddevice: one output stream mixing every live voice
# -----------------------------------------------------------------------------


class _MixerVoice(Voice):
    def __init__(self, samples: NDArray[np.float32], sample_rate: int, gain: float) -> None:
        super().__init__(int(samples.size), sample_rate, gain)
        self._samples = samples
        self._position = 0

    @property
    def is_playing(self) -> bool:
        return not self.stopped and self._position < self.sample_count

    def read(self, frames: int) -> NDArray[np.float32]:
        chunk = self._samples[self._position : self._position + frames]
        self._position += int(chunk.size)
        return chunk * np.float32(self.gain)


class _SoundDeviceMixer:
    def __init__(self, sd: Any) -> None:
        self._sd = sd
        self._stream: Any = None
        self._sample_rate: int | None = None
        self._voices: list[_MixerVoice] = []
        # The stream callback runs on the audio thread.
        self._lock = threading.Lock()

    def _callback(self, outdata: NDArray[np.float32], frames: int, time_info: Any, status: Any) -> None:
        _ = time_info
        if status:
            _LOGGER.debug("sounddevice status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        with self._lock:
            for voice in self._voices:
                if voice.is_playing:
                    chunk = voice.read(frames)
                    mix[: chunk.size] += chunk
            self._voices = [voice for voice in self._voices if voice.is_playing]
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)

    def _ensure_stream(self, sample_rate: int) -> None:
        if self._stream is not None and self._sample_rate == sample_rate:
            return
        if self._stream is not None:
            with self._lock:
                busy = any(voice.is_playing for voice in self._voices)
            if busy:
                raise PlaybackError(
                    f"Mixer is running at {self._sample_rate} Hz; cannot play {sample_rate} Hz audio"
                )
            self.close()
        try:
            stream = self._sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                callback=self._callback,
            )
            stream.start()
        except Exception as exc:
            raise PlaybackError(f"Could not open sounddevice output: {exc}") from exc
        self._stream = stream
        self._sample_rate = sample_rate

    def start_voice(self, samples: SampleBuffer, sample_rate: int, gain: float) -> Voice:
        self._ensure_stream(sample_rate)
        voice = _MixerVoice(to_float32(samples), sample_rate, gain)
        with self._lock:
            self._voices.append(voice)
        return voice

    def close(self) -> None:
        with self._lock:
            for voice in self._voices:
                voice.stop()
            self._voices.clear()
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as exc:
            _LOGGER.warning("Failed to close sounddevice stream: %s", exc, exc_info=True)
        self._stream = None
        self._sample_rate = None


@_loader("sounddevice")
def _load_sounddevice() -> PlaybackBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    mixer = _SoundDeviceMixer(sd_module)
    return PlaybackBackend(name="sounddevice", start_voice=mixer.start_voice, close=mixer.close)


# -----------------------------------------------------------------------------
# simpleaudio: one play buffer per voice
# -----------------------------------------------------------------------------


class _SimpleAudioVoice(Voice):
    def __init__(self, play: Any, sample_count: int, sample_rate: int, gain: float) -> None:
        super().__init__(sample_count, sample_rate, gain)
        self._play = play

    @property
    def is_playing(self) -> bool:
        return not self.stopped and bool(self._play.is_playing())

    def stop(self) -> None:
        super().stop()
        self._play.stop()

    def set_gain(self, gain: float) -> None:
        # Gain is baked into the buffer when the voice starts.
        _LOGGER.debug("simpleaudio cannot change gain of a playing voice (requested %.2f)", gain)
        super().set_gain(gain)


@_loader("simpleaudio")
def _load_simpleaudio() -> PlaybackBackend | None:
    try:
        import simpleaudio as sa_module  # type: ignore[import]
    except ImportError as exc:
        _LOGGER.info("simpleaudio not available: %s", exc, exc_info=True)
        return None
    sa: Any = sa_module
    voices: list[_SimpleAudioVoice] = []

    def _start_voice(samples: SampleBuffer, sample_rate: int, gain: float) -> Voice:
        scaled = np.asarray(samples, dtype=np.float32) * _clamp_gain(gain)
        pcm = np.clip(np.rint(scaled), -32_767, 32_767).astype(np.int16)
        try:
            play = sa.play_buffer(pcm, 1, 2, sample_rate)
        except Exception as exc:
            raise PlaybackError(f"simpleaudio rejected buffer: {exc}") from exc
        voice = _SimpleAudioVoice(play, int(pcm.size), sample_rate, gain)
        voices[:] = [existing for existing in voices if existing.is_playing]
        voices.append(voice)
        return voice

    def _close() -> None:
        for voice in voices:
            voice.stop()
        voices.clear()

    return PlaybackBackend(name="simpleaudio", start_voice=_start_voice, close=_close)
