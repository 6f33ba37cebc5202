from __future__ import annotations

import base64
import binascii
import io
import struct
from collections.abc import Sequence
from pathlib import Path
from typing import Any, TypeAlias

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field

from .config import SAMPLE_RATE
from .errors import EncodingError

SampleBuffer: TypeAlias = NDArray[np.int16]
AudioNumbers: TypeAlias = NDArray[np.integer[Any]] | Sequence[int]

DATA_URI_PREFIX = "data:audio/wav;base64,"
WAV_HEADER_SIZE = 44
_CHANNELS = 1
_BITS_PER_SAMPLE = 16
_BLOCK_ALIGN = _CHANNELS * _BITS_PER_SAMPLE // 8
# RIFF header, "fmt " chunk (PCM), "data" chunk header; all little-endian.
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def as_sample_buffer(samples: AudioNumbers) -> SampleBuffer:
    """Coerce samples to a flat int16 array."""
    return np.asarray(samples, dtype=np.int16).reshape(-1)


def wav_header(data_size: int, sample_rate: int = SAMPLE_RATE) -> bytes:
    return _HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        _CHANNELS,
        sample_rate,
        sample_rate * _BLOCK_ALIGN,
        _BLOCK_ALIGN,
        _BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def encode_wav(samples: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Mono 16-bit PCM WAV bytes: 44-byte header followed by the samples."""
    try:
        data = as_sample_buffer(samples).astype("<i2", copy=False).tobytes()
        return wav_header(len(data), sample_rate) + data
    except MemoryError as exc:
        raise EncodingError("Out of memory while encoding WAV data") from exc


class AudioAsset(BaseModel):
    """Encoded WAV ready for a playback element, as a base64 data URI."""

    data_uri: str
    sample_rate: int = Field(gt=0)
    sample_count: int = Field(ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def duration(self) -> float:
        return self.sample_count / self.sample_rate

    def to_wav_bytes(self) -> bytes:
        return decode_data_uri(self.data_uri)

    def decode(self) -> SampleBuffer:
        samples, _ = read_wav_bytes(self.to_wav_bytes())
        return samples

    def save(self, path: str | Path) -> Path:
        target = Path(path)
        target.write_bytes(self.to_wav_bytes())
        return target


def encode_to_audio_asset(samples: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> AudioAsset:
    buffer = as_sample_buffer(samples)
    wav = encode_wav(buffer, sample_rate)
    try:
        payload = base64.b64encode(wav).decode("ascii")
    except MemoryError as exc:
        raise EncodingError("Out of memory while base64-encoding WAV data") from exc
    return AudioAsset(
        data_uri=DATA_URI_PREFIX + payload,
        sample_rate=sample_rate,
        sample_count=int(buffer.size),
    )


def decode_data_uri(uri: str) -> bytes:
    if not uri.startswith(DATA_URI_PREFIX):
        raise EncodingError(f"Not a WAV data URI: {uri[:32]!r}")
    try:
        return base64.b64decode(uri[len(DATA_URI_PREFIX) :], validate=True)
    except binascii.Error as exc:
        raise EncodingError("Malformed base64 payload in WAV data URI") from exc


def read_wav_bytes(data: bytes) -> tuple[SampleBuffer, int]:
    """Parse WAV bytes with soundfile, returning int16 samples and the rate."""
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="int16", always_2d=False)
    except RuntimeError as exc:
        raise EncodingError(f"Unreadable WAV data: {exc}") from exc
    mono: SampleBuffer = np.asarray(samples, dtype=np.int16)
    if mono.ndim > 1:
        mono = mono[:, 0]
    return mono, int(sample_rate)


def read_wav_file(path: str | Path) -> tuple[SampleBuffer, int]:
    return read_wav_bytes(Path(path).read_bytes())


def write_wav(
    path: str | Path,
    samples: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write samples to a 16-bit mono wav file."""
    target = Path(path)
    target.write_bytes(encode_wav(samples, sample_rate))
    return target


def to_float32(samples: SampleBuffer) -> NDArray[np.float32]:
    """Scale int16 samples into [-1, 1] for float playback devices."""
    return np.asarray(samples, dtype=np.float32) / 32_768.0
