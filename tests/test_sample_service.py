from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import pytest

from theorie_audio.audio import SampleBuffer, write_wav
from theorie_audio.errors import PlaybackError
from theorie_audio.playback import NullVoice, PlaybackBackend, Voice, null_playback
from theorie_audio.services import FileSampleAudioService


@pytest.fixture
def sample_dir(tmp_path: Path) -> Path:
    root = tmp_path / "samples"
    root.mkdir()
    for pitch in (60, 64, 67):
        write_wav(root / f"{pitch}.wav", np.full(2_205, 12_700, dtype=np.int16), sample_rate=22_050)
    return root


@pytest.mark.asyncio
async def test_missing_directory_fails_initialize(tmp_path: Path) -> None:
    service = FileSampleAudioService(tmp_path / "nowhere", playback=null_playback())
    assert await service.initialize() is False
    assert await FileSampleAudioService(None, playback=null_playback()).initialize() is False


@pytest.mark.asyncio
async def test_play_note_uses_pitch_sample(sample_dir: Path) -> None:
    voices: list[NullVoice] = []
    service = FileSampleAudioService(sample_dir, playback=null_playback(voices), volume=0.5)
    assert await service.initialize()
    assert service.sample_path(60) == sample_dir / "60.wav"

    assert await service.play_note(60, duration=0.05)
    assert service.active_notes == {60}
    assert voices[0].sample_count == 2_205
    assert voices[0].sample_rate == 22_050
    assert voices[0].gain == 0.5

    await asyncio.sleep(0.15)
    assert service.active_notes == frozenset()
    await service.dispose()


@pytest.mark.asyncio
async def test_velocity_scales_sample(sample_dir: Path) -> None:
    captured: list[SampleBuffer] = []

    def _capture(samples: SampleBuffer, sample_rate: int, gain: float) -> Voice:
        captured.append(samples)
        return NullVoice(int(samples.size), sample_rate, gain)

    backend = PlaybackBackend(name="capture", start_voice=_capture, close=lambda: None)
    service = FileSampleAudioService(sample_dir, playback=backend)
    assert await service.initialize()
    await service.play_note(60, velocity=127)
    await service.play_note(64, velocity=10)
    assert int(captured[0].max()) == 12_700
    assert int(captured[1].max()) == 1_000
    await service.dispose()


@pytest.mark.asyncio
async def test_missing_sample_is_not_recorded(sample_dir: Path) -> None:
    voices: list[NullVoice] = []
    service = FileSampleAudioService(sample_dir, playback=null_playback(voices))
    assert await service.initialize()
    assert await service.play_note(61) is False
    assert service.active_notes == frozenset()
    assert voices == []
    await service.dispose()


@pytest.mark.asyncio
async def test_harmony_starts_available_samples_together(sample_dir: Path) -> None:
    voices: list[NullVoice] = []
    service = FileSampleAudioService(sample_dir, playback=null_playback(voices))
    assert await service.initialize()
    await service.play_harmony([60, 61, 64, 67], duration=0.05)
    assert len(voices) == 3
    assert service.active_notes == frozenset()

    await asyncio.sleep(0.15)
    assert all(voice.stopped for voice in voices)
    await service.dispose()


@pytest.mark.asyncio
async def test_stop_all_and_volume(sample_dir: Path) -> None:
    voices: list[NullVoice] = []
    service = FileSampleAudioService(sample_dir, playback=null_playback(voices))
    assert await service.initialize()
    await service.play_note(60)
    await service.play_harmony([64, 67], duration=5.0)

    await service.set_volume(0.25)
    assert all(voice.gain == 0.25 for voice in voices)

    await service.stop_all()
    assert service.active_notes == frozenset()
    assert all(voice.stopped for voice in voices)
    await service.dispose()


@pytest.mark.asyncio
async def test_failed_harmony_stops_voices_already_started(sample_dir: Path) -> None:
    voices: list[NullVoice] = []

    def _fail_second(samples: SampleBuffer, sample_rate: int, gain: float) -> Voice:
        if len(voices) == 1:
            raise PlaybackError("device busy")
        voice = NullVoice(int(samples.size), sample_rate, gain)
        voices.append(voice)
        return voice

    backend = PlaybackBackend(name="flaky", start_voice=_fail_second, close=lambda: None)
    service = FileSampleAudioService(sample_dir, playback=backend)
    assert await service.initialize()

    await service.play_harmony([60, 64, 67], duration=5.0)
    assert len(voices) == 1
    assert voices[0].stopped

    await service.stop_all()
    await service.dispose()
    assert all(voice.stopped for voice in voices)
