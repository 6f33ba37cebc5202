from __future__ import annotations

import asyncio

import numpy as np
import pytest

from theorie_audio.audio import AudioAsset
from theorie_audio.errors import EncodingError, PlaybackError
from theorie_audio.playback import NullVoice, PlaybackBackend, null_playback
from theorie_audio.services import SynthesizedAudioService


def _service(voices: list[NullVoice], **kwargs: object) -> SynthesizedAudioService:
    return SynthesizedAudioService(
        playback=null_playback(voices),
        default_note_seconds=0.5,
        **kwargs,  # type: ignore[arg-type]
    )


async def _ready(voices: list[NullVoice], **kwargs: object) -> SynthesizedAudioService:
    service = _service(voices, **kwargs)
    assert await service.initialize()
    return service


@pytest.mark.asyncio
async def test_calls_before_initialize_are_noops() -> None:
    voices: list[NullVoice] = []
    service = _service(voices)
    assert not await service.play_note(60)
    await service.stop_note(60)
    await service.play_melody([60, 62])
    await service.play_harmony([60, 64])
    await service.stop_all()
    assert voices == []
    assert service.active_notes == frozenset()


@pytest.mark.asyncio
async def test_initialize_failure_returns_false() -> None:
    service = SynthesizedAudioService(playback_name="gramophone")
    assert await service.initialize() is False
    assert not service.is_initialized
    assert not await service.play_note(60)


@pytest.mark.asyncio
async def test_play_note_tracks_active_pitch() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    assert service.playback_name == "null"

    assert await service.play_note(60, velocity=90)
    assert service.active_notes == {60}
    assert len(voices) == 1
    assert voices[0].gain == pytest.approx(0.7)
    assert voices[0].sample_count == 22_050
    await service.dispose()


@pytest.mark.asyncio
async def test_note_auto_stops_after_duration(monkeypatch: pytest.MonkeyPatch) -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    assets: list[AudioAsset] = []
    render = service.synth.note

    def _capture(pitch: int, velocity: int, duration: float) -> AudioAsset:
        asset = render(pitch, velocity, duration)
        assets.append(asset)
        return asset

    monkeypatch.setattr(service.synth, "note", _capture)

    assert await service.play_note(69, velocity=100, duration=0.5)
    assert 69 in service.active_notes

    samples = assets[0].decode().astype(np.float64)
    freqs = np.fft.rfftfreq(samples.size, d=1.0 / assets[0].sample_rate)
    peak = float(freqs[int(np.argmax(np.abs(np.fft.rfft(samples))))])
    assert peak == pytest.approx(440.0, abs=2.0)
    assert assets[0].sample_count == 22_050

    await asyncio.sleep(0.6)
    assert 69 not in service.active_notes
    assert voices[0].stopped
    await service.dispose()


@pytest.mark.asyncio
async def test_stop_note_is_idempotent() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60)
    await service.stop_note(60)
    await service.stop_note(60)
    await service.stop_note(61)
    assert service.active_notes == frozenset()
    assert voices[0].stopped
    await service.dispose()


@pytest.mark.asyncio
async def test_retrigger_replaces_sounding_voice() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60)
    await service.play_note(60)
    assert service.active_notes == {60}
    assert len(voices) == 2
    assert voices[0].stopped
    assert not voices[1].stopped
    await service.dispose()


@pytest.mark.asyncio
async def test_stale_timer_does_not_stop_retriggered_note() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60, duration=0.05)
    await service.play_note(60)
    await asyncio.sleep(0.15)
    assert service.active_notes == {60}
    assert not voices[1].stopped
    await service.dispose()


@pytest.mark.asyncio
async def test_pitch_and_velocity_are_clamped() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    assert await service.play_note(200, velocity=0)
    assert service.active_notes == {127}
    await service.stop_note(300)
    assert service.active_notes == frozenset()
    await service.dispose()


@pytest.mark.asyncio
async def test_melody_spaces_note_starts() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_melody([60, 62, 64], note_duration=0.2, gap_duration=0.05)

    assert len(voices) == 3
    starts = [voice.started_at for voice in voices]
    for earlier, later in zip(starts, starts[1:]):
        assert 0.249 <= later - earlier < 0.26
    assert service.active_notes == {64}
    await asyncio.sleep(0.3)
    assert service.active_notes == frozenset()
    await service.dispose()


@pytest.mark.asyncio
async def test_long_melody_notes_start_on_schedule() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_melody([48, 50], note_duration=1.5, gap_duration=0.0)

    assert len(voices) == 2
    assert voices[0].sample_count == 66_150
    assert 1.5 <= voices[1].started_at - voices[0].started_at < 1.515
    await service.dispose()


@pytest.mark.asyncio
async def test_melody_stops_when_disposed_mid_way() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    melody = asyncio.create_task(
        service.play_melody([60, 62, 64], note_duration=0.1, gap_duration=0.0)
    )
    await asyncio.sleep(0.05)
    await service.dispose()
    await melody

    assert len(voices) == 1
    assert service.active_notes == frozenset()


@pytest.mark.asyncio
async def test_harmony_is_one_voice_outside_active_notes() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_harmony([60, 64, 67], duration=0.1)

    assert len(voices) == 1
    assert service.harmony_voice is voices[0]
    assert service.active_notes == frozenset()

    await asyncio.sleep(0.2)
    assert voices[0].stopped
    assert service.harmony_voice is None
    await service.dispose()


@pytest.mark.asyncio
async def test_new_harmony_replaces_previous() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_harmony([60, 64, 67], duration=5.0)
    await service.play_harmony([62, 65, 69], duration=5.0)
    assert voices[0].stopped
    assert service.harmony_voice is voices[1]
    await service.dispose()


@pytest.mark.asyncio
async def test_stop_all_silences_notes_and_harmony() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60, duration=5.0)
    await service.play_note(64)
    await service.play_harmony([48, 52, 55], duration=5.0)

    await service.stop_all()
    assert service.active_notes == frozenset()
    assert service.harmony_voice is None
    assert all(voice.stopped for voice in voices)
    await service.dispose()


@pytest.mark.asyncio
async def test_set_volume_clamps_and_updates_live_voices() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60)
    await service.play_harmony([60, 64], duration=5.0)

    await service.set_volume(0.3)
    assert service.volume == pytest.approx(0.3)
    assert all(voice.gain == pytest.approx(0.3) for voice in voices)

    await service.set_volume(2.0)
    assert service.volume == 1.0
    await service.play_note(62)
    assert voices[-1].gain == 1.0
    await service.dispose()


@pytest.mark.asyncio
async def test_render_failure_propagates_and_keeps_state(monkeypatch: pytest.MonkeyPatch) -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60)

    def _out_of_memory(pitch: int, velocity: int, duration: float) -> AudioAsset:
        raise MemoryError

    monkeypatch.setattr(service.synth, "note", _out_of_memory)
    with pytest.raises(EncodingError):
        await service.play_note(60)
    assert service.active_notes == {60}
    assert not voices[0].stopped
    await service.dispose()


@pytest.mark.asyncio
async def test_playback_failure_is_swallowed() -> None:
    def _refuse(samples: object, sample_rate: int, gain: float) -> NullVoice:
        raise PlaybackError("device unplugged")

    backend = PlaybackBackend(name="broken", start_voice=_refuse, close=lambda: None)
    service = SynthesizedAudioService(playback=backend, default_note_seconds=0.1)
    assert await service.initialize()

    assert await service.play_note(60) is False
    assert service.active_notes == frozenset()
    await service.play_melody([60, 62], note_duration=0.01, gap_duration=0.0)
    await service.play_harmony([60, 64], duration=0.01)
    assert service.harmony_voice is None
    await service.dispose()


@pytest.mark.asyncio
async def test_dispose_is_idempotent_and_allows_restart() -> None:
    voices: list[NullVoice] = []
    service = await _ready(voices)
    await service.play_note(60, duration=5.0)

    await service.dispose()
    await service.dispose()
    assert not service.is_initialized
    assert service.active_notes == frozenset()
    assert voices[0].stopped

    assert await service.initialize()
    assert await service.play_note(62)
    await service.dispose()
