from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Callable, get_args

from .config import AudioConfig, BackendKind
from .services import (
    AudioService,
    FileSampleAudioService,
    MidiAudioService,
    SynthesizedAudioService,
)

_LOGGER = logging.getLogger("theorie_audio.controller")

ServiceFactory = Callable[[AudioConfig], AudioService]

_DISPLAY_NAMES: Mapping[BackendKind, str] = MappingProxyType(
    {
        "synth": "Piano Synthesizer",
        "midi": "MIDI Synthesizer",
        "files": "Audio Files",
    }
)
_DESCRIPTIONS: Mapping[BackendKind, str] = MappingProxyType(
    {
        "synth": "Renders piano tones on the fly; works anywhere audio output exists",
        "midi": "Uses MIDI devices for high-quality synthesis",
        "files": "Pre-recorded audio files for authentic instrument sounds",
    }
)


def create_audio_service(config: AudioConfig) -> AudioService:
    """Build the service variant named by ``config.backend``."""
    if config.backend == "synth":
        return SynthesizedAudioService(
            config.synth,
            playback_name=config.playback,
            volume=config.volume,
        )
    if config.backend == "midi":
        return MidiAudioService(port_name=config.midi_port, volume=config.volume)
    return FileSampleAudioService(
        config.sample_dir,
        playback_name=config.playback,
        volume=config.volume,
    )


class AudioController:
    """Owns the active audio service and guards calls made before it is ready."""

    def __init__(
        self,
        config: AudioConfig | None = None,
        *,
        factory: ServiceFactory = create_audio_service,
    ) -> None:
        self.config = config or AudioConfig()
        self._factory = factory
        self._service: AudioService | None = None
        self._initializing = False

    @property
    def service(self) -> AudioService | None:
        return self._service

    @property
    def backend(self) -> BackendKind:
        return self.config.backend

    @property
    def is_ready(self) -> bool:
        return self._service is not None and self._service.is_initialized

    @property
    def is_initializing(self) -> bool:
        return self._initializing

    @property
    def service_name(self) -> str:
        if self._service is None:
            return "No Audio Service"
        return type(self._service).__name__

    async def initialize(self, config: AudioConfig | None = None) -> bool:
        """Tear down any current service and start the configured one.

        Returns ``False`` when the platform cannot provide audio; callers
        carry on silently in that case.
        """
        if self._initializing:
            _LOGGER.info("Audio controller already initializing, skipping")
            return False
        self._initializing = True
        try:
            await self.dispose()
            if config is not None:
                self.config = config
            _LOGGER.info("Initializing audio controller with backend: %s", self.config.backend)
            service = self._factory(self.config)
            self._service = service
            ready = await service.initialize()
            if ready:
                _LOGGER.info("Audio controller ready with %s", self.service_name)
            else:
                _LOGGER.warning("Audio backend %s unavailable; continuing without sound", self.config.backend)
            return ready
        finally:
            self._initializing = False

    async def switch_backend(self, backend: BackendKind) -> bool:
        if backend == self.config.backend and self.is_ready:
            return True
        _LOGGER.info("Switching audio backend from %s to %s", self.config.backend, backend)
        return await self.initialize(self.config.model_copy(update={"backend": backend}))

    async def dispose(self) -> None:
        if self._service is None:
            return
        _LOGGER.info("Disposing audio service: %s", self.service_name)
        await self._service.dispose()
        self._service = None

    async def on_app_pause(self) -> None:
        _LOGGER.debug("App paused, stopping all audio")
        await self.stop_all()

    async def on_app_resume(self) -> None:
        _LOGGER.debug("App resumed")

    async def play_note(self, pitch: int, velocity: int = 100, duration: float | None = None) -> bool:
        if self._service is None or not self.is_ready:
            _LOGGER.info("Audio service not ready, cannot play note %s", pitch)
            return False
        return await self._service.play_note(pitch, velocity=velocity, duration=duration)

    async def stop_note(self, pitch: int) -> None:
        if self._service is not None:
            await self._service.stop_note(pitch)

    async def play_melody(
        self,
        pitches: Sequence[int],
        note_duration: float = 0.5,
        gap_duration: float = 0.05,
        velocity: int = 100,
    ) -> None:
        if self._service is None or not self.is_ready or not pitches:
            _LOGGER.info("Audio service not ready or no notes provided for melody")
            return
        await self._service.play_melody(
            pitches,
            note_duration=note_duration,
            gap_duration=gap_duration,
            velocity=velocity,
        )

    async def play_harmony(
        self,
        pitches: Sequence[int],
        duration: float = 2.0,
        velocity: int = 100,
    ) -> None:
        if self._service is None or not self.is_ready or not pitches:
            _LOGGER.info("Audio service not ready or no notes provided for harmony")
            return
        await self._service.play_harmony(pitches, duration=duration, velocity=velocity)

    async def stop_all(self) -> None:
        if self._service is not None:
            await self._service.stop_all()

    async def set_volume(self, level: float) -> None:
        if self._service is not None:
            await self._service.set_volume(level)

    @staticmethod
    def available_backends() -> list[BackendKind]:
        return list(get_args(BackendKind))

    @staticmethod
    def backend_display_name(backend: BackendKind) -> str:
        return _DISPLAY_NAMES[backend]

    @staticmethod
    def backend_description(backend: BackendKind) -> str:
        return _DESCRIPTIONS[backend]
