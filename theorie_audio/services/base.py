from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator

from ..config import DEFAULT_NOTE_SECONDS, DEFAULT_VOLUME
from ..errors import EncodingError, PlaybackError
from ..logging_utils import log_exception
from ..scheduling import ScheduledTask, schedule_after, sleep_until
from ..synth import clamp_pitch, clamp_velocity, velocity_to_amplitude

PreparedT = TypeVar("PreparedT")
HandleT = TypeVar("HandleT")


class NoteRequest(BaseModel):
    """A clamped note-on request. ``duration`` is seconds; ``None`` rings until stopped."""

    pitch: int
    velocity: int = 100
    duration: float | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("pitch", mode="before")
    @classmethod
    def _clamp_pitch(cls, value: Any) -> Any:
        return clamp_pitch(value) if isinstance(value, (int, float)) else value

    @field_validator("velocity", mode="before")
    @classmethod
    def _clamp_velocity(cls, value: Any) -> Any:
        return clamp_velocity(value) if isinstance(value, (int, float)) else value

    @field_validator("duration", mode="before")
    @classmethod
    def _non_negative(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return max(float(value), 0.0)
        return value

    @property
    def amplitude(self) -> float:
        return velocity_to_amplitude(self.velocity)

    def effective_duration(self, default: float = DEFAULT_NOTE_SECONDS) -> float:
        return default if self.duration is None else self.duration


class AudioService(ABC, Generic[PreparedT, HandleT]):
    """Note/melody/harmony playback over one audio capability.

    Owns the set of sounding pitches and their pending auto-stop timers.
    Subclasses supply how a note is prepared, started and released.
    """

    name = "audio"

    def __init__(self, *, volume: float = DEFAULT_VOLUME) -> None:
        self._logger = logging.getLogger(f"theorie_audio.services.{self.name}")
        self._initialized = False
        self._volume = min(max(volume, 0.0), 1.0)
        self._voices: dict[int, HandleT] = {}
        self._timers: dict[int, ScheduledTask] = {}

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def active_notes(self) -> frozenset[int]:
        return frozenset(self._voices)

    async def initialize(self) -> bool:
        if self._initialized:
            return True
        self._logger.info("Initializing %s audio service", self.name)
        try:
            self._open()
        except Exception as exc:
            self._logger.warning("Failed to initialize %s audio: %s", self.name, exc, exc_info=True)
            log_exception(f"{self.name} audio initialize", exc)
            self._initialized = False
            return False
        self._initialized = True
        self._logger.info("%s audio service ready", self.name)
        return True

    async def dispose(self) -> None:
        if not self._initialized:
            return
        try:
            self._stop_everything()
            self._close()
        except Exception as exc:
            self._logger.warning("Error disposing %s audio: %s", self.name, exc, exc_info=True)
        finally:
            self._voices.clear()
            self._timers.clear()
            self._initialized = False
        self._logger.info("%s audio service disposed", self.name)

    # ------------------------------------------------------------------
    # notes
    # ------------------------------------------------------------------

    async def play_note(
        self,
        pitch: int,
        velocity: int = 100,
        duration: float | None = None,
    ) -> bool:
        """Start a note; retriggering a sounding pitch stops it first."""
        if not self._initialized:
            self._logger.warning("Cannot play note %s - %s audio not initialized", pitch, self.name)
            return False
        request = NoteRequest(pitch=pitch, velocity=velocity, duration=duration)
        return self._sound(request, self._render(request))

    async def stop_note(self, pitch: int) -> None:
        if not self._initialized:
            return
        self._stop_pitch(clamp_pitch(pitch))

    async def play_melody(
        self,
        pitches: Sequence[int],
        note_duration: float = 0.5,
        gap_duration: float = 0.05,
        velocity: int = 100,
    ) -> None:
        """Play pitches one after another, each start spaced by note + gap.

        The next note is rendered while the current one sounds, so the wait
        ends on the start deadline rather than before a render.
        """
        if not self._initialized or not pitches:
            self._logger.warning("Cannot play melody - not initialized or no notes")
            return
        self._logger.debug("Playing melody: %s", list(pitches))
        loop = asyncio.get_running_loop()
        step = max(note_duration, 0.0) + max(gap_duration, 0.0)
        requests = [
            NoteRequest(pitch=pitch, velocity=velocity, duration=note_duration) for pitch in pitches
        ]
        prepared = self._render(requests[0])
        for index, request in enumerate(requests):
            self._sound(request, prepared)
            started = loop.time()
            if index + 1 == len(requests):
                break
            prepared = self._render(requests[index + 1])
            await sleep_until(started + step)
            if not self._initialized:
                self._logger.debug("Melody cut short: %s audio disposed", self.name)
                return

    @abstractmethod
    async def play_harmony(
        self,
        pitches: Sequence[int],
        duration: float = 2.0,
        velocity: int = 100,
    ) -> None: ...

    async def stop_all(self) -> None:
        if not self._initialized:
            return
        self._stop_everything()
        self._logger.debug("All notes stopped")

    async def set_volume(self, level: float) -> None:
        self._volume = min(max(float(level), 0.0), 1.0)
        if self._initialized:
            try:
                self._apply_volume(self._volume)
            except PlaybackError as exc:
                self._logger.warning("Failed to apply volume: %s", exc, exc_info=True)
        self._logger.debug("Volume set to %.0f%%", self._volume * 100)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _render(self, request: NoteRequest) -> PreparedT:
        try:
            return self._prepare_note(request)
        except EncodingError as exc:
            self._logger.error("Failed to render note %s: %s", request.pitch, exc)
            log_exception(f"render note {request.pitch}", exc)
            raise

    def _sound(self, request: NoteRequest, prepared: PreparedT) -> bool:
        if request.pitch in self._voices:
            self._stop_pitch(request.pitch)
        try:
            handle = self._start_note(request, prepared)
        except PlaybackError as exc:
            self._logger.warning("Playback failed for note %s: %s", request.pitch, exc, exc_info=True)
            return False

        self._voices[request.pitch] = handle
        self._logger.debug(
            "Playing note %s (velocity %s, duration %s)",
            request.pitch,
            request.velocity,
            request.duration,
        )
        if request.duration is not None:
            self._schedule_stop(request.pitch, request.duration)
        return True

    def _schedule_stop(self, pitch: int, delay: float) -> None:
        task: ScheduledTask | None = None

        def _auto_stop() -> None:
            # A retriggered pitch owns a newer timer; leave it alone.
            if self._timers.get(pitch) is task:
                self._stop_pitch(pitch)

        task = schedule_after(delay, _auto_stop, name=f"{self.name}-stop-{pitch}")
        self._timers[pitch] = task

    def _stop_pitch(self, pitch: int) -> None:
        timer = self._timers.pop(pitch, None)
        if timer is not None:
            timer.cancel()
        handle = self._voices.pop(pitch, None)
        if handle is None:
            return
        try:
            self._release_note(pitch, handle)
        except PlaybackError as exc:
            self._logger.warning("Failed to stop note %s: %s", pitch, exc, exc_info=True)
        self._logger.debug("Stopped note %s", pitch)

    def _stop_everything(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for pitch in list(self._voices):
            self._stop_pitch(pitch)
        self._stop_harmony()

    @abstractmethod
    def _open(self) -> None: ...

    @abstractmethod
    def _close(self) -> None: ...

    @abstractmethod
    def _prepare_note(self, request: NoteRequest) -> PreparedT: ...

    @abstractmethod
    def _start_note(self, request: NoteRequest, prepared: PreparedT) -> HandleT: ...

    @abstractmethod
    def _release_note(self, pitch: int, handle: HandleT) -> None: ...

    def _stop_harmony(self) -> None:
        """Stop harmony voices tracked outside the active note set."""

    def _apply_volume(self, volume: float) -> None:
        _ = volume
