from __future__ import annotations

from collections.abc import Sequence

from ..audio import AudioAsset
from ..config import DEFAULT_NOTE_SECONDS, DEFAULT_VOLUME, SynthConfig
from ..errors import EncodingError, PlaybackError
from ..logging_utils import log_exception
from ..playback import AUTO, PlaybackBackend, Voice, resolve_playback
from ..scheduling import ScheduledTask, schedule_after
from ..synth import PianoSynth, clamp_pitch, frequency_of
from .base import AudioService, NoteRequest


class SynthesizedAudioService(AudioService[AudioAsset, Voice]):
    """Plays procedurally synthesized piano notes and chords.

    Every note-on renders a fresh WAV asset; chords are mixed into a single
    asset so overlapping harmonics share one headroom budget.
    """

    name = "synth"

    def __init__(
        self,
        config: SynthConfig | None = None,
        *,
        playback: PlaybackBackend | None = None,
        playback_name: str = AUTO,
        volume: float = DEFAULT_VOLUME,
        default_note_seconds: float = DEFAULT_NOTE_SECONDS,
    ) -> None:
        super().__init__(volume=volume)
        self.synth = PianoSynth(config)
        self._playback = playback
        self._owns_playback = playback is None
        self._playback_name = playback_name
        self._default_note_seconds = default_note_seconds
        self._harmony: Voice | None = None
        self._harmony_timer: ScheduledTask | None = None

    @property
    def playback_name(self) -> str | None:
        return self._playback.name if self._playback is not None else None

    def _open(self) -> None:
        if self._playback is None:
            self._playback = resolve_playback(self._playback_name)
        self._logger.info("Using %s playback", self._playback.name)

    def _close(self) -> None:
        if self._playback is None:
            return
        self._playback.close()
        if self._owns_playback:
            # Resolved in _open, so a later initialize() resolves afresh.
            self._playback = None

    def _prepare_note(self, request: NoteRequest) -> AudioAsset:
        try:
            return self.synth.note(
                request.pitch,
                request.velocity,
                request.effective_duration(self._default_note_seconds),
            )
        except MemoryError as exc:
            raise EncodingError(f"Out of memory rendering note {request.pitch}") from exc

    def _start_voice(self, asset: AudioAsset) -> Voice:
        assert self._playback is not None
        try:
            samples = asset.decode()
        except EncodingError as exc:
            raise PlaybackError(f"Playback could not decode asset: {exc}") from exc
        return self._playback.start_voice(samples, asset.sample_rate, self._volume)

    def _start_note(self, request: NoteRequest, prepared: AudioAsset) -> Voice:
        voice = self._start_voice(prepared)
        self._logger.debug(
            "Note %s at %.1f Hz, %.2fs asset",
            request.pitch,
            frequency_of(request.pitch),
            prepared.duration,
        )
        return voice

    def _release_note(self, pitch: int, handle: Voice) -> None:
        _ = pitch
        handle.stop()

    async def play_harmony(
        self,
        pitches: Sequence[int],
        duration: float = 2.0,
        velocity: int = 100,
    ) -> None:
        """Play all pitches as one mixed chord, stopped after ``duration``."""
        if not self._initialized or not pitches:
            self._logger.warning("Cannot play harmony - not initialized or no notes")
            return

        clamped = [clamp_pitch(pitch) for pitch in pitches]
        try:
            asset = self._render_chord(clamped, velocity, max(duration, 0.0))
        except EncodingError as exc:
            self._logger.error("Failed to render chord %s: %s", clamped, exc)
            log_exception(f"render chord {clamped}", exc)
            raise

        self._stop_harmony()
        try:
            voice = self._start_voice(asset)
        except PlaybackError as exc:
            self._logger.warning("Playback failed for chord %s: %s", clamped, exc, exc_info=True)
            return

        self._harmony = voice
        self._harmony_timer = schedule_after(
            max(duration, 0.0),
            lambda: self._stop_harmony_voice(voice),
            name="synth-harmony-stop",
        )
        self._logger.debug(
            "Playing %d-note chord: %s Hz",
            len(clamped),
            ", ".join(f"{frequency_of(pitch):.1f}" for pitch in clamped),
        )

    def _render_chord(self, pitches: list[int], velocity: int, duration: float) -> AudioAsset:
        try:
            return self.synth.chord(pitches, velocity, duration)
        except MemoryError as exc:
            raise EncodingError(f"Out of memory rendering chord {pitches}") from exc

    def _stop_harmony_voice(self, voice: Voice) -> None:
        if self._harmony is voice:
            self._stop_harmony()

    def _stop_harmony(self) -> None:
        if self._harmony_timer is not None:
            self._harmony_timer.cancel()
            self._harmony_timer = None
        if self._harmony is not None:
            self._harmony.stop()
            self._harmony = None

    @property
    def harmony_voice(self) -> Voice | None:
        return self._harmony

    def _apply_volume(self, volume: float) -> None:
        for voice in self._voices.values():
            voice.set_gain(volume)
        if self._harmony is not None:
            self._harmony.set_gain(volume)
