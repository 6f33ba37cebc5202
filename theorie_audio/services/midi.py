from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..config import DEFAULT_VOLUME
from ..errors import InitializationError, PlaybackError
from .base import AudioService, NoteRequest

VIRTUAL_PORT_NAME = "Theorie Audio"
PIANO_PROGRAM = 0
CC_VOLUME = 7
CC_ALL_NOTES_OFF = 123
MIDI_CHANNELS = 16


def _load_mido() -> Any:
    try:
        import mido  # type: ignore[import]
    except ImportError as exc:
        raise InitializationError("MIDI output requires the 'mido' package") from exc
    return mido


class MidiAudioService(AudioService[int, int]):
    """Sends notes to a MIDI output port (hardware, OS synth or virtual)."""

    name = "midi"

    def __init__(
        self,
        *,
        port_name: str | None = None,
        port: Any | None = None,
        channel: int = 0,
        volume: float = DEFAULT_VOLUME,
    ) -> None:
        super().__init__(volume=volume)
        self._port_name = port_name
        self._port = port
        self._owns_port = port is None
        self.channel = channel

    @property
    def port_name(self) -> str | None:
        return getattr(self._port, "name", self._port_name)

    def available_ports(self) -> list[str]:
        try:
            return list(_load_mido().get_output_names())
        except Exception as exc:
            self._logger.warning("Error listing MIDI outputs: %s", exc, exc_info=True)
            return []

    def select_port(self, name: str) -> bool:
        if not self._initialized:
            return False
        mido = _load_mido()
        try:
            port = mido.open_output(name)
        except OSError as exc:
            self._logger.warning("Failed to connect to MIDI output %s: %s", name, exc, exc_info=True)
            return False
        self._stop_everything()
        self._close_port()
        self._port = port
        self._port_name = name
        self._owns_port = True
        self._send("program_change", program=PIANO_PROGRAM)
        self._logger.info("Connected to MIDI output: %s", name)
        return True

    def _open(self) -> None:
        if self._port is None:
            self._port = self._open_default_port()
        self._send("program_change", program=PIANO_PROGRAM)

    def _open_default_port(self) -> Any:
        mido = _load_mido()
        names = list(mido.get_output_names())
        self._logger.info("Found %d MIDI outputs: %s", len(names), names)
        if self._port_name is not None:
            return mido.open_output(self._port_name)
        if names:
            return mido.open_output(names[0])
        self._logger.info("No MIDI outputs found; creating virtual port %s", VIRTUAL_PORT_NAME)
        return mido.open_output(VIRTUAL_PORT_NAME, virtual=True)

    def _close(self) -> None:
        self._close_port()

    def _close_port(self) -> None:
        if self._port is None or not self._owns_port:
            return
        self._port.close()
        self._port = None

    def _send(self, kind: str, channel: int | None = None, **fields: int) -> None:
        if self._port is None:
            return
        mido = _load_mido()
        message = mido.Message(kind, channel=self.channel if channel is None else channel, **fields)
        try:
            self._port.send(message)
        except (OSError, ValueError) as exc:
            raise PlaybackError(f"MIDI send failed for {message}: {exc}") from exc

    def _prepare_note(self, request: NoteRequest) -> int:
        return min(max(round(self._volume * request.velocity), 1), 127)

    def _start_note(self, request: NoteRequest, prepared: int) -> int:
        self._send("note_on", note=request.pitch, velocity=prepared)
        return request.pitch

    def _release_note(self, pitch: int, handle: int) -> None:
        _ = handle
        self._send("note_off", note=pitch, velocity=0)

    async def play_harmony(
        self,
        pitches: Sequence[int],
        duration: float = 2.0,
        velocity: int = 100,
    ) -> None:
        if not self._initialized or not pitches:
            self._logger.warning("Cannot play harmony - not initialized or no notes")
            return
        self._logger.debug("Playing harmony: %s", list(pitches))
        for pitch in pitches:
            await self.play_note(pitch, velocity=velocity, duration=duration)

    def _stop_everything(self) -> None:
        super()._stop_everything()
        for channel in range(MIDI_CHANNELS):
            try:
                self._send("control_change", channel=channel, control=CC_ALL_NOTES_OFF, value=0)
            except PlaybackError as exc:
                self._logger.warning("All-notes-off failed on channel %d: %s", channel, exc)

    def _apply_volume(self, volume: float) -> None:
        self._send("control_change", control=CC_VOLUME, value=round(volume * 127))
