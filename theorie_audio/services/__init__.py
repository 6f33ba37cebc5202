from __future__ import annotations

from .base import AudioService, NoteRequest
from .midi import MidiAudioService
from .samples import FileSampleAudioService
from .synthesized import SynthesizedAudioService

__all__ = [
    "AudioService",
    "FileSampleAudioService",
    "MidiAudioService",
    "NoteRequest",
    "SynthesizedAudioService",
]
