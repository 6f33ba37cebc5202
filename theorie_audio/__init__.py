from __future__ import annotations

from .audio import (
    DATA_URI_PREFIX,
    AudioAsset,
    SampleBuffer,
    decode_data_uri,
    encode_to_audio_asset,
    encode_wav,
    read_wav_bytes,
    write_wav,
)
from .config import (
    CHORD_HARMONICS,
    PIANO_HARMONICS,
    SAMPLE_RATE,
    AudioConfig,
    BackendKind,
    EnvelopeConfig,
    SynthConfig,
)
from .controller import AudioController, create_audio_service
from .errors import (
    EncodingError,
    InitializationError,
    InvalidConfigError,
    PlaybackError,
    TheorieAudioError,
)
from .logging_utils import configure_logging as _configure_logging
from .playback import PlaybackBackend, Voice, null_playback, resolve_playback
from .scheduling import ScheduledTask, schedule_after
from .services import (
    AudioService,
    FileSampleAudioService,
    MidiAudioService,
    NoteRequest,
    SynthesizedAudioService,
)
from .synth import (
    PianoSynth,
    envelope_amplitude,
    envelope_curve,
    frequency_of,
    synthesize_chord,
    synthesize_note,
)

__all__ = [
    "CHORD_HARMONICS",
    "DATA_URI_PREFIX",
    "PIANO_HARMONICS",
    "SAMPLE_RATE",
    "AudioAsset",
    "AudioConfig",
    "AudioController",
    "AudioService",
    "BackendKind",
    "EncodingError",
    "EnvelopeConfig",
    "FileSampleAudioService",
    "InitializationError",
    "InvalidConfigError",
    "MidiAudioService",
    "NoteRequest",
    "PianoSynth",
    "PlaybackBackend",
    "PlaybackError",
    "SampleBuffer",
    "ScheduledTask",
    "SynthConfig",
    "SynthesizedAudioService",
    "TheorieAudioError",
    "Voice",
    "create_audio_service",
    "decode_data_uri",
    "encode_to_audio_asset",
    "encode_wav",
    "envelope_amplitude",
    "envelope_curve",
    "frequency_of",
    "null_playback",
    "read_wav_bytes",
    "resolve_playback",
    "schedule_after",
    "synthesize_chord",
    "synthesize_note",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
