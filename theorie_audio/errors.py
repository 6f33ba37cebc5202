from __future__ import annotations


class TheorieAudioError(Exception):
    """Base error for the theorie_audio library."""


class InvalidConfigError(TheorieAudioError):
    """Raised when a config cannot be parsed or validated."""


class InitializationError(TheorieAudioError):
    """Raised when the host platform cannot provide audio output."""


class EncodingError(TheorieAudioError):
    """Raised when a sample buffer cannot be synthesized or encoded."""


class PlaybackError(TheorieAudioError):
    """Raised when a playback device rejects or cannot start audio."""
