"""Error kinds raised by the voxtray core."""

from __future__ import annotations


class VoxTrayError(RuntimeError):
    """Base class for every failure surfaced by voxtray."""

    recoverable = True


class AlreadyRecording(VoxTrayError):
    """A cycle is already recording or processing."""

    def __init__(self, message: str = "A recording or processing cycle is already active.") -> None:
        super().__init__(message)


class NotRecording(VoxTrayError):
    """Stop was requested while nothing was recording."""

    def __init__(self, message: str = "No recording in progress.") -> None:
        super().__init__(message)


class AudioCaptureError(VoxTrayError):
    """The audio input stream could not be opened or produced no audio."""


class ProviderUnavailable(VoxTrayError):
    """Model not present, provider unknown or network unreachable."""


class ProviderTimeout(ProviderUnavailable):
    """A provider call exceeded the configured timeout."""


class AuthenticationFailed(VoxTrayError):
    """API key missing or rejected by the provider."""


class TranscriptionFailed(VoxTrayError):
    """The STT provider returned an error or an unusable result."""


class PostProcessingFailed(VoxTrayError):
    """The LLM provider returned an error or an unusable result."""


class ModeNotFound(VoxTrayError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Mode not found: {key}")
        self.key = key


class ImmutableMode(VoxTrayError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Built-in mode '{key}' cannot be modified or deleted")
        self.key = key


class HistoryItemNotFound(VoxTrayError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"History item with id {item_id} not found")
        self.item_id = item_id


class CredentialError(VoxTrayError):
    """The OS secret store could not be read or written."""


class ConfigError(VoxTrayError):
    """Raised when configuration cannot be loaded or saved."""


class StorageError(VoxTrayError):
    """Raised when the history database is unreadable or corrupted."""

    recoverable = False


__all__ = [
    "AlreadyRecording",
    "AudioCaptureError",
    "AuthenticationFailed",
    "ConfigError",
    "CredentialError",
    "HistoryItemNotFound",
    "ImmutableMode",
    "ModeNotFound",
    "NotRecording",
    "PostProcessingFailed",
    "ProviderTimeout",
    "ProviderUnavailable",
    "StorageError",
    "TranscriptionFailed",
    "VoxTrayError",
]
