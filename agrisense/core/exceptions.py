"""
AgriSense exception hierarchy.

All application-specific exceptions inherit from AgriSenseError. The
``detail`` of each error is the message shown to the end user; ``code`` is a
stable identifier for programmatic handling.
"""

from datetime import UTC, datetime


class AgriSenseError(Exception):
    """Base exception for all AgriSense errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "AGRISENSE_ERROR",
    ) -> None:
        self.detail = detail
        self.code = code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Map / location
# ---------------------------------------------------------------------------


class MapContainerNotReadyError(AgriSenseError):
    """Raised when a map is initialized on a container that is not attached yet."""

    def __init__(self, container_id: str) -> None:
        super().__init__(
            detail=f"Map container is not attached: {container_id}",
            code="MAP_CONTAINER_NOT_READY",
        )


class GeolocationError(AgriSenseError):
    """Base class for current-position failures."""


class GeolocationUnavailableError(GeolocationError):
    """Raised when the host has no geolocation capability."""

    def __init__(self) -> None:
        super().__init__(
            detail="Geolocation is not supported on this device",
            code="GEOLOCATION_UNAVAILABLE",
        )


class LocationPermissionDeniedError(GeolocationError):
    """Raised when the user refuses location access."""

    def __init__(self) -> None:
        super().__init__(
            detail="Location access denied by user. Please enable location permissions.",
            code="LOCATION_PERMISSION_DENIED",
        )


class PositionUnavailableError(GeolocationError):
    """Raised when the host cannot determine a position."""

    def __init__(self) -> None:
        super().__init__(
            detail="Location information unavailable",
            code="POSITION_UNAVAILABLE",
        )


class LocationTimeoutError(GeolocationError):
    """Raised when no position arrives within the configured timeout."""

    def __init__(self) -> None:
        super().__init__(
            detail="Location request timed out",
            code="LOCATION_TIMEOUT",
        )


# ---------------------------------------------------------------------------
# Offline transcription
# ---------------------------------------------------------------------------


class ModelUnavailableError(AgriSenseError):
    """Raised when the speech model could not be loaded."""

    def __init__(self, detail: str = "Speech recognition model not available") -> None:
        super().__init__(detail=detail, code="MODEL_UNAVAILABLE")


class TranscriptionFailedError(AgriSenseError):
    """Raised when the model invocation fails on a given clip."""

    def __init__(self, detail: str = "Transcription failed") -> None:
        super().__init__(detail=detail, code="TRANSCRIPTION_FAILED")


class NoAudioRecordedError(AgriSenseError):
    """Raised when a recording is stopped without any captured audio."""

    def __init__(self) -> None:
        super().__init__(detail="No audio data recorded", code="NO_AUDIO_RECORDED")


class InvalidFileTypeError(AgriSenseError):
    """Raised when an uploaded file is not an audio file."""

    def __init__(self, content_type: str) -> None:
        super().__init__(
            detail=f"Please select an audio file (got {content_type or 'unknown type'})",
            code="INVALID_FILE_TYPE",
        )


class MicrophoneAccessDeniedError(AgriSenseError):
    """Raised when the audio input device cannot be acquired."""

    def __init__(self, reason: str = "") -> None:
        detail = "Failed to access microphone"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, code="MICROPHONE_ACCESS_DENIED")


# ---------------------------------------------------------------------------
# Sessions / capabilities
# ---------------------------------------------------------------------------


class CapabilityUnavailableError(AgriSenseError):
    """Raised when a transcription provider is not supported on this host."""

    def __init__(self, capability: str = "Speech recognition") -> None:
        super().__init__(
            detail=f"{capability} is not supported on this device",
            code="CAPABILITY_UNAVAILABLE",
        )


class SessionAlreadyActiveError(AgriSenseError):
    """Raised when starting a session while another one is still running."""

    def __init__(self) -> None:
        super().__init__(
            detail="A recording session is already active",
            code="SESSION_ALREADY_ACTIVE",
        )


# ---------------------------------------------------------------------------
# Streaming recognition taxonomy
# ---------------------------------------------------------------------------


class NoSpeechDetectedError(AgriSenseError):
    def __init__(self) -> None:
        super().__init__(detail="No speech detected. Please try again.", code="NO_SPEECH_DETECTED")


class MicrophoneUnavailableError(AgriSenseError):
    def __init__(self) -> None:
        super().__init__(
            detail="Microphone not accessible. Please check permissions.",
            code="MICROPHONE_UNAVAILABLE",
        )


class PermissionDeniedError(AgriSenseError):
    def __init__(self) -> None:
        super().__init__(detail="Microphone permission denied.", code="PERMISSION_DENIED")


class SpeechNetworkError(AgriSenseError):
    def __init__(self) -> None:
        super().__init__(detail="Network error occurred.", code="NETWORK_ERROR")


class SpeechRecognitionError(AgriSenseError):
    """Any recognition engine error outside the known taxonomy."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(detail=f"Speech recognition error: {reason}", code="SPEECH_ERROR")


_SPEECH_ERRORS: dict[str, type[AgriSenseError]] = {
    "no-speech": NoSpeechDetectedError,
    "audio-capture": MicrophoneUnavailableError,
    "not-allowed": PermissionDeniedError,
    "network": SpeechNetworkError,
}


def speech_error_from_code(code: str) -> AgriSenseError:
    """Map a recognition engine error code to its user-facing exception."""
    error_cls = _SPEECH_ERRORS.get(code)
    if error_cls is None:
        return SpeechRecognitionError(code)
    return error_cls()
