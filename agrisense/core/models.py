"""
Pydantic v2 models and enums shared by the location and speech services.

Location: LocationResult, Position, PositionOptions
Speech:   Language, TranscriptionProvider, TranscriptionResult, AudioClip,
          AudioConstraints, SessionState, ModelState
"""

import mimetypes
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------


class LocationResult(BaseModel):
    """A normalized geocoding hit. Produced fresh per lookup, never mutated."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    display_name: str
    full_address: str = ""
    place_type: str = ""
    importance: float = 0.0
    # Nominatim order: (south, north, west, east)
    bounding_box: tuple[float, float, float, float]
    address: dict[str, str] = Field(default_factory=dict)


class PositionOptions(BaseModel):
    """Options for a one-shot current-position request."""

    model_config = ConfigDict(frozen=True)

    enable_high_accuracy: bool = True
    timeout: float = 10.0
    maximum_age: float = 600.0


class Position(BaseModel):
    """A device position fix."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: float = 0.0  # time.monotonic() when the fix was taken


# ---------------------------------------------------------------------------
# Speech
# ---------------------------------------------------------------------------


class Language(StrEnum):
    """Languages supported by both transcription providers."""

    malayalam = "malayalam"
    english = "english"
    hindi = "hindi"

    @property
    def whisper_code(self) -> str:
        """ISO 639-1 code understood by Whisper."""
        return _WHISPER_CODES[self]

    @property
    def locale(self) -> str:
        """BCP-47 locale understood by streaming recognizers."""
        return _LOCALES[self]


_WHISPER_CODES = {Language.malayalam: "ml", Language.english: "en", Language.hindi: "hi"}
_LOCALES = {Language.malayalam: "ml-IN", Language.english: "en-US", Language.hindi: "hi-IN"}


class TranscriptionProvider(StrEnum):
    """Which transcription backend produced a result."""

    offline = "offline"  # local faster-whisper model, whole-clip transcription
    streaming = "streaming"  # continuous recognition engine, interim + final events


class SessionState(StrEnum):
    """Lifecycle of a recording session."""

    idle = "idle"
    recording = "recording"
    processing = "processing"
    done = "done"
    error = "error"


class ModelState(StrEnum):
    """Lifecycle of the shared offline speech model."""

    not_loaded = "not_loaded"
    loading = "loading"
    ready = "ready"
    error = "error"


class TranscriptionResult(BaseModel):
    """A transcript delivered to the caller.

    ``confidence_measured`` is False when the engine does not report a score;
    ``confidence`` is then a fixed placeholder and must not be interpreted.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_measured: bool = True
    language: Language
    is_final: bool = True
    provider: TranscriptionProvider


class AudioClip(BaseModel):
    """A complete, finished piece of audio (recording or uploaded file)."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    content_type: str = "audio/wav"
    filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_audio(self) -> bool:
        return self.content_type.lower().startswith("audio/")

    @classmethod
    def from_path(cls, path: str | Path) -> "AudioClip":
        """Read a file from disk, guessing its content type from the extension."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            data=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
            filename=path.name,
        )


class AudioConstraints(BaseModel):
    """Requested properties of a microphone input stream."""

    model_config = ConfigDict(frozen=True)

    sample_rate: int = 16000
    channels: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True
