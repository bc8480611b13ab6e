"""
Abstract session contract shared by every transcription provider.

The recording controller drives all providers through the same
start / feed_audio / stop calls and receives results through a
:class:`SessionSink`, so it never branches on which provider is active.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol

from agrisense.core.exceptions import AgriSenseError
from agrisense.core.models import Language, TranscriptionProvider, TranscriptionResult


@dataclass(frozen=True)
class TranscriptionOutcome:
    """Structured result of a whole-clip transcription: a result or an error."""

    result: TranscriptionResult | None = None
    error: AgriSenseError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None


class SessionSink(Protocol):
    """Receiver for everything a running session produces."""

    def result(self, result: TranscriptionResult) -> None:
        """Interim or final transcript, delivered in arrival order."""

    def error(self, error: AgriSenseError) -> None:
        """The session failed; no further results will follow."""

    def closed(self) -> None:
        """The session ended on its own without a final result or error."""


class TranscriptionSession(ABC):
    """Interface that every transcription provider must implement.

    Attributes:
        provider: Which provider this session drives.
        uses_microphone: True if the caller must capture audio and pass it
            through ``feed_audio``; False if the provider captures audio itself.
    """

    provider: TranscriptionProvider
    uses_microphone: bool

    @abstractmethod
    def is_available(self) -> bool:
        """Capability check for the host environment."""

    @abstractmethod
    async def start(self, language: Language, sink: SessionSink) -> None:
        """Begin a session.

        Raises:
            CapabilityUnavailableError: If the provider is not supported here.
            SessionAlreadyActiveError: If a session is already running.
        """

    @abstractmethod
    def feed_audio(self, chunk: bytes) -> None:
        """Hand captured PCM audio to the session (no-op if unused)."""

    @abstractmethod
    async def stop(self) -> None:
        """End the session; any final result is delivered to the sink.

        Raises:
            AgriSenseError: If producing the final result failed.
        """
