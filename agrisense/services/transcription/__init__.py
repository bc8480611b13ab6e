"""
Transcription module - Speech-to-text providers behind one session contract.

Factory function for creating sessions based on provider configuration.
"""

from agrisense.core.models import TranscriptionProvider

from .base import SessionSink, TranscriptionOutcome, TranscriptionSession
from .offline import OfflineModelBackend, OfflineSession, WhisperModelLoader, get_model_loader
from .streaming import StreamingBackend, StreamingSession

__all__ = [
    "OfflineModelBackend",
    "OfflineSession",
    "SessionSink",
    "StreamingBackend",
    "StreamingSession",
    "TranscriptionOutcome",
    "TranscriptionSession",
    "WhisperModelLoader",
    "create_session",
    "get_model_loader",
]


def create_session(provider: str, **kwargs) -> TranscriptionSession:
    """
    Factory function to create a transcription session based on provider.

    Args:
        provider: Provider name ("offline" or "streaming")
        **kwargs: Provider-specific configuration

    Returns:
        TranscriptionSession implementation instance

    Raises:
        ValueError: If provider is unknown
    """
    if provider == TranscriptionProvider.offline:
        return OfflineSession(**kwargs)
    elif provider == TranscriptionProvider.streaming:
        return StreamingSession(**kwargs)
    else:
        raise ValueError(f"Unknown transcription provider: {provider}")
