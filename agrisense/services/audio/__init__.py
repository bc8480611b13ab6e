"""
Audio module - Microphone capture, buffering and processing utilities.
"""

from .capture import AudioInput, AudioStream, AudioTrack, SoundDeviceInput
from .processor import AudioProcessor, AudioWindow
from .recorder import ChunkAccumulator

__all__ = [
    "AudioInput",
    "AudioProcessor",
    "AudioStream",
    "AudioTrack",
    "AudioWindow",
    "ChunkAccumulator",
    "SoundDeviceInput",
]
