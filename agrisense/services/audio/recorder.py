"""Chunked buffering of microphone audio for whole-clip transcription.

Incoming PCM blocks are grouped into fixed-duration chunks (one per flush
interval). When recording stops, the trailing partial chunk is flushed and
all chunks are joined, in order, into a single WAV clip.
"""

from agrisense.core.models import AudioClip
from agrisense.services.audio.processor import AudioProcessor


class ChunkAccumulator:
    """Accumulates PCM audio bytes into flush-interval sized chunks.

    Args:
        flush_interval: Seconds of audio per chunk.
        sample_rate: Audio sample rate in Hz.
        sample_width: Bytes per sample (2 = 16-bit signed PCM).
        channels: Number of audio channels.
    """

    def __init__(
        self,
        flush_interval: float = 1.0,
        sample_rate: int = 16000,
        sample_width: int = 2,
        channels: int = 1,
    ) -> None:
        self._flush_interval = flush_interval
        self._sample_rate = sample_rate
        self._sample_width = sample_width
        self._channels = channels
        self._pending = bytearray()
        self._chunks: list[bytes] = []
        self._processor = AudioProcessor(sample_rate, sample_width, channels)

    @property
    def frame_size(self) -> int:
        return self._sample_width * self._channels

    @property
    def chunk_size_bytes(self) -> int:
        """Number of bytes in one full chunk."""
        return int(self._flush_interval * self._sample_rate) * self.frame_size

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> list[bytes]:
        return list(self._chunks)

    @property
    def buffered_duration(self) -> float:
        """Duration of all buffered audio (chunks and pending) in seconds."""
        total = sum(len(c) for c in self._chunks) + len(self._pending)
        return total / (self._sample_rate * self.frame_size)

    def add_bytes(self, data: bytes) -> int:
        """Append PCM bytes; returns how many chunks were completed."""
        self._pending.extend(data)
        completed = 0
        size = self.chunk_size_bytes
        while len(self._pending) >= size:
            self._chunks.append(bytes(self._pending[:size]))
            del self._pending[:size]
            completed += 1
        return completed

    def flush(self) -> None:
        """Turn the frame-aligned remainder into a final (short) chunk."""
        usable = len(self._pending) - (len(self._pending) % self.frame_size)
        if usable:
            self._chunks.append(bytes(self._pending[:usable]))
        self._pending.clear()

    def to_clip(self) -> AudioClip | None:
        """Join every chunk into one WAV clip, or None if nothing was recorded."""
        self.flush()
        if not self._chunks:
            return None
        pcm = b"".join(self._chunks)
        return AudioClip(
            data=self._processor.pcm_to_wav_bytes(pcm),
            content_type="audio/wav",
            filename="recording.wav",
        )

    def reset(self) -> None:
        """Clear all buffered audio."""
        self._pending.clear()
        self._chunks.clear()
