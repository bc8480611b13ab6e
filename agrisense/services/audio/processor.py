"""Audio processing utilities for PCM data and audio clips.

Converts raw PCM bytes to numpy arrays, wraps buffered PCM as WAV, decodes
uploaded clips to 16 kHz mono float32, splits long audio into overlapping
windows and detects silence.
"""

import io
import wave
from dataclasses import dataclass

import numpy as np
from faster_whisper import decode_audio

from agrisense.core.models import AudioClip


@dataclass(frozen=True)
class AudioWindow:
    """A slice of a longer recording.

    Attributes:
        offset: Start of the window in the full recording, in seconds.
        samples: Float32 samples of the window.
        keep_from: Absolute time from which this window's output is kept.
        keep_until: Absolute time up to which this window's output is kept.
    """

    offset: float
    samples: np.ndarray
    keep_from: float
    keep_until: float

    def owns(self, timestamp: float) -> bool:
        """True if output at absolute ``timestamp`` belongs to this window."""
        return self.keep_from <= timestamp < self.keep_until


class AudioProcessor:
    """PCM and clip conversions for the speech pipeline.

    Args:
        sample_rate: Target rate in Hz; decoded clips are resampled to it.
        sample_width: Bytes per PCM sample (2 = int16).
        channels: Interleaved channel count of raw PCM input.
    """

    def __init__(self, sample_rate: int = 16000, sample_width: int = 2, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.channels = channels

    def pcm_to_ndarray(self, pcm_data: bytes) -> np.ndarray:
        """Scale int16 PCM to float32 in [-1.0, 1.0].

        Raises:
            ValueError: If ``pcm_data`` ends in the middle of a frame.
        """
        frame_size = self.sample_width * self.channels
        if len(pcm_data) % frame_size:
            raise ValueError(f"{len(pcm_data)} bytes of PCM is not a whole number of {frame_size}-byte frames")
        return np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) / 32768.0

    def pcm_to_wav_bytes(self, pcm_data: bytes) -> bytes:
        """Wrap raw PCM bytes in an in-memory WAV container.

        Raises:
            ValueError: If pcm_data is empty.
        """
        if not pcm_data:
            raise ValueError("Cannot encode empty PCM data as WAV")
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm_data)
        return buffer.getvalue()

    def decode(self, clip: AudioClip) -> np.ndarray:
        """Decode a clip to mono float32 samples at ``sample_rate``.

        Every container (wav, webm, ogg, mp3, m4a...) goes through
        faster-whisper's PyAV-based decoder, which also mixes down and
        resamples.
        """
        return decode_audio(io.BytesIO(clip.data), sampling_rate=self.sample_rate)

    def split_windows(
        self,
        audio: np.ndarray,
        window_seconds: float = 30.0,
        overlap_seconds: float = 5.0,
    ) -> list[AudioWindow]:
        """Cut audio into fixed windows that overlap by ``overlap_seconds``.

        Neighbouring windows split their overlap at its midpoint, so every
        instant of the recording is owned by exactly one window.

        Raises:
            ValueError: If the overlap is not shorter than the window.
        """
        if overlap_seconds >= window_seconds:
            raise ValueError("Window overlap must be shorter than the window")

        total = len(audio) / self.sample_rate
        if total == 0:
            return []

        stride = window_seconds - overlap_seconds
        half_overlap = overlap_seconds / 2
        windows: list[AudioWindow] = []
        start = 0.0
        while True:
            end = min(start + window_seconds, total)
            first = start == 0.0
            last = end >= total
            begin_idx = int(round(start * self.sample_rate))
            end_idx = int(round(end * self.sample_rate))
            windows.append(
                AudioWindow(
                    offset=start,
                    samples=audio[begin_idx:end_idx],
                    keep_from=0.0 if first else start + half_overlap,
                    keep_until=float("inf") if last else end - half_overlap,
                )
            )
            if last:
                break
            start += stride
        return windows

    def is_silent(self, audio: np.ndarray, threshold: float = 1e-3) -> bool:
        """True if no sample is louder than ``threshold`` (peak, about -60 dBFS).

        A short quiet phrase inside a long pause counts as signal.
        """
        if len(audio) == 0:
            return True
        return float(np.max(np.abs(audio))) < threshold
