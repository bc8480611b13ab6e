"""Microphone capture.

``AudioInput.open`` acquires the input device and returns an
:class:`AudioStream`: an async iterator of raw 16-bit PCM blocks whose
tracks must be stopped to release the device. The sounddevice adapter runs
the PortAudio callback on its own thread and hands blocks to the event
loop with ``call_soon_threadsafe``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from agrisense.core.config import get_settings
from agrisense.core.exceptions import MicrophoneAccessDeniedError
from agrisense.core.models import AudioConstraints
from agrisense.services.audio.noise import NoiseReducer

logger = logging.getLogger(__name__)


class AudioTrack:
    """One device track; ``stop()`` releases it and is safe to repeat."""

    def __init__(self, label: str, on_stop: Callable[[], None]) -> None:
        self.label = label
        self.ready_state = "live"
        self._on_stop = on_stop

    def stop(self) -> bool:
        """Stop the track; returns False if it had already ended."""
        if self.ready_state == "ended":
            return False
        self.ready_state = "ended"
        self._on_stop()
        return True


class AudioStream(ABC):
    """Live microphone stream yielding PCM blocks until its tracks stop."""

    settings: dict[str, Any]

    @property
    @abstractmethod
    def tracks(self) -> list[AudioTrack]:
        """Every track acquired for this stream."""

    def stop_all_tracks(self) -> int:
        """Stop every live track; returns how many were stopped by this call."""
        return sum(1 for track in self.tracks if track.stop())

    def __aiter__(self) -> "AudioStream":
        return self

    @abstractmethod
    async def __anext__(self) -> bytes:
        """Next PCM block; raises StopAsyncIteration once the tracks stop."""


class AudioInput(ABC):
    """Host capability that grants access to an audio input device."""

    @abstractmethod
    async def open(self, constraints: AudioConstraints) -> AudioStream:
        """Acquire the device.

        Raises:
            MicrophoneAccessDeniedError: If the device cannot be opened.
        """


class SoundDeviceStream(AudioStream):
    """PortAudio input stream wrapped as an :class:`AudioStream`.

    Args:
        constraints: Requested stream properties.
        device: sounddevice device name or index (None = default input).
        blocksize: Frames per PortAudio callback.
    """

    def __init__(
        self,
        constraints: AudioConstraints,
        device: int | str | None = None,
        blocksize: int = 1600,
    ) -> None:
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._finished = False
        self._reducer = (
            NoiseReducer(constraints.sample_rate) if constraints.noise_suppression else None
        )
        # PortAudio offers no echo cancellation; report what is actually applied
        self.settings = {
            "sample_rate": constraints.sample_rate,
            "channels": constraints.channels,
            "echo_cancellation": False,
            "noise_suppression": constraints.noise_suppression,
            "device": device,
        }
        self._stream = sd.RawInputStream(
            samplerate=constraints.sample_rate,
            channels=constraints.channels,
            dtype="int16",
            blocksize=blocksize,
            device=device,
            callback=self._callback,
        )
        self._track = AudioTrack(label=str(device or "default"), on_stop=self._close)

    @property
    def tracks(self) -> list[AudioTrack]:
        return [self._track]

    def start(self) -> None:
        self._stream.start()

    def _callback(self, indata: Any, frames: int, time: Any, status: Any) -> None:
        if status:
            logger.warning("sounddevice status: %s", status)
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, bytes(indata))
        except RuntimeError:
            # Event loop already closed; the stream is being torn down
            pass

    def _close(self) -> None:
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._queue.put_nowait(None)

    async def __anext__(self) -> bytes:
        if self._finished:
            raise StopAsyncIteration
        block = await self._queue.get()
        if block is None:
            self._finished = True
            raise StopAsyncIteration
        if self._reducer is not None:
            block = self._reducer.apply_pcm(block)
        return block


class SoundDeviceInput(AudioInput):
    """Microphone access through sounddevice / PortAudio.

    Args:
        device: Device name or index (falls back to settings, then default input).
        blocksize: Frames per PortAudio callback.
        settings: Optional Settings instance (defaults to get_settings()).
    """

    def __init__(
        self,
        device: int | str | None = None,
        blocksize: int = 1600,
        settings=None,
    ) -> None:
        settings = settings or get_settings()
        self._device = device if device is not None else settings.audio_device
        self._blocksize = blocksize

    async def open(self, constraints: AudioConstraints) -> AudioStream:
        if constraints.echo_cancellation:
            logger.info("Echo cancellation requested but not available from PortAudio")
        try:
            # Imported lazily: loading the module fails when PortAudio is missing
            import sounddevice as sd
        except OSError as exc:
            raise MicrophoneAccessDeniedError("PortAudio library not found") from exc

        stream = None
        try:
            stream = SoundDeviceStream(constraints, self._device, self._blocksize)
            await asyncio.to_thread(stream.start)
        except (sd.PortAudioError, OSError, ValueError) as exc:
            logger.warning("Could not open audio input %s: %s", self._device or "default", exc)
            if stream is not None:
                self._release_quietly(stream)
            raise MicrophoneAccessDeniedError(str(exc)) from exc
        logger.info(
            "Audio input opened (device=%s, rate=%s, channels=%s)",
            self._device or "default",
            constraints.sample_rate,
            constraints.channels,
        )
        return stream

    @staticmethod
    def _release_quietly(stream: AudioStream) -> None:
        try:
            stream.stop_all_tracks()
        except (OSError, RuntimeError) as exc:
            logger.debug("Ignoring error while closing a failed input stream: %s", exc)
