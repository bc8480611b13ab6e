"""Shared pytest fixtures for the AgriSense test suite.

Provides settings isolated from the environment, generated PCM audio, and
fake host capabilities (microphone, recognition engine) so that no test
touches the network, a real microphone or a real speech model.
"""

import asyncio
import io
import math
import struct
import wave

import pytest

from agrisense.core.config import Settings
from agrisense.core.models import AudioClip
from agrisense.services.audio.capture import AudioInput, AudioStream, AudioTrack
from agrisense.services.transcription.engines import RecognitionEngine, RecognitionEvent

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    """Settings with defaults only (no .env) and model preload disabled."""
    return Settings(_env_file=None, whisper_preload=False)


# ---------------------------------------------------------------------------
# Audio Fixtures
# ---------------------------------------------------------------------------


def make_pcm(duration: float = 1.0, frequency: float = 440.0, sample_rate: int = 16000) -> bytes:
    """Generate a sine wave as 16-bit mono PCM."""
    amplitude = 16000  # ~50% of max int16
    samples = []
    for i in range(int(sample_rate * duration)):
        value = int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate))
        samples.append(struct.pack("<h", value))
    return b"".join(samples)


def make_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


@pytest.fixture
def sample_pcm_bytes():
    """1 second of 440Hz sine-wave PCM audio (16kHz, 16-bit, mono)."""
    return make_pcm(1.0)


@pytest.fixture
def silent_pcm_bytes():
    """1 second of digital silence (16kHz, 16-bit, mono)."""
    return b"\x00\x00" * 16000


@pytest.fixture
def wav_clip(sample_pcm_bytes):
    """A one-second WAV clip."""
    return AudioClip(data=make_wav(sample_pcm_bytes), content_type="audio/wav", filename="a.wav")


# ---------------------------------------------------------------------------
# Fake microphone
# ---------------------------------------------------------------------------


class FakeAudioStream(AudioStream):
    """In-memory stream: yields queued blocks until its track is stopped."""

    def __init__(self, blocks=()) -> None:
        self.settings = {"sample_rate": 16000, "channels": 1}
        self._queue: asyncio.Queue = asyncio.Queue()
        for block in blocks:
            self._queue.put_nowait(block)
        self.release_calls = 0
        self._track = AudioTrack("fake", on_stop=self._on_stop)

    @property
    def tracks(self):
        return [self._track]

    def push(self, block: bytes) -> None:
        self._queue.put_nowait(block)

    def _on_stop(self) -> None:
        self.release_calls += 1
        self._queue.put_nowait(None)

    async def __anext__(self) -> bytes:
        block = await self._queue.get()
        if block is None:
            raise StopAsyncIteration
        return block


class FakeAudioInput(AudioInput):
    """Microphone capability that hands out FakeAudioStreams.

    Args:
        blocks: PCM blocks every opened stream yields.
        error: Exception raised by ``open`` instead of returning a stream.
        gate: Optional event ``open`` waits on before resolving.
    """

    def __init__(self, blocks=(), error=None, gate=None) -> None:
        self._blocks = list(blocks)
        self._error = error
        self._gate = gate
        self.open_calls = 0
        self.constraints = None
        self.streams: list[FakeAudioStream] = []

    async def open(self, constraints):
        self.open_calls += 1
        self.constraints = constraints
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        stream = FakeAudioStream(self._blocks)
        self.streams.append(stream)
        return stream


@pytest.fixture
def fake_audio_input():
    """A microphone yielding three one-second sine chunks."""
    return FakeAudioInput(blocks=[make_pcm(1.0), make_pcm(1.0), make_pcm(1.0)])


# ---------------------------------------------------------------------------
# Fake recognition engine
# ---------------------------------------------------------------------------


class FakeRecognitionEngine(RecognitionEngine):
    """Recognition engine driven by the test through ``emit``.

    With ``end_on_stop`` set, ``stop`` and ``abort`` report ``end`` on the
    next loop iteration, like an engine releasing the microphone.
    """

    supported = True
    end_on_stop = False
    instances: list["FakeRecognitionEngine"] = []

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self.listener = None
        self.stopped = False
        self.aborted = False
        FakeRecognitionEngine.instances.append(self)

    @classmethod
    def is_supported(cls) -> bool:
        return cls.supported

    def start(self, listener) -> None:
        self.listener = listener

    def stop(self) -> None:
        self.stopped = True
        self._schedule_end()

    def abort(self) -> None:
        self.aborted = True
        self._schedule_end()

    def _schedule_end(self) -> None:
        if self.end_on_stop:
            asyncio.get_running_loop().call_soon(self.emit, "end")

    def emit(self, kind, **kwargs) -> None:
        self.listener(RecognitionEvent(kind=kind, **kwargs))


@pytest.fixture
def fake_engine_cls():
    """The fake engine class, reset to supported with no instances."""
    FakeRecognitionEngine.supported = True
    FakeRecognitionEngine.end_on_stop = False
    FakeRecognitionEngine.instances = []
    yield FakeRecognitionEngine
    FakeRecognitionEngine.instances = []


@pytest.fixture
def pcm_factory():
    """Callable generating sine-wave PCM: ``pcm_factory(duration, frequency)``."""
    return make_pcm


@pytest.fixture
def wav_factory():
    """Callable wrapping PCM as WAV bytes: ``wav_factory(pcm, sample_rate, channels)``."""
    return make_wav


@pytest.fixture
def audio_input_factory():
    """The FakeAudioInput class, for tests that need custom behaviour."""
    return FakeAudioInput
