"""Offline Whisper transcription using faster-whisper.

The WhisperModel is expensive to load, so one :class:`WhisperModelLoader`
is shared by the whole process (see ``get_model_loader``). Concurrent load
requests attach to the single in-flight load; a failed load leaves the
loader in the error state, from which the next request tries again.

``OfflineModelBackend.transcribe`` is the only entry point callers need:
it loads the model on first use, splits long clips into overlapping
windows, and returns a :class:`TranscriptionOutcome` instead of raising.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import lru_cache

import numpy as np
from faster_whisper import WhisperModel

from agrisense.core.config import get_settings
from agrisense.core.exceptions import (
    ModelUnavailableError,
    NoAudioRecordedError,
    TranscriptionFailedError,
)
from agrisense.core.models import (
    AudioClip,
    Language,
    ModelState,
    TranscriptionProvider,
    TranscriptionResult,
)
from agrisense.services.audio.processor import AudioProcessor, AudioWindow
from agrisense.services.audio.recorder import ChunkAccumulator
from agrisense.services.transcription.base import (
    SessionSink,
    TranscriptionOutcome,
    TranscriptionSession,
)

logger = logging.getLogger(__name__)

# faster-whisper reports no usable per-utterance confidence; this value is a
# placeholder and results carry confidence_measured=False.
UNMEASURED_CONFIDENCE = 0.0


class WhisperModelLoader:
    """Load-once holder for a faster-whisper model.

    Args:
        model_size: Whisper model size (tiny, base, small, medium, large-v3).
        device: Computation device ("cpu" or "cuda").
        compute_type: CTranslate2 compute type ("int8", "float16", etc.).
        settings: Optional Settings instance (defaults to get_settings()).
        factory: Callable building the model; defaults to ``WhisperModel``.
    """

    def __init__(
        self,
        model_size: str | None = None,
        device: str | None = None,
        compute_type: str | None = None,
        settings=None,
        factory: Callable[..., WhisperModel] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model_size = model_size or self._settings.whisper_model
        self._device = device or self._settings.whisper_device
        self._compute_type = compute_type or self._settings.whisper_compute_type
        self._factory = factory or WhisperModel
        self._model: WhisperModel | None = None
        self._task: asyncio.Task | None = None
        self._state = ModelState.not_loaded
        self.last_error: str | None = None

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ModelState.ready

    async def load(self) -> WhisperModel:
        """Return the model, loading it if needed.

        Callers arriving while a load is in progress await that same load.

        Raises:
            ModelUnavailableError: If the load fails.
        """
        if self._model is not None:
            return self._model
        if self._task is None:
            self._state = ModelState.loading
            self._task = asyncio.create_task(self._load())
        # Shield so one cancelled caller does not abort the shared load
        return await asyncio.shield(self._task)

    async def _load(self) -> WhisperModel:
        logger.info(
            "Loading Whisper model: %s (device=%s, compute=%s)",
            self._model_size,
            self._device,
            self._compute_type,
        )
        try:
            model = await asyncio.to_thread(
                self._factory,
                self._model_size,
                device=self._device,
                compute_type=self._compute_type,
            )
        except Exception as exc:
            logger.error("Failed to load Whisper model %s: %s", self._model_size, exc)
            self._state = ModelState.error
            self.last_error = str(exc)
            raise ModelUnavailableError(f"Failed to load speech model: {exc}") from exc
        finally:
            self._task = None

        self._model = model
        self._state = ModelState.ready
        self.last_error = None
        logger.info("Whisper model %s loaded", self._model_size)
        return model


@lru_cache
def get_model_loader() -> WhisperModelLoader:
    """Return the process-wide model loader built from settings."""
    return WhisperModelLoader()


class OfflineModelBackend:
    """Whole-clip speech-to-text on a local faster-whisper model.

    Args:
        loader: Model loader; defaults to the process-wide one.
        processor: Audio decoder/windowing helper.
        settings: Optional Settings instance (defaults to get_settings()).
    """

    provider = TranscriptionProvider.offline

    def __init__(
        self,
        loader: WhisperModelLoader | None = None,
        processor: AudioProcessor | None = None,
        settings=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._loader = loader or get_model_loader()
        self._processor = processor or AudioProcessor(sample_rate=self._settings.audio_sample_rate)

    @property
    def model_state(self) -> ModelState:
        return self._loader.state

    @property
    def is_ready(self) -> bool:
        return self._loader.is_ready

    @property
    def last_error(self) -> str | None:
        return self._loader.last_error

    async def preload(self) -> bool:
        """Load the model ahead of the first transcription.

        Returns whether the model is ready; never raises. On failure the
        reason is available from ``last_error``.
        """
        try:
            await self._loader.load()
        except ModelUnavailableError:
            return False
        return True

    async def transcribe(self, clip: AudioClip, language: Language) -> TranscriptionOutcome:
        """Transcribe a complete clip into one final result.

        Never raises: load failures come back as ``ModelUnavailableError``,
        decoding or inference failures as ``TranscriptionFailedError``.
        """
        try:
            model = await self._loader.load()
        except ModelUnavailableError as exc:
            return TranscriptionOutcome(error=exc)

        logger.info("Transcribing %d bytes of %s audio (%s)", clip.size, clip.content_type, language)
        try:
            audio = await asyncio.to_thread(self._processor.decode, clip)
            text = await asyncio.to_thread(self._run_windows, model, audio, language)
        except Exception as exc:
            logger.exception("Whisper transcription failed")
            return TranscriptionOutcome(error=TranscriptionFailedError(f"Transcription failed: {exc}"))

        return TranscriptionOutcome(
            result=TranscriptionResult(
                text=text,
                confidence=UNMEASURED_CONFIDENCE,
                confidence_measured=False,
                language=language,
                is_final=True,
                provider=self.provider,
            )
        )

    def _run_windows(self, model: WhisperModel, audio: np.ndarray, language: Language) -> str:
        """Run synchronous windowed transcription (CPU-bound).

        Must be called via asyncio.to_thread(). Segment iterators are
        materialized here to avoid CTranslate2 cross-thread issues. Each
        window keeps only the segments centred in the part it owns, so the
        overlap between windows is not transcribed twice.
        """
        if self._processor.is_silent(audio):
            return ""
        windows = self._processor.split_windows(
            audio,
            window_seconds=self._settings.whisper_window_seconds,
            overlap_seconds=self._settings.whisper_overlap_seconds,
        )
        pieces: list[str] = []
        for window in windows:
            pieces.extend(self._transcribe_window(model, window, language))
        return " ".join(pieces).strip()

    def _transcribe_window(
        self, model: WhisperModel, window: AudioWindow, language: Language
    ) -> list[str]:
        segments_iter, _info = model.transcribe(
            window.samples,
            language=language.whisper_code,
            task="transcribe",
            beam_size=self._settings.whisper_beam_size,
            vad_filter=True,
        )
        kept = []
        for seg in list(segments_iter):
            text = seg.text.strip()
            midpoint = window.offset + (seg.start + seg.end) / 2
            if text and window.owns(midpoint):
                kept.append(text)
        return kept


class OfflineSession(TranscriptionSession):
    """Record-then-transcribe session on top of :class:`OfflineModelBackend`.

    Captured audio is buffered in flush-interval chunks; ``stop`` joins the
    chunks into one clip and transcribes it once.
    """

    provider = TranscriptionProvider.offline
    uses_microphone = True

    def __init__(self, backend: OfflineModelBackend | None = None, settings=None) -> None:
        self._settings = settings or get_settings()
        self.backend = backend or OfflineModelBackend(settings=self._settings)
        self._accumulator = ChunkAccumulator(
            flush_interval=self._settings.audio_flush_interval,
            sample_rate=self._settings.audio_sample_rate,
            channels=self._settings.audio_channels,
        )
        self._language: Language | None = None
        self._sink: SessionSink | None = None

    @property
    def buffered_chunks(self) -> int:
        return self._accumulator.chunk_count

    def is_available(self) -> bool:
        return True

    async def start(self, language: Language, sink: SessionSink) -> None:
        self._accumulator.reset()
        self._language = language
        self._sink = sink

    def feed_audio(self, chunk: bytes) -> None:
        if self._sink is not None:
            self._accumulator.add_bytes(chunk)

    async def stop(self) -> None:
        sink, self._sink = self._sink, None
        if sink is None:
            return
        clip = self._accumulator.to_clip()
        self._accumulator.reset()
        if clip is None:
            raise NoAudioRecordedError()

        outcome = await self.backend.transcribe(clip, self._language or Language.malayalam)
        if outcome.error is not None:
            raise outcome.error
        sink.result(outcome.result)
