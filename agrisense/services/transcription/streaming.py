"""Streaming speech recognition backend.

Wraps a :class:`RecognitionEngine` so that each session is bound to one
locale, reports interim and final transcripts as they arrive, and maps
engine error codes onto the user-facing error taxonomy. Only one session
listens at a time per backend instance.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial

from agrisense.core.config import get_settings
from agrisense.core.exceptions import (
    AgriSenseError,
    CapabilityUnavailableError,
    SessionAlreadyActiveError,
    SpeechRecognitionError,
    speech_error_from_code,
)
from agrisense.core.models import Language, TranscriptionProvider, TranscriptionResult
from agrisense.services.transcription.base import SessionSink, TranscriptionSession
from agrisense.services.transcription.engines import (
    GoogleRecognitionEngine,
    RecognitionConfig,
    RecognitionEngine,
    RecognitionEvent,
)

logger = logging.getLogger(__name__)


@dataclass
class _ListeningSession:
    language: Language
    engine: RecognitionEngine
    on_result: Callable[[TranscriptionResult], None]
    on_error: Callable[[AgriSenseError], None] | None = None
    on_end: Callable[[], None] | None = None
    finished: bool = False  # no further callbacks
    stopping: bool = False
    released: asyncio.Event = field(default_factory=asyncio.Event)  # engine sent "end"


class StreamingBackend:
    """Continuous recognition with interim and final results.

    Session states: idle -> listening -> (stopping ->) idle. A session
    stops producing callbacks on its final result, on an error, when the
    engine ends, or on ``abort``. ``stop_session`` only ends capture: the
    phrase in progress is still recognized and delivered.

    The microphone belongs to the engine until it reports ``end``; until
    then the backend stays busy and refuses a new session, even when the
    previous one has already delivered its result.

    Args:
        engine_cls: Recognition engine class; defaults to the Google engine.
        settings: Optional Settings instance (defaults to get_settings()).
    """

    provider = TranscriptionProvider.streaming

    def __init__(
        self,
        engine_cls: type[RecognitionEngine] | None = None,
        settings=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine_cls = engine_cls or GoogleRecognitionEngine
        self._active: _ListeningSession | None = None

    def is_available(self) -> bool:
        return self._engine_cls.is_supported()

    @property
    def is_listening(self) -> bool:
        session = self._active
        return session is not None and not (session.finished or session.stopping)

    @property
    def is_busy(self) -> bool:
        """True while an engine still holds the microphone."""
        return self._active is not None

    @staticmethod
    def supported_languages() -> list[Language]:
        return list(Language)

    def start_session(
        self,
        language: Language,
        on_result: Callable[[TranscriptionResult], None],
        on_error: Callable[[AgriSenseError], None] | None = None,
        on_end: Callable[[], None] | None = None,
    ) -> None:
        """Start listening in ``language``.

        ``on_result`` receives every interim result followed by at most one
        final result; ``on_error`` receives a classified error; ``on_end``
        is called when the engine ends without a final result or error.

        Raises:
            CapabilityUnavailableError: If streaming recognition is unsupported.
            SessionAlreadyActiveError: If an engine still holds the microphone.
            SpeechRecognitionError: If the engine refuses to start.
        """
        if not self.is_available():
            raise CapabilityUnavailableError("Speech recognition")
        if self._active is not None:
            raise SessionAlreadyActiveError()

        config = RecognitionConfig(
            lang=language.locale,
            continuous=False,
            interim_results=True,
            max_alternatives=self._settings.streaming_max_alternatives,
        )
        engine = self._engine_cls(config, settings=self._settings)
        session = _ListeningSession(language, engine, on_result, on_error, on_end)
        self._active = session
        try:
            engine.start(partial(self._handle_event, session))
        except (RuntimeError, OSError) as exc:
            session.finished = True
            self._release(session)
            raise SpeechRecognitionError(str(exc)) from exc
        logger.info("Streaming recognition started (%s)", config.lang)

    def stop_session(self) -> bool:
        """End capture; returns False if no session was listening.

        The phrase in progress is still recognized: its final result (or
        error) is delivered, then the engine releases the microphone.
        """
        session = self._active
        if session is None or session.finished or session.stopping:
            return False
        session.stopping = True
        session.engine.stop()
        logger.info("Streaming recognition stopping")
        return True

    def abort(self) -> bool:
        """Abort the session, dropping any pending result.

        Returns False if there was no session still producing results.
        """
        session = self._active
        if session is None:
            return False
        was_open = not session.finished
        session.finished = True
        session.engine.abort()
        logger.info("Streaming recognition aborted")
        return was_open

    async def wait_until_released(self, timeout: float | None = None) -> bool:
        """Wait for the current engine to release the microphone.

        Returns False if ``timeout`` expired first.
        """
        session = self._active
        if session is None:
            return True
        try:
            await asyncio.wait_for(session.released.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def _release(self, session: _ListeningSession) -> None:
        session.released.set()
        if self._active is session:
            self._active = None

    def _handle_event(self, session: _ListeningSession, event: RecognitionEvent) -> None:
        if event.kind == "end":
            self._release(session)
            if not session.finished:
                session.finished = True
                if session.on_end is not None:
                    session.on_end()
            return

        if session.finished:
            logger.debug("Ignoring %s event from a finished session", event.kind)
            return

        if event.kind == "start":
            logger.debug("Recognition engine listening")
        elif event.kind == "result":
            self._handle_results(session, event)
        elif event.kind == "error":
            error = speech_error_from_code(event.error or "unknown")
            logger.warning("Streaming recognition error: %s", event.error)
            session.finished = True
            if session.on_error is not None:
                session.on_error(error)

    def _handle_results(self, session: _ListeningSession, event: RecognitionEvent) -> None:
        for item in event.results[event.result_index :]:
            if not item.alternatives:
                continue
            best = item.alternatives[0]
            if item.is_final:
                result = TranscriptionResult(
                    text=best.transcript,
                    confidence=best.confidence or self._settings.streaming_final_confidence,
                    confidence_measured=bool(best.confidence),
                    language=session.language,
                    is_final=True,
                    provider=self.provider,
                )
                session.finished = True
                session.on_result(result)
                return
            session.on_result(
                TranscriptionResult(
                    text=best.transcript,
                    confidence=self._settings.streaming_interim_confidence,
                    confidence_measured=False,
                    language=session.language,
                    is_final=False,
                    provider=self.provider,
                )
            )


class StreamingSession(TranscriptionSession):
    """Session adapter over :class:`StreamingBackend`.

    The engine captures audio itself, so ``feed_audio`` is a no-op.
    ``stop`` returns once the engine has released the microphone, so the
    result of the phrase in progress reaches the sink first.
    """

    provider = TranscriptionProvider.streaming
    uses_microphone = False

    def __init__(self, backend: StreamingBackend | None = None, settings=None) -> None:
        self._settings = settings or get_settings()
        self.backend = backend or StreamingBackend(settings=self._settings)

    def is_available(self) -> bool:
        return self.backend.is_available()

    async def start(self, language: Language, sink: SessionSink) -> None:
        self.backend.start_session(
            language,
            on_result=sink.result,
            on_error=sink.error,
            on_end=sink.closed,
        )

    def feed_audio(self, chunk: bytes) -> None:
        pass

    async def stop(self) -> None:
        self.backend.stop_session()
        timeout = self._settings.streaming_stop_timeout
        if not await self.backend.wait_until_released(timeout):
            logger.warning("Recognition engine still busy %.0f s after stop; aborting", timeout)
            self.backend.abort()
