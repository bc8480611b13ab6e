"""Recording orchestrator.

``RecordingController`` presents one start / stop / transcribe_file
contract over every transcription provider. It owns the microphone for
providers that need captured audio, serializes transcriptions per
controller, and reports results and errors through event channels instead
of raising.

Usage::

    from agrisense.services.orchestrator import create_recording_controller

    controller = create_recording_controller()
    controller.on_result(lambda result: print(result.text))
    await controller.start("offline", "malayalam")
    ...
    session = await controller.stop()
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from agrisense.core.config import get_settings
from agrisense.core.events import EventChannel, Subscription
from agrisense.core.exceptions import (
    AgriSenseError,
    CapabilityUnavailableError,
    InvalidFileTypeError,
    SessionAlreadyActiveError,
)
from agrisense.core.models import (
    AudioClip,
    AudioConstraints,
    Language,
    SessionState,
    TranscriptionProvider,
    TranscriptionResult,
)
from agrisense.services.audio.capture import AudioInput, AudioStream, SoundDeviceInput
from agrisense.services.transcription import (
    OfflineModelBackend,
    TranscriptionSession,
    create_session,
)

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (SessionState.recording, SessionState.processing)


@dataclass
class RecordingSession:
    """State of one recording or file transcription."""

    provider: TranscriptionProvider
    language: Language
    state: SessionState = SessionState.idle
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: TranscriptionResult | None = None
    error: AgriSenseError | None = None

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.done, SessionState.error)


class _ControllerSink:
    """Routes one session's provider output back into the controller."""

    def __init__(self, controller: "RecordingController", session: RecordingSession) -> None:
        self._controller = controller
        self._session = session

    def result(self, result: TranscriptionResult) -> None:
        if self._session.is_finished:
            return
        self._controller._results.emit(result)
        if result.is_final:
            self._session.result = result
            self._controller._complete(self._session)

    def error(self, error: AgriSenseError) -> None:
        if self._session.is_finished:
            return
        self._controller._fail(self._session, error)

    def closed(self) -> None:
        if self._session.state is SessionState.recording:
            self._controller._complete(self._session)


class RecordingController:
    """Unified recording and transcription front for the UI.

    Args:
        sessions: Transcription session per provider.
        offline_backend: Backend used for uploaded files.
        audio_input: Microphone capability for providers that need captured audio.
        settings: Optional Settings instance (defaults to get_settings()).
    """

    def __init__(
        self,
        sessions: Mapping[TranscriptionProvider, TranscriptionSession],
        offline_backend: OfflineModelBackend,
        audio_input: AudioInput | None = None,
        settings=None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sessions = dict(sessions)
        self._offline = offline_backend
        self._audio_input = audio_input
        self._results: EventChannel[TranscriptionResult] = EventChannel("transcription result")
        self._errors: EventChannel[AgriSenseError] = EventChannel("transcription error")
        self._transcribe_lock = asyncio.Lock()
        self._session: RecordingSession | None = None
        self._provider_session: TranscriptionSession | None = None
        self._stream: AudioStream | None = None
        self._pump: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._start_done = asyncio.Event()
        self._start_done.set()
        self._preload_task: asyncio.Task | None = None

        if self._settings.whisper_preload:
            try:
                self._preload_task = asyncio.get_running_loop().create_task(self.preload_model())
            except RuntimeError:
                logger.debug("No running event loop; model preload deferred to first use")

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    def on_result(self, callback: Callable[[TranscriptionResult], None]) -> Subscription:
        """Subscribe to interim and final transcripts, in arrival order."""
        return self._results.subscribe(callback)

    def on_error(self, callback: Callable[[AgriSenseError], None]) -> Subscription:
        """Subscribe to classified session errors."""
        return self._errors.subscribe(callback)

    async def preload_model(self) -> bool:
        """Load the offline model ahead of the first transcription."""
        ready = await self._offline.preload()
        if not ready:
            logger.warning("Offline speech model preload failed: %s", self._offline.last_error)
        return ready

    async def start(self, provider: str, language: str) -> RecordingSession:
        """Begin recording with ``provider`` in ``language``.

        Session failures do not raise: a failed start leaves the returned
        session in the error state and publishes the error.

        Raises:
            ValueError: If ``provider`` or ``language`` is not a known name.
        """
        current = self._session
        if current is not None and current.state in _ACTIVE_STATES:
            rejected = RecordingSession(
                provider=TranscriptionProvider(provider), language=Language(language)
            )
            self._fail(rejected, SessionAlreadyActiveError())
            return rejected

        session = RecordingSession(
            provider=TranscriptionProvider(provider), language=Language(language)
        )
        self._session = session
        self._stop_task = None
        backend = self._sessions.get(session.provider)
        if backend is None or not backend.is_available():
            self._fail(session, CapabilityUnavailableError(_capability_name(session.provider)))
            return session

        session.state = SessionState.recording
        session.started_at = datetime.now(UTC)
        self._start_done.clear()
        try:
            await self._start_provider(session, backend)
        finally:
            self._start_done.set()
        return session

    async def _start_provider(
        self, session: RecordingSession, backend: TranscriptionSession
    ) -> None:
        stream = None
        if backend.uses_microphone:
            if self._audio_input is None:
                self._fail(session, CapabilityUnavailableError("Audio input"))
                return
            constraints = AudioConstraints(
                sample_rate=self._settings.audio_sample_rate,
                channels=self._settings.audio_channels,
                echo_cancellation=self._settings.audio_echo_cancellation,
                noise_suppression=self._settings.audio_noise_suppression,
            )
            try:
                stream = await self._audio_input.open(constraints)
            except AgriSenseError as exc:
                self._fail(session, exc)
                return
            self._stream = stream

        try:
            await backend.start(session.language, _ControllerSink(self, session))
        except AgriSenseError as exc:
            await self._release_device()
            self._fail(session, exc)
            return

        self._provider_session = backend
        if stream is not None:
            self._pump = asyncio.create_task(self._pump_audio(stream, backend))
        logger.info("Recording started (%s, %s)", session.provider, session.language)

    async def _pump_audio(self, stream: AudioStream, backend: TranscriptionSession) -> None:
        """Forward captured blocks until the stream's tracks are stopped."""
        try:
            async for block in stream:
                backend.feed_audio(block)
        except Exception:
            logger.exception("Audio capture ended unexpectedly")

    async def stop(self) -> RecordingSession | None:
        """Stop the current recording and wait for its transcript.

        Safe to call at any point: a stop during device acquisition waits
        for the acquisition, and repeated stops share one teardown.
        """
        session = self._session
        if session is None:
            return None
        if self._stop_task is None or self._stop_task.done():
            if session.state is not SessionState.recording:
                return session
            self._stop_task = asyncio.create_task(self._finish_recording(session))
        await asyncio.shield(self._stop_task)
        return session

    async def _finish_recording(self, session: RecordingSession) -> None:
        await self._start_done.wait()
        backend, self._provider_session = self._provider_session, None
        try:
            await self._release_device()
            if session.state is not SessionState.recording or backend is None:
                return
            session.state = SessionState.processing
            async with self._transcribe_lock:
                await backend.stop()
        except AgriSenseError as exc:
            self._fail(session, exc)
        finally:
            await self._release_device()
        if session.state is SessionState.processing:
            self._complete(session)
        logger.info("Recording stopped (%s, state=%s)", session.provider, session.state)

    async def _release_device(self) -> None:
        """Stop every track of the captured stream exactly once."""
        stream, self._stream = self._stream, None
        pump, self._pump = self._pump, None
        if stream is not None:
            try:
                stopped = stream.stop_all_tracks()
                logger.debug("Released %d audio track(s)", stopped)
            except (OSError, RuntimeError) as exc:
                logger.warning("Error while releasing audio input: %s", exc)
        if pump is not None:
            await pump

    async def transcribe_file(self, clip: AudioClip, language: str) -> RecordingSession:
        """Transcribe an uploaded clip with the offline model.

        Never raises. Rejected while a microphone recording is running;
        otherwise waits for any transcription already in progress.
        """
        session = RecordingSession(
            provider=TranscriptionProvider.offline, language=Language(language)
        )
        current = self._session
        if current is not None and current.state is SessionState.recording:
            self._fail(session, SessionAlreadyActiveError())
            return session
        self._session = session
        if not clip.is_audio:
            self._fail(session, InvalidFileTypeError(clip.content_type))
            return session

        session.state = SessionState.processing
        session.started_at = datetime.now(UTC)
        logger.info("Transcribing uploaded file %s", clip.filename or "<unnamed>")
        async with self._transcribe_lock:
            outcome = await self._offline.transcribe(clip, session.language)
        if outcome.error is not None:
            self._fail(session, outcome.error)
        else:
            _ControllerSink(self, session).result(outcome.result)
        return session

    async def close(self) -> None:
        """Stop any active recording and drop every subscriber."""
        await self.stop()
        if self._preload_task is not None and not self._preload_task.done():
            self._preload_task.cancel()
        self._results.clear()
        self._errors.clear()

    def _complete(self, session: RecordingSession) -> None:
        session.state = SessionState.done
        session.finished_at = datetime.now(UTC)
        if session is self._session:
            self._provider_session = None

    def _fail(self, session: RecordingSession, error: AgriSenseError) -> None:
        logger.warning("Recording session failed: %s (%s)", error.detail, error.code)
        session.error = error
        session.state = SessionState.error
        session.finished_at = datetime.now(UTC)
        if session is self._session:
            self._provider_session = None
        self._errors.emit(error)


def _capability_name(provider: TranscriptionProvider) -> str:
    if provider is TranscriptionProvider.streaming:
        return "Speech recognition"
    return "Offline transcription"


def create_recording_controller(settings=None) -> RecordingController:
    """Build a controller wired to the default adapters."""
    settings = settings or get_settings()
    offline = OfflineModelBackend(settings=settings)
    sessions = {
        TranscriptionProvider.offline: create_session("offline", backend=offline, settings=settings),
        TranscriptionProvider.streaming: create_session("streaming", settings=settings),
    }
    return RecordingController(
        sessions,
        offline_backend=offline,
        audio_input=SoundDeviceInput(settings=settings),
        settings=settings,
    )
