"""Unit tests for the RecordingController orchestrator.

The microphone is a FakeAudioInput, the Whisper model a MagicMock and the
streaming engine a FakeRecognitionEngine, so the controller's own
guarantees are what is under test: device release exactly once, idempotent
stop, stop during device acquisition, per-controller serialized
transcription, and errors delivered as state plus callbacks.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agrisense.core.exceptions import (
    CapabilityUnavailableError,
    InvalidFileTypeError,
    MicrophoneAccessDeniedError,
    NoAudioRecordedError,
    SessionAlreadyActiveError,
    SpeechNetworkError,
)
from agrisense.core.models import (
    AudioClip,
    Language,
    SessionState,
    TranscriptionProvider,
    TranscriptionResult,
)
from agrisense.services.orchestrator import (
    RecordingController,
    RecordingSession,
    create_recording_controller,
)
from agrisense.services.transcription import (
    OfflineModelBackend,
    OfflineSession,
    StreamingBackend,
    StreamingSession,
    TranscriptionOutcome,
    WhisperModelLoader,
    create_session,
)
from agrisense.services.transcription.engines import (
    RecognitionAlternative,
    RecognitionResultItem,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_model(text="നമസ്കാരം"):
    model = MagicMock()
    model.transcribe.side_effect = lambda *a, **kw: (
        iter([SimpleNamespace(text=text, start=0.0, end=1.0)]),
        None,
    )
    return model


def _item(text, confidence=0.0, final=False):
    return RecognitionResultItem(
        alternatives=(RecognitionAlternative(text, confidence),), is_final=final
    )


class Collected:
    """Records everything a controller publishes."""

    def __init__(self, controller):
        self.results: list[TranscriptionResult] = []
        self.errors = []
        controller.on_result(self.results.append)
        controller.on_error(self.errors.append)


@pytest.fixture
def model():
    return _mock_model()


@pytest.fixture
def offline_backend(model, settings):
    loader = WhisperModelLoader(settings=settings, factory=MagicMock(return_value=model))
    return OfflineModelBackend(loader=loader, settings=settings)


@pytest.fixture
def make_controller(offline_backend, fake_engine_cls, fake_audio_input, settings):
    """Build a controller; keyword overrides replace the default collaborators."""
    fake_engine_cls.end_on_stop = True

    def factory(audio_input=None, offline=None):
        offline = offline or offline_backend
        sessions = {
            TranscriptionProvider.offline: OfflineSession(offline, settings=settings),
            TranscriptionProvider.streaming: StreamingSession(
                StreamingBackend(engine_cls=fake_engine_cls, settings=settings), settings=settings
            ),
        }
        return RecordingController(
            sessions,
            offline_backend=offline,
            audio_input=audio_input or fake_audio_input,
            settings=settings,
        )

    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


# ---------------------------------------------------------------------------
# Offline recording
# ---------------------------------------------------------------------------


class TestOfflineRecording:
    async def test_start_acquires_device_with_constraints(self, controller, fake_audio_input):
        session = await controller.start("offline", "malayalam")

        assert session.state is SessionState.recording
        assert session.started_at is not None
        constraints = fake_audio_input.constraints
        assert constraints.sample_rate == 16000
        assert constraints.channels == 1
        assert constraints.echo_cancellation is True
        assert constraints.noise_suppression is True
        await controller.stop()

    async def test_stop_delivers_one_final_result(self, controller, model, fake_audio_input):
        collected = Collected(controller)
        await controller.start("offline", "malayalam")
        await asyncio.sleep(0)  # let the pump forward the queued chunks

        session = await controller.stop()

        assert session.state is SessionState.done
        assert [r.is_final for r in collected.results] == [True]
        assert session.result.text == "നമസ്കാരം"
        assert model.transcribe.call_count == 1
        assert fake_audio_input.streams[0].release_calls == 1

    async def test_device_released_before_processing(self, controller, fake_audio_input):
        await controller.start("offline", "english")
        track = fake_audio_input.streams[0].tracks[0]
        states = []
        original = track._on_stop
        track._on_stop = lambda: (states.append(controller.session.state), original())

        await controller.stop()

        assert states == [SessionState.recording]

    async def test_stop_twice_releases_once(self, controller, model, fake_audio_input):
        await controller.start("offline", "english")
        first = await controller.stop()
        second = await controller.stop()

        assert first is second
        assert fake_audio_input.streams[0].release_calls == 1
        assert model.transcribe.call_count == 1

    async def test_concurrent_stops_share_one_teardown(self, controller, model, fake_audio_input):
        await controller.start("offline", "english")
        await asyncio.gather(controller.stop(), controller.stop(), controller.stop())

        assert fake_audio_input.streams[0].release_calls == 1
        assert model.transcribe.call_count == 1

    async def test_stop_during_acquisition_is_deferred(self, make_controller, audio_input_factory, pcm_factory):
        gate = asyncio.Event()
        audio_input = audio_input_factory(blocks=[pcm_factory(1.0)], gate=gate)
        controller = make_controller(audio_input=audio_input)

        start = asyncio.create_task(controller.start("offline", "english"))
        await asyncio.sleep(0)
        stop = asyncio.create_task(controller.stop())
        await asyncio.sleep(0.01)
        assert not stop.done()

        gate.set()
        session = await start
        await stop

        assert session.state is SessionState.done
        assert audio_input.streams[0].release_calls == 1

    async def test_microphone_failure(self, make_controller, audio_input_factory):
        audio_input = audio_input_factory(error=MicrophoneAccessDeniedError("Permission denied"))
        controller = make_controller(audio_input=audio_input)
        collected = Collected(controller)

        session = await controller.start("offline", "english")

        assert session.state is SessionState.error
        assert isinstance(session.error, MicrophoneAccessDeniedError)
        assert collected.errors == [session.error]
        assert await controller.stop() is session
        assert session.state is SessionState.error

    async def test_nothing_recorded(self, make_controller, audio_input_factory):
        audio_input = audio_input_factory(blocks=[])
        controller = make_controller(audio_input=audio_input)

        await controller.start("offline", "english")
        session = await controller.stop()

        assert session.state is SessionState.error
        assert isinstance(session.error, NoAudioRecordedError)
        assert audio_input.streams[0].release_calls == 1

    async def test_failing_audio_consumer_does_not_break_stop(self, controller, fake_audio_input):
        offline_session = controller._sessions[TranscriptionProvider.offline]
        offline_session.feed_audio = MagicMock(side_effect=ValueError("malformed block"))
        await controller.start("offline", "english")
        await asyncio.sleep(0)

        session = await controller.stop()

        assert session.state is SessionState.error
        assert isinstance(session.error, NoAudioRecordedError)
        assert fake_audio_input.streams[0].release_calls == 1

    async def test_transcription_failure_still_releases_device(
        self, make_controller, fake_audio_input, settings
    ):
        loader = WhisperModelLoader(settings=settings, factory=MagicMock(side_effect=OSError("x")))
        offline = OfflineModelBackend(loader=loader, settings=settings)
        controller = make_controller(offline=offline)

        await controller.start("offline", "english")
        session = await controller.stop()

        assert session.state is SessionState.error
        assert fake_audio_input.streams[0].release_calls == 1

    async def test_start_while_recording_is_rejected(self, controller, fake_audio_input):
        collected = Collected(controller)
        active = await controller.start("offline", "english")
        rejected = await controller.start("offline", "hindi")

        assert rejected.state is SessionState.error
        assert isinstance(rejected.error, SessionAlreadyActiveError)
        assert controller.session is active
        assert active.state is SessionState.recording
        assert fake_audio_input.open_calls == 1
        assert len(collected.errors) == 1
        await controller.stop()

    async def test_new_session_after_done(self, controller, fake_audio_input):
        await controller.start("offline", "english")
        await controller.stop()
        session = await controller.start("offline", "hindi")
        assert session.state is SessionState.recording
        assert fake_audio_input.open_calls == 2
        await controller.stop()


# ---------------------------------------------------------------------------
# Streaming recording
# ---------------------------------------------------------------------------


class TestStreamingRecording:
    async def test_unavailable_rejects_without_device_access(
        self, controller, fake_engine_cls, fake_audio_input
    ):
        fake_engine_cls.supported = False
        collected = Collected(controller)

        session = await controller.start("streaming", "malayalam")

        assert session.state is SessionState.error
        assert isinstance(session.error, CapabilityUnavailableError)
        assert collected.errors == [session.error]
        assert fake_audio_input.open_calls == 0

    async def test_interim_results_keep_recording_state(self, controller, fake_engine_cls):
        collected = Collected(controller)
        session = await controller.start("streaming", "malayalam")
        engine = fake_engine_cls.instances[0]

        engine.emit("result", results=(_item("ന"),), result_index=0)
        engine.emit("result", results=(_item("നമ"),), result_index=0)
        assert session.state is SessionState.recording

        engine.emit("result", results=(_item("നമസ്കാരം", 0.9, final=True),), result_index=0)
        assert [r.text for r in collected.results] == ["ന", "നമ", "നമസ്കാരം"]
        assert session.state is SessionState.done
        assert session.result.is_final

    async def test_stream_does_not_touch_microphone(self, controller, fake_audio_input):
        await controller.start("streaming", "english")
        assert fake_audio_input.open_calls == 0
        await controller.stop()

    async def test_stop_keeps_whatever_arrived(self, controller, fake_engine_cls):
        collected = Collected(controller)
        await controller.start("streaming", "english")
        engine = fake_engine_cls.instances[0]
        engine.emit("result", results=(_item("hel"),), result_index=0)

        session = await controller.stop()
        engine.emit("result", results=(_item("hello", final=True),), result_index=0)

        assert session.state is SessionState.done
        assert engine.stopped
        assert [r.text for r in collected.results] == ["hel"]

    async def test_stop_keeps_the_phrase_in_progress(self, controller, fake_engine_cls):
        fake_engine_cls.end_on_stop = False
        session = await controller.start("streaming", "malayalam")
        engine = fake_engine_cls.instances[0]

        stopping = asyncio.create_task(controller.stop())
        await asyncio.sleep(0.01)
        assert session.state is SessionState.processing
        engine.emit("result", results=(_item("വിള", 0.9, final=True),), result_index=0)
        engine.emit("end")
        await stopping

        assert session.state is SessionState.done
        assert session.result.text == "വിള"

    async def test_engine_error(self, controller, fake_engine_cls):
        collected = Collected(controller)
        session = await controller.start("streaming", "english")
        fake_engine_cls.instances[0].emit("error", error="network")

        assert session.state is SessionState.error
        assert isinstance(collected.errors[0], SpeechNetworkError)
        assert await controller.stop() is session

    async def test_engine_end_without_result(self, controller, fake_engine_cls):
        session = await controller.start("streaming", "english")
        fake_engine_cls.instances[0].emit("end")
        assert session.state is SessionState.done
        assert session.result is None


# ---------------------------------------------------------------------------
# File upload
# ---------------------------------------------------------------------------


class TestTranscribeFile:
    async def test_audio_file(self, controller, wav_clip):
        collected = Collected(controller)
        session = await controller.transcribe_file(wav_clip, "english")

        assert session.state is SessionState.done
        assert session.provider is TranscriptionProvider.offline
        assert collected.results[0].is_final

    async def test_non_audio_file_rejected(self, make_controller):
        offline = AsyncMock(spec=OfflineModelBackend)
        controller = make_controller(offline=offline)
        clip = AudioClip(data=b"%PDF-1.4", content_type="application/pdf", filename="notes.pdf")

        session = await controller.transcribe_file(clip, "english")

        assert session.state is SessionState.error
        assert isinstance(session.error, InvalidFileTypeError)
        offline.transcribe.assert_not_called()

    async def test_rejected_while_recording(self, controller, wav_clip):
        active = await controller.start("offline", "english")
        session = await controller.transcribe_file(wav_clip, "english")
        assert isinstance(session.error, SessionAlreadyActiveError)
        assert controller.session is active
        await controller.stop()

    async def test_transcriptions_are_sequential(self, make_controller, wav_clip):
        running = 0
        peak = 0

        async def slow_transcribe(clip, language):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return TranscriptionOutcome(
                result=TranscriptionResult(
                    text="ok", language=language, provider=TranscriptionProvider.offline
                )
            )

        offline = AsyncMock(spec=OfflineModelBackend)
        offline.transcribe.side_effect = slow_transcribe
        controller = make_controller(offline=offline)

        sessions = await asyncio.gather(
            controller.transcribe_file(wav_clip, "english"),
            controller.transcribe_file(wav_clip, "hindi"),
        )

        assert peak == 1
        assert all(s.state is SessionState.done for s in sessions)

    async def test_failure_is_reported(self, make_controller, wav_clip, settings):
        loader = WhisperModelLoader(settings=settings, factory=MagicMock(side_effect=RuntimeError("x")))
        controller = make_controller(offline=OfflineModelBackend(loader=loader, settings=settings))
        collected = Collected(controller)

        session = await controller.transcribe_file(wav_clip, "english")

        assert session.state is SessionState.error
        assert collected.errors == [session.error]


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class TestControllerMisc:
    async def test_preload_model(self, controller, offline_backend):
        assert await controller.preload_model() is True
        assert offline_backend.is_ready

    async def test_failing_subscriber_does_not_break_session(self, controller, wav_clip):
        controller.on_result(MagicMock(side_effect=RuntimeError("UI crashed")))
        session = await controller.transcribe_file(wav_clip, "english")
        assert session.state is SessionState.done

    async def test_close_stops_and_unsubscribes(self, controller, fake_audio_input):
        results = []
        subscription = controller.on_result(results.append)
        await controller.start("offline", "english")

        await controller.close()

        assert controller.session.is_finished
        assert fake_audio_input.streams[0].release_calls == 1
        assert not subscription.active

    async def test_stop_without_session(self, controller):
        assert await controller.stop() is None

    async def test_unknown_provider_raises(self, controller):
        with pytest.raises(ValueError):
            await controller.start("cloud", "english")

    async def test_factory_wires_default_adapters(self, settings):
        controller = create_recording_controller(settings)
        assert isinstance(controller, RecordingController)
        assert controller.session is None
        assert isinstance(controller._sessions[TranscriptionProvider.offline], OfflineSession)
        assert isinstance(controller._sessions[TranscriptionProvider.streaming], StreamingSession)

    def test_create_session_rejects_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown transcription provider"):
            create_session("cloud")


def test_elapsed_seconds():
    session = RecordingSession(provider=TranscriptionProvider.offline, language=Language.english)
    assert session.elapsed_seconds == 0.0
