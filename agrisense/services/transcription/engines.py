"""Continuous speech recognition engines.

A :class:`RecognitionEngine` behaves like a browser speech-recognition
object: it is configured with a locale, started with a listener, and
reports ``start`` / ``result`` / ``error`` / ``end`` events on the event
loop thread. ``GoogleRecognitionEngine`` implements it with the
``speech_recognition`` package (microphone via PyAudio, Google Web Speech
API for recognition).
"""

import asyncio
import errno
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache

import speech_recognition as sr

from agrisense.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionConfig:
    lang: str
    continuous: bool = False
    interim_results: bool = True
    max_alternatives: int = 3


@dataclass(frozen=True)
class RecognitionAlternative:
    transcript: str
    confidence: float = 0.0


@dataclass(frozen=True)
class RecognitionResultItem:
    alternatives: tuple[RecognitionAlternative, ...]
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionEvent:
    """One engine event.

    ``results`` holds every result of the session so far; entries from
    ``result_index`` on are the ones that changed with this event.
    """

    kind: str  # "start", "result", "error" or "end"
    results: tuple[RecognitionResultItem, ...] = field(default_factory=tuple)
    result_index: int = 0
    error: str | None = None


RecognitionListener = Callable[[RecognitionEvent], None]


@lru_cache(maxsize=1)
def microphone_available() -> bool:
    """Whether PyAudio can see an input device. Checked once per process."""
    try:
        names = sr.Microphone.list_microphone_names()
    except (AttributeError, OSError) as exc:
        # AttributeError: PyAudio is not installed
        logger.debug("Streaming recognition unavailable: %s", exc)
        return False
    return bool(names)


class RecognitionEngine(ABC):
    """One recognition run bound to a fixed configuration."""

    def __init__(self, config: RecognitionConfig, settings=None) -> None:
        self.config = config
        self._settings = settings or get_settings()

    @classmethod
    @abstractmethod
    def is_supported(cls) -> bool:
        """Capability check for this engine on the current host."""

    @abstractmethod
    def start(self, listener: RecognitionListener) -> None:
        """Begin recognition; events are delivered to ``listener``.

        Must be called from a coroutine running on the event loop.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop listening; audio captured so far is still recognized."""

    @abstractmethod
    def abort(self) -> None:
        """Stop listening and discard any pending result."""


class GoogleRecognitionEngine(RecognitionEngine):
    """Single-utterance recognition through ``speech_recognition``.

    The Google Web Speech endpoint only returns final results, so no
    interim events are produced. Listening cannot be interrupted mid-phrase;
    ``stop`` and ``abort`` take effect once the current phrase ends, which
    ``phrase_time_limit`` bounds.

    Args:
        config: Locale and result options.
        settings: Optional Settings instance (defaults to get_settings()).
        recognizer: Pre-built ``sr.Recognizer`` (tests inject a mock).
        microphone_factory: Callable returning an ``sr.Microphone``-like source.
    """

    def __init__(
        self,
        config: RecognitionConfig,
        settings=None,
        recognizer: sr.Recognizer | None = None,
        microphone_factory: Callable[..., sr.AudioSource] | None = None,
    ) -> None:
        super().__init__(config, settings)
        self._listen_timeout = self._settings.streaming_listen_timeout
        self._phrase_time_limit = self._settings.streaming_phrase_time_limit
        self._sample_rate = self._settings.audio_sample_rate
        self._recognizer = recognizer or sr.Recognizer()
        self._microphone_factory = microphone_factory or sr.Microphone
        self._thread: threading.Thread | None = None
        self._aborted = threading.Event()
        self._emit: RecognitionListener | None = None

    @classmethod
    def is_supported(cls) -> bool:
        return microphone_available()

    def start(self, listener: RecognitionListener) -> None:
        if self._thread is not None:
            raise RuntimeError("Recognition has already started")
        loop = asyncio.get_running_loop()

        def emit(event: RecognitionEvent) -> None:
            try:
                loop.call_soon_threadsafe(listener, event)
            except RuntimeError:
                logger.debug("Dropping %s event: event loop is closed", event.kind)

        self._emit = emit
        self._thread = threading.Thread(target=self._run, name="speech-recognition", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        # listen() returns at the end of the phrase; it is still recognized
        logger.debug("Stop requested; finishing the current phrase")

    def abort(self) -> None:
        self._aborted.set()

    def _run(self) -> None:
        emit = self._emit
        emit(RecognitionEvent(kind="start"))
        try:
            event = self._recognize_once()
            if event is not None and not self._aborted.is_set():
                emit(event)
        finally:
            emit(RecognitionEvent(kind="end"))

    def _recognize_once(self) -> RecognitionEvent | None:
        try:
            with self._microphone_factory(sample_rate=self._sample_rate) as source:
                self._recognizer.adjust_for_ambient_noise(source, duration=0.3)
                audio = self._recognizer.listen(
                    source,
                    timeout=self._listen_timeout,
                    phrase_time_limit=self._phrase_time_limit,
                )
            if self._aborted.is_set():
                return None
            response = self._recognizer.recognize_google(
                audio, language=self.config.lang, show_all=True
            )
        except (sr.WaitTimeoutError, sr.UnknownValueError):
            return RecognitionEvent(kind="error", error="no-speech")
        except sr.RequestError as exc:
            logger.warning("Speech recognition request failed: %s", exc)
            return RecognitionEvent(kind="error", error="network")
        except PermissionError:
            return RecognitionEvent(kind="error", error="not-allowed")
        except OSError as exc:
            if exc.errno in (errno.EACCES, errno.EPERM):
                return RecognitionEvent(kind="error", error="not-allowed")
            logger.warning("Microphone capture failed: %s", exc)
            return RecognitionEvent(kind="error", error="audio-capture")
        except AttributeError as exc:
            # sr.Microphone raises AttributeError when PyAudio is missing
            logger.warning("Microphone capture unavailable: %s", exc)
            return RecognitionEvent(kind="error", error="audio-capture")
        except Exception as exc:
            logger.exception("Unexpected speech recognition failure")
            return RecognitionEvent(kind="error", error=str(exc) or type(exc).__name__)

        alternatives = self._parse_alternatives(response)
        if not alternatives:
            return RecognitionEvent(kind="error", error="no-speech")
        item = RecognitionResultItem(alternatives=alternatives, is_final=True)
        return RecognitionEvent(kind="result", results=(item,), result_index=0)

    def _parse_alternatives(self, response) -> tuple[RecognitionAlternative, ...]:
        """Turn a ``show_all`` response into at most ``max_alternatives`` entries."""
        if not isinstance(response, dict):
            return ()
        parsed = []
        for entry in response.get("alternative", []):
            transcript = (entry.get("transcript") or "").strip()
            if transcript:
                parsed.append(
                    RecognitionAlternative(
                        transcript=transcript,
                        confidence=float(entry.get("confidence") or 0.0),
                    )
                )
        return tuple(parsed[: self.config.max_alternatives])

