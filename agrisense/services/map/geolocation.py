"""One-shot current-position lookups.

The host supplies a :class:`GeolocationProvider`; when it does not, the
capability is reported as unavailable rather than failing generically.
Provider errors are classified into permission, unavailable and timeout.
"""

import asyncio
import logging
import time
from typing import Protocol

from agrisense.core.config import get_settings
from agrisense.core.exceptions import (
    GeolocationError,
    GeolocationUnavailableError,
    LocationPermissionDeniedError,
    LocationTimeoutError,
    PositionUnavailableError,
)
from agrisense.core.models import Position, PositionOptions

logger = logging.getLogger(__name__)


class GeolocationProvider(Protocol):
    """Host capability that can produce a single position fix.

    Implementations raise ``PermissionError`` when the user refuses access,
    ``TimeoutError`` when no fix arrives in time, and any other exception
    when the position cannot be determined.
    """

    async def get_current_position(self, options: PositionOptions) -> Position: ...


class GeolocationService:
    """Current position with caching and error classification.

    Args:
        provider: Host geolocation capability, or None when the host has none.
        options: Request options (defaults from settings).
        settings: Optional Settings instance (defaults to get_settings()).
    """

    def __init__(
        self,
        provider: GeolocationProvider | None = None,
        options: PositionOptions | None = None,
        settings=None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider
        self.options = options or PositionOptions(
            enable_high_accuracy=settings.geolocation_high_accuracy,
            timeout=settings.geolocation_timeout,
            maximum_age=settings.geolocation_maximum_age,
        )
        self._last_position: Position | None = None

    def is_available(self) -> bool:
        return self._provider is not None

    async def get_current_position(self) -> Position:
        """Return a position no older than ``options.maximum_age``.

        Raises:
            GeolocationUnavailableError: The host has no geolocation capability.
            LocationPermissionDeniedError: The user refused access.
            LocationTimeoutError: No fix within ``options.timeout``.
            PositionUnavailableError: The host could not determine a position.
        """
        if self._provider is None:
            raise GeolocationUnavailableError()

        cached = self._last_position
        if cached is not None and time.monotonic() - cached.timestamp <= self.options.maximum_age:
            return cached

        try:
            position = await asyncio.wait_for(
                self._provider.get_current_position(self.options),
                timeout=self.options.timeout,
            )
        except GeolocationError:
            raise
        except PermissionError as exc:
            logger.warning("Location permission denied: %s", exc)
            raise LocationPermissionDeniedError() from exc
        except TimeoutError as exc:
            logger.warning("Location request timed out after %ss", self.options.timeout)
            raise LocationTimeoutError() from exc
        except Exception as exc:
            logger.warning("Location unavailable: %s", exc)
            raise PositionUnavailableError() from exc

        if not position.timestamp:
            position = position.model_copy(update={"timestamp": time.monotonic()})
        self._last_position = position
        return position
