"""Revocable publish/subscribe channels.

Every ``subscribe`` returns a :class:`Subscription` so the owner of a
listener can release it explicitly instead of piling up callbacks across
repeated registrations.
"""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle for one registered callback."""

    def __init__(self, channel: "EventChannel", callback: Callable) -> None:
        self._channel = channel
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Detach the callback. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._channel._discard(self)


class EventChannel(Generic[T]):
    """Ordered fan-out of values to subscribed callbacks.

    Args:
        name: Label used in log messages.
    """

    def __init__(self, name: str = "event") -> None:
        self.name = name
        self._subscriptions: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def emit(self, value: T) -> None:
        """Deliver ``value`` to every subscriber in registration order.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.callback(value)
            except Exception:
                logger.exception("Subscriber for %s channel failed", self.name)

    def clear(self) -> None:
        """Cancel every subscription."""
        for subscription in list(self._subscriptions):
            subscription.cancel()

    def _discard(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
