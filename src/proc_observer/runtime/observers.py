"""Observer registry for runner events.

Three independent channels (output line, error line, exit) each fan out
to zero or more callbacks. The lock guards registration only; callbacks
run outside it on whichever thread detected the event.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

__all__ = [
    "Channel",
    "ObserverRegistry",
    "Subscription",
]

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    """Notification channels."""

    OUTPUT = "output"
    ERROR = "error"
    EXIT = "exit"


class Subscription:
    """Handle returned by ``ObserverRegistry.subscribe``.

    Example:
        ```python
        sub = registry.subscribe(Channel.OUTPUT, print)
        ...
        sub.cancel()
        ```
    """

    def __init__(
        self,
        registry: "ObserverRegistry",
        channel: Channel,
        callback: Callable[..., Any],
    ) -> None:
        self._registry = registry
        self.channel = channel
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Remove the callback from its channel. Safe to call twice."""
        if not self._active:
            return
        self._active = False
        self._registry._remove(self)

    def __repr__(self) -> str:
        name = getattr(self.callback, "__qualname__", repr(self.callback))
        return f"Subscription(channel={self.channel.value}, callback={name}, active={self._active})"


class ObserverRegistry:
    """Thread-safe mapping from channel to an ordered list of callbacks.

    ``dispatch`` takes a snapshot under the lock and invokes callbacks
    after releasing it, so a callback may subscribe or cancel without
    deadlocking. A callback that raises is logged and skipped; delivery
    continues with the next one.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[Channel, list[Subscription]] = {
            channel: [] for channel in Channel
        }
        self._log = log or logger

    def subscribe(self, channel: Channel, callback: Callable[..., Any]) -> Subscription:
        if not callable(callback):
            raise TypeError(f"Observer for {channel.value} must be callable, got {callback!r}")
        subscription = Subscription(self, channel, callback)
        with self._lock:
            self._subscriptions[channel].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions[subscription.channel]
            if subscription in subs:
                subs.remove(subscription)

    def count(self, channel: Channel) -> int:
        with self._lock:
            return len(self._subscriptions[channel])

    def clear(self) -> None:
        with self._lock:
            for channel, subs in self._subscriptions.items():
                for sub in subs:
                    sub._active = False
                subs.clear()

    def dispatch(self, channel: Channel, *args: Any) -> int:
        """Invoke every callback on ``channel`` with ``args``.

        Returns:
            Number of callbacks that completed without raising
        """
        with self._lock:
            snapshot = list(self._subscriptions[channel])

        delivered = 0
        for sub in snapshot:
            if not sub.active:
                continue
            try:
                sub.callback(*args)
                delivered += 1
            except Exception:
                self._log.exception(f"Observer {sub.callback!r} on {channel.value} channel raised")
        return delivered
