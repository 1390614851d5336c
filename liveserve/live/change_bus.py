"""
Change Bus for the live-reload server

In-process publish/subscribe hub. File watchers (and manual reload triggers)
publish ChangeEvents; every connected live session subscribes a callback that
pushes a reload frame to its browser.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable


@dataclass
class ChangeEvent:
    """Represents one detected (or manually requested) change."""

    root: Path | None = None
    name: str | None = None
    timestamp: float = field(default_factory=time.time)
    source: str = "watcher"

    def __post_init__(self) -> None:
        if isinstance(self.root, str):
            self.root = Path(self.root)

        if self.timestamp <= 0:
            raise ValueError("Timestamp must be positive")

    def describe(self) -> str:
        """Short human readable description used in log lines."""
        if self.root is None:
            return self.source
        if self.name is None:
            return str(self.root)
        return f"{self.root}: {self.name}"


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeBus:
    """
    Fan-out hub for change notifications.

    Callbacks are invoked synchronously, in subscription order, for every
    published event. Events published while nobody is subscribed are dropped.
    A callback that raises is logged and skipped; the remaining subscribers
    still receive the event.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

        # dict keeps insertion order, which is the delivery order
        self._subscribers: dict[ChangeCallback, None] = {}

        self.stats = {
            "events_published": 0,
            "deliveries": 0,
            "delivery_errors": 0,
        }

    def subscribe(self, callback: ChangeCallback) -> None:
        """Register a callback. Subscribing the same callback twice is a no-op."""
        self._subscribers.setdefault(callback, None)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        """Remove a callback. Unknown callbacks are ignored."""
        self._subscribers.pop(callback, None)

    def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every current subscriber.

        Args:
            event: The change to announce

        Returns:
            Number of callbacks that completed without raising
        """
        self.stats["events_published"] += 1
        delivered = 0

        # Snapshot so callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                self.stats["delivery_errors"] += 1
                self.logger.warning(f"Change subscriber {callback!r} failed: {e}")

        self.stats["deliveries"] += delivered
        if not self._subscribers:
            self.logger.debug(f"No subscribers for change ({event.describe()})")

        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def is_subscribed(self, callback: ChangeCallback) -> bool:
        return callback in self._subscribers
