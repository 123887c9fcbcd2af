"""In-process live update feed: pushes newly stored messages and cleared histories."""

import logging
from collections import defaultdict
from typing import Callable

from app.services.chat.types import Message

logger = logging.getLogger(__name__)

Listener = Callable[[Message], None]
ClearedListener = Callable[[str], None]


class Subscription:
    """Handle returned by LiveFeed.subscribe. Unsubscribing twice is harmless."""

    def __init__(
        self,
        feed: "LiveFeed",
        machine_id: str,
        listener: Listener,
        on_cleared: ClearedListener | None = None,
    ):
        self._feed = feed
        self.machine_id = machine_id
        self._listener = listener
        self._on_cleared = on_cleared
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self.machine_id, self._listener, self._on_cleared)
            self.active = False


class LiveFeed:
    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._cleared_listeners: dict[str, list[ClearedListener]] = defaultdict(list)

    def subscribe(
        self, machine_id: str, listener: Listener, on_cleared: ClearedListener | None = None
    ) -> Subscription:
        self._listeners[machine_id].append(listener)
        if on_cleared is not None:
            self._cleared_listeners[machine_id].append(on_cleared)
        return Subscription(self, machine_id, listener, on_cleared)

    def _remove(
        self, machine_id: str, listener: Listener, on_cleared: ClearedListener | None
    ) -> None:
        _discard(self._listeners, machine_id, listener)
        if on_cleared is not None:
            _discard(self._cleared_listeners, machine_id, on_cleared)

    def subscriber_count(self, machine_id: str) -> int:
        return len(self._listeners.get(machine_id, []))

    def publish(self, message: Message) -> None:
        for listener in list(self._listeners.get(message.machine_id, [])):
            try:
                listener(message)
            except Exception:
                logger.exception(f"Live feed listener failed for machine {message.machine_id}")

    def publish_cleared(self, machine_id: str) -> None:
        """Tell every session on the machine that its stored history is gone."""
        for listener in list(self._cleared_listeners.get(machine_id, [])):
            try:
                listener(machine_id)
            except Exception:
                logger.exception(f"Live feed clear listener failed for machine {machine_id}")


def _discard(registry: dict[str, list], machine_id: str, listener: Callable) -> None:
    listeners = registry.get(machine_id)
    if not listeners:
        return
    try:
        listeners.remove(listener)
    except ValueError:
        pass
    if not listeners:
        del registry[machine_id]


# Shared by every session in the process
live_feed = LiveFeed()
