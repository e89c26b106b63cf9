import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

NEW_ITEMS = "new_items"
UNREAD_COUNT = "unread_count"

Listener = Callable[[Any], Awaitable[None]]


class EventBus:
    """In-process publish/subscribe for sync events"""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it"""
        self._listeners[event].append(listener)

        def unsubscribe():
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    async def publish(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners[event]):
            try:
                await listener(payload)
            except Exception as e:
                # Listener failures stay isolated from the publisher
                logger.error(f"Listener for '{event}' failed: {e}")
