"""
MODULE OVERVIEW:
A tiny in-process notification bus for client-side UI events.

WHAT IS HAPPENING HERE:
The chat turn and the conversation sidebar do not know about each other.
When a turn learns its conversation id for the first time it publishes
`conversation-created`; when the server names the conversation it publishes
`title-updated`. The sidebar subscribes to both and refreshes itself.
Subscriptions are scoped: `subscription()` guarantees the listener is
detached on every exit path.
"""

from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, List
from loguru import logger

CONVERSATION_CREATED = "conversation-created"
TITLE_UPDATED = "title-updated"

Listener = Callable[[Dict[str, Any]], Awaitable[None]]


class UiEventBus:
    """
    A minimal topic pub/sub bus. One failing listener never blocks the others.
    """
    def __init__(self):
        self._subscribers: Dict[str, List[Listener]] = {}

    def subscribe(self, topic: str, callback: Listener) -> Callable[[], None]:
        self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._subscribers.get(topic, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    @contextmanager
    def subscription(self, topic: str, callback: Listener) -> Iterator[None]:
        unsubscribe = self.subscribe(topic, callback)
        try:
            yield
        finally:
            unsubscribe()

    def listener_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, topic: str, detail: Dict[str, Any]) -> None:
        logger.debug(f"bus_topic={topic} detail={detail}")
        for sub in list(self._subscribers.get(topic, [])):
            try:
                await sub(detail)
            except Exception as e:
                logger.error(f"Error in subscriber during publish topic={topic}: {e}")
