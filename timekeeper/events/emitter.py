"""CompletionEmitter — singleton that publishes task completion events."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCompleted:
    """Payload published when a task reaches its completion time.

    The backing record is deleted or rescheduled right after publication, so
    listeners should copy what they need before doing further awaited work.
    """

    id: str
    group: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "group": self.group}


Listener = Callable[[TaskCompleted], Awaitable[None] | None]


@dataclass
class _Subscription:
    listener: Listener
    group: str | None


class CompletionEmitter:
    """Delivers TaskCompleted events to subscribed listeners.

    Singleton accessed via ``CompletionEmitter.get()``.
    """

    _instance: CompletionEmitter | None = None

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    @classmethod
    def get(cls) -> CompletionEmitter:
        """Return the singleton instance, creating it if needed."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset singleton — for tests only."""
        cls._instance = None

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, listener: Listener, group: str | None = None) -> Callable[[], None]:
        """Register *listener*, optionally only for events of *group*.

        Listeners may be plain functions or coroutine functions. Returns a
        callable that removes the subscription.
        """
        subscription = _Subscription(listener=listener, group=group)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def emit(self, event: TaskCompleted) -> int:
        """Deliver *event* to every matching listener, in subscription order.

        A failing listener is logged and skipped. Returns the number of
        listeners that handled the event without raising.
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.group is not None and subscription.group != event.group:
                continue
            try:
                result = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception(
                    "Completion listener failed for %s/%s", event.group, event.id
                )
        logger.debug(
            "Emitted completion for %s/%s to %d listener(s)", event.group, event.id, delivered
        )
        return delivered
