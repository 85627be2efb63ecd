"""Ordered, synchronous delivery of lifecycle events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from annopack.models.events import LifecycleEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=LifecycleEvent)


class EventBus:
    """Deliver lifecycle events to subscribers in the order they were committed.

    Handlers run synchronously on the publishing thread. Inside a
    ``transaction()`` block events published by the same thread are held
    back and delivered when its outermost block exits without an exception,
    so consumers never observe a half-applied state change. Other threads
    keep publishing immediately.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[LifecycleEvent], list[Callable]] = defaultdict(list)
        self._lock = threading.RLock()
        self._local = threading.local()

    def subscribe(
        self, event_type: type[E], handler: Callable[[E], None]
    ) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: LifecycleEvent) -> None:
        """Deliver ``event`` now, or at commit time inside a transaction."""
        pending = getattr(self._local, "pending", None)
        if pending is not None:
            pending.append(event)
            return
        self._deliver(event)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold back this thread's events until its outermost transaction commits."""
        outermost = getattr(self._local, "pending", None) is None
        if outermost:
            self._local.pending = []
        committed = False
        try:
            yield
            committed = True
        finally:
            if outermost:
                pending = self._local.pending
                self._local.pending = None
                if committed:
                    for event in pending:
                        self._deliver(event)

    def _deliver(self, event: LifecycleEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        logger.debug("Delivering %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            handler(event)
