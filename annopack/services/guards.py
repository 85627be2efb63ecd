"""Single-slot exclusion tokens for in-flight package operations."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from annopack.errors import OperationInProgressError

REGISTRY_KEY = "*registry*"


class OperationGuard:
    """Track which operation currently holds each package (or the registry).

    Claims are all-or-nothing: either every requested key is free and all of
    them are taken, or nothing is taken and ``OperationInProgressError`` is
    raised.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[str, str] = {}

    @contextmanager
    def claim(self, operation: str, *keys: str) -> Iterator[None]:
        """Hold ``keys`` for ``operation`` for the duration of the block."""
        with self._lock:
            for key in keys:
                active = self._in_flight.get(key)
                if active is not None:
                    raise OperationInProgressError(operation, key, active)
            for key in keys:
                self._in_flight[key] = operation
        try:
            yield
        finally:
            with self._lock:
                for key in keys:
                    self._in_flight.pop(key, None)

    def active_operation(self, key: str) -> str | None:
        """Return the operation holding ``key``, if any."""
        with self._lock:
            return self._in_flight.get(key)

    def is_idle(self) -> bool:
        """Whether no operation is in flight."""
        with self._lock:
            return not self._in_flight
