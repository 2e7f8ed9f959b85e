"""Listener registration with explicit, idempotent disposal."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Any

from backup_shell.logger import get_logger

_logger = get_logger("subscriptions")


class Subscription:
    """Handle returned by every ``on_*`` registration.

    ``dispose()`` removes exactly the listener this handle was created for.
    Calling it again is a no-op.
    """

    def __init__(self, registry: ListenerRegistry, token: int) -> None:
        self._registry: ListenerRegistry | None = registry
        self._token = token

    @property
    def active(self) -> bool:
        return self._registry is not None

    def dispose(self) -> bool:
        registry, self._registry = self._registry, None
        if registry is None:
            return False
        return registry._remove(self._token)

    close = dispose

    def __call__(self) -> bool:
        return self.dispose()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()


class ListenerRegistry:
    """Ordered set of callbacks for one event channel."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: dict[int, Callable[..., Any]] = {}
        self._tokens = itertools.count(1)

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, callback: Callable[..., Any]) -> Subscription:
        if not callable(callback):
            raise TypeError(f"{self.name} listener must be callable")
        token = next(self._tokens)
        self._listeners[token] = callback
        _logger.debug("registered %s listener #%d", self.name, token)
        return Subscription(self, token)

    def _remove(self, token: int) -> bool:
        removed = self._listeners.pop(token, None) is not None
        if removed:
            _logger.debug("removed %s listener #%d", self.name, token)
        return removed

    def emit(self, *args: Any) -> None:
        # Snapshot so listeners may dispose themselves while being called.
        for token, callback in list(self._listeners.items()):
            try:
                callback(*args)
            except Exception:
                _logger.exception("%s listener #%d failed", self.name, token)
