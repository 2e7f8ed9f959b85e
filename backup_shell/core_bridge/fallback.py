"""Degraded-mode defaults for informational reads.

Only reads that the UI can live without (currently ``system-info``) go
through here. State-changing operations always propagate their failure.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from backup_shell.logger import get_logger

_logger = get_logger("fallback")

ESTIMATED_FLAG = "estimated"

DEFAULT_SYSTEM_INFO: dict[str, Any] = {
    "storage": {
        "total": 1000000000,
        "used": 450000000,
        "available": 550000000,
    },
    "cpu": {
        "usage": 15,
    },
    "memory": {
        "usagePercent": 35,
    },
    "uptime": "5 days, 7 hours",
}


def default_system_info() -> dict[str, Any]:
    """A fresh copy of the fixed payload, flagged so the UI can show it as estimated."""
    info = copy.deepcopy(DEFAULT_SYSTEM_INFO)
    info[ESTIMATED_FLAG] = True
    return info


def is_fallback(payload: object) -> bool:
    return isinstance(payload, dict) and payload.get(ESTIMATED_FLAG) is True


def with_fallback(source: Future, default_factory: Callable[[], Any], *, operation: str) -> Future:
    """Future that always succeeds: the source value, or ``default_factory()`` on any failure."""
    target: Future = Future()

    def _forward(done: Future) -> None:
        if target.done():
            return
        if done.cancelled():
            _logger.warning("%s cancelled, using fallback data", operation)
            target.set_result(default_factory())
            return
        exc = done.exception()
        if exc is not None:
            _logger.warning("%s unavailable, using fallback data: %s", operation, exc)
            target.set_result(default_factory())
            return
        target.set_result(done.result())

    source.add_done_callback(_forward)
    return target
