"""Small helpers for composing command futures on the Qt thread."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

T = TypeVar("T")


def chain(source: Future, transform: Callable[[Any], T]) -> Future:
    """Future of ``transform(source.result())``.

    Failures of ``source`` and exceptions raised by ``transform`` are set on the
    returned future; nothing is raised into the code that settles ``source``.
    """
    target: Future = Future()

    def _forward(done: Future) -> None:
        if target.done():
            return
        if done.cancelled():
            target.cancel()
            return
        exc = done.exception()
        if exc is not None:
            target.set_exception(exc)
            return
        try:
            value = transform(done.result())
        except Exception as e:
            target.set_exception(e)
            return
        target.set_result(value)

    def _propagate_cancel(done: Future) -> None:
        if done.cancelled():
            source.cancel()

    target.add_done_callback(_propagate_cancel)
    source.add_done_callback(_forward)
    return target


def resolved(value: Any) -> Future:
    fut: Future = Future()
    fut.set_result(value)
    return fut


def rejected(exc: BaseException) -> Future:
    fut: Future = Future()
    fut.set_exception(exc)
    return fut
