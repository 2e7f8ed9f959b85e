from __future__ import annotations

from concurrent.futures import Future

import pytest

from backup_shell.core_bridge.errors import ResponseFormatError
from backup_shell.core_bridge.fallback import (
    DEFAULT_SYSTEM_INFO,
    default_system_info,
    is_fallback,
    with_fallback,
)
from backup_shell.core_bridge.futures import chain, rejected, resolved


def test_default_payload_is_fixed_and_marked_estimated() -> None:
    info = default_system_info()
    assert info["storage"] == {"total": 1000000000, "used": 450000000, "available": 550000000}
    assert info["cpu"] == {"usage": 15}
    assert info["memory"] == {"usagePercent": 35}
    assert info["uptime"] == "5 days, 7 hours"
    assert is_fallback(info)

    info["storage"]["used"] = 0
    assert DEFAULT_SYSTEM_INFO["storage"]["used"] == 450000000
    assert "estimated" not in DEFAULT_SYSTEM_INFO


def test_with_fallback_substitutes_on_failure() -> None:
    fut = with_fallback(rejected(ResponseFormatError("system-info", "bad")), default_system_info, operation="x")
    assert fut.result() == default_system_info()


def test_with_fallback_passes_real_value_through() -> None:
    value = {"uptime": "1 day"}
    fut = with_fallback(resolved(value), default_system_info, operation="x")
    assert fut.result() is value
    assert not is_fallback(fut.result())


def test_chain_sets_transform_errors_on_future() -> None:
    def _boom(_v):
        raise ResponseFormatError("start-backup", "bad")

    fut = chain(resolved("x"), _boom)
    assert isinstance(fut.exception(), ResponseFormatError)


def test_chain_forwards_source_failure_and_value() -> None:
    err = RuntimeError("x")
    assert chain(rejected(err), lambda v: v).exception() is err
    assert chain(resolved(2), lambda v: v * 3).result() == 6


def test_chain_waits_for_pending_source() -> None:
    source: Future = Future()
    fut = chain(source, lambda v: v + 1)
    assert not fut.done()
    source.set_result(1)
    assert fut.result() == 2


def test_cancelling_chained_future_cancels_pending_source() -> None:
    source: Future = Future()
    fut = chain(source, lambda v: v)
    assert fut.cancel()
    assert source.cancelled()
    with pytest.raises(Exception):
        fut.result(timeout=0)
