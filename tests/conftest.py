"""Pytest configuration.

The bridge is driven by the Qt event loop (QProcess, signals), so a single
`QApplication` is created for the whole session as early as possible and
shut down cleanly at the end.

Engine processes are played by `helpers/fake_engine.py`, run through the
current interpreter.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest

FAKE_ENGINE = Path(__file__).resolve().parent / "helpers" / "fake_engine.py"

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QApplication exists before collecting/running tests."""

    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

    # Import lazily so non-Qt environments can still import this conftest.
    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    global _APP

    app = QApplication.instance()
    if app is None:
        # Keep a strong ref so it isn't GC'd mid-session.
        _APP = QApplication([])
    else:
        _APP = app


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    """Attempt a clean Qt shutdown to avoid lingering threads at interpreter exit."""

    try:
        from PySide6.QtWidgets import QApplication
    except ImportError:
        return

    app = QApplication.instance()
    if app is None:
        return

    app.quit()
    app.processEvents()


@pytest.fixture
def make_manager():
    """Factory for ProcessManagers whose engine is the fake engine script."""
    from PySide6.QtCore import QProcess

    from backup_shell.core_bridge.process_manager import ProcessManager

    created: list[ProcessManager] = []

    def _make(**kwargs: Any) -> ProcessManager:
        manager = ProcessManager(sys.executable, prefix_args=[str(FAKE_ENGINE)], **kwargs)
        created.append(manager)
        return manager

    yield _make

    # Do not leave engine processes behind when a test fails mid-command.
    for manager in created:
        for proc in manager.findChildren(QProcess):
            proc.kill()
            proc.waitForFinished(1000)


@pytest.fixture
def wait_done(qtbot):
    """Pump the event loop until a future settles."""

    def _wait(future, timeout: int = 10000):
        qtbot.waitUntil(future.done, timeout=timeout)
        return future

    return _wait
