from __future__ import annotations

import math

from PySide6.QtCore import Property, QObject, Signal


class TasksState(QObject):
    """Bindable state for engine commands in flight.

    - backupRunning: true while a start-backup or start-restore command runs.
    - backupPercent: last ``percentComplete`` seen in a ``PROGRESS:`` payload,
      clamped to 0..100, reset to 0 when a backup starts and set to 100 on
      ``COMPLETE:``.
    - activeCommands: number of engine processes currently running.
    """

    backupRunningChanged = Signal(bool)
    backupPercentChanged = Signal(int)
    activeCommandsChanged = Signal(int)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._backup_running = False
        self._backup_percent = 0
        self._active_commands = 0

    def _get_backup_running(self) -> bool:
        return bool(self._backup_running)

    backupRunning = Property(bool, _get_backup_running, notify=backupRunningChanged)  # type: ignore[arg-type]

    def _get_backup_percent(self) -> int:
        return int(self._backup_percent)

    backupPercent = Property(int, _get_backup_percent, notify=backupPercentChanged)  # type: ignore[arg-type]

    def _get_active_commands(self) -> int:
        return int(self._active_commands)

    activeCommands = Property(int, _get_active_commands, notify=activeCommandsChanged)  # type: ignore[arg-type]

    def _set_backup_running(self, running: bool) -> None:
        v = bool(running)
        if v == self._backup_running:
            return
        self._backup_running = v
        self.backupRunningChanged.emit(v)

    def _set_backup_percent(self, percent: float) -> None:
        # Engine JSON may carry Infinity or NaN; keep the last usable value.
        if not math.isfinite(percent):
            return
        p = int(max(0.0, min(100.0, percent)))
        if p == self._backup_percent:
            return
        self._backup_percent = p
        self.backupPercentChanged.emit(p)

    def _set_active_commands(self, count: int) -> None:
        c = max(0, int(count))
        if c == self._active_commands:
            return
        self._active_commands = c
        self.activeCommandsChanged.emit(c)
