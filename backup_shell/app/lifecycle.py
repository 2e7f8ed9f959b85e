"""Process-wide application state: quitting flag, main window, tray, single instance.

One ``AppLifecycle`` is created by ``main.run()`` and handed to the objects
that need it; there are no module-level window or tray globals.
"""

from __future__ import annotations

import contextlib
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QDir, QEvent, QLockFile, QObject, Signal
from PySide6.QtGui import QIcon
from PySide6.QtNetwork import QLocalServer, QLocalSocket

from backup_shell.logger import get_logger

_logger = get_logger("lifecycle")

_SHOW_MESSAGE = b"show"
_CONNECT_TIMEOUT_MS = 500


class AppLifecycle(QObject):
    """Owns the quitting flag and the single-instance guard.

    Signals:
        showWindowRequested: tray click or a second instance asked for the window
        backupTriggered: tray "Perform Backup Now"
        updateCheckRequested: tray "Check for Updates"
        quittingChanged: quitting flag flipped
    """

    showWindowRequested = Signal()
    backupTriggered = Signal()
    updateCheckRequested = Signal()
    quittingChanged = Signal(bool)

    def __init__(
        self,
        *,
        app_id: str = "backup-shell",
        minimize_to_tray: bool = True,
        lock_dir: str | Path | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.app_id = app_id
        self.minimize_to_tray = bool(minimize_to_tray)
        self._quitting = False
        self._lock_dir = Path(lock_dir) if lock_dir is not None else Path(QDir.tempPath())
        self._lock: QLockFile | None = None
        self._server: QLocalServer | None = None
        self._window: QObject | None = None
        self._tray = None

    # ---- quitting ----
    @property
    def is_quitting(self) -> bool:
        return self._quitting

    def mark_quitting(self) -> None:
        if self._quitting:
            return
        _logger.info("application is preparing to quit")
        self._quitting = True
        self.quittingChanged.emit(True)

    def request_quit(self) -> None:
        self.mark_quitting()
        app = QCoreApplication.instance()
        if app is not None:
            app.quit()

    def should_hide_on_close(self) -> bool:
        """Closing the main window hides it unless the app is really quitting."""
        return self.minimize_to_tray and not self._quitting

    # ---- main window ----
    def attach_window(self, window: QObject) -> None:
        self._window = window
        window.installEventFilter(self)
        self.showWindowRequested.connect(self.show_window)

    def show_window(self) -> None:
        window = self._window
        if window is None:
            return
        with contextlib.suppress(AttributeError, RuntimeError):
            if window.isMinimized():  # type: ignore[attr-defined]
                window.showNormal()  # type: ignore[attr-defined]
            window.show()  # type: ignore[attr-defined]
            window.raise_()  # type: ignore[attr-defined]
            window.requestActivate()  # type: ignore[attr-defined]

    def toggle_window(self) -> None:
        window = self._window
        if window is None:
            return
        if window.isVisible():  # type: ignore[attr-defined]
            _logger.info("hiding main window from tray click")
            window.hide()  # type: ignore[attr-defined]
        else:
            _logger.info("showing main window from tray click")
            self.show_window()

    def eventFilter(self, watched: QObject, event: QEvent) -> bool:  # noqa: N802
        if watched is self._window and event.type() == QEvent.Type.Close and self.should_hide_on_close():
            _logger.info("hiding window instead of closing")
            event.ignore()
            watched.hide()  # type: ignore[attr-defined]
            return True
        return super().eventFilter(watched, event)

    # ---- single instance ----
    def acquire_single_instance(self) -> bool:
        """Take the instance lock, or ask the running instance to show itself.

        Returns False when another instance already holds the lock.
        """
        lock = QLockFile(str(self._lock_dir / f"{self.app_id}.lock"))
        lock.setStaleLockTime(0)
        if not lock.tryLock(100):
            _logger.warning("another instance is already running")
            self._notify_running_instance()
            return False

        self._lock = lock
        _logger.info("got single instance lock")
        server = QLocalServer(self)
        QLocalServer.removeServer(self.app_id)
        if server.listen(self.app_id):
            server.newConnection.connect(self._on_second_instance)
            self._server = server
        else:
            _logger.warning("single instance server unavailable: %s", server.errorString())
        return True

    def release_single_instance(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        if self._lock is not None:
            self._lock.unlock()
            self._lock = None

    def _notify_running_instance(self) -> None:
        socket = QLocalSocket()
        socket.connectToServer(self.app_id)
        if socket.waitForConnected(_CONNECT_TIMEOUT_MS):
            socket.write(_SHOW_MESSAGE)
            socket.waitForBytesWritten(_CONNECT_TIMEOUT_MS)
            socket.disconnectFromServer()

    def _on_second_instance(self) -> None:
        server = self._server
        if server is None:
            return
        while server.hasPendingConnections():
            conn = server.nextPendingConnection()
            conn.readyRead.connect(lambda c=conn: self._read_instance_message(c))
            conn.disconnected.connect(conn.deleteLater)
            if conn.bytesAvailable():
                self._read_instance_message(conn)

    def _read_instance_message(self, conn: QLocalSocket) -> None:
        if bytes(conn.readAll().data()).strip() == _SHOW_MESSAGE:
            _logger.info("second instance detected, focusing main window")
            self.showWindowRequested.emit()

    # ---- tray ----
    def create_tray(self, icon: QIcon, tooltip: str = "Backup Shell"):
        """Build the tray icon and its menu. Needs a QApplication."""
        from PySide6.QtWidgets import QMenu, QSystemTrayIcon  # noqa: PLC0415

        tray = QSystemTrayIcon(icon, self)
        menu = QMenu()
        menu.addAction("Show Backup Shell").triggered.connect(self.showWindowRequested.emit)
        menu.addSeparator()
        menu.addAction("Perform Backup Now").triggered.connect(self.backupTriggered.emit)
        menu.addAction("Check for Updates").triggered.connect(self.updateCheckRequested.emit)
        menu.addSeparator()
        menu.addAction("Quit").triggered.connect(self.request_quit)
        tray.setContextMenu(menu)
        tray.setToolTip(tooltip)
        tray.activated.connect(self._on_tray_activated)
        tray.show()
        # QSystemTrayIcon does not take ownership of the menu.
        self._tray = (tray, menu)
        return tray

    def _on_tray_activated(self, reason) -> None:
        from PySide6.QtWidgets import QSystemTrayIcon  # noqa: PLC0415

        if reason == QSystemTrayIcon.ActivationReason.Trigger:
            self.toggle_window()
