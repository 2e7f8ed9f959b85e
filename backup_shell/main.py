import os
import sys
from pathlib import Path

from PySide6.QtCore import QTimer, QUrl
from PySide6.QtGui import QIcon
from PySide6.QtQml import QQmlApplicationEngine
from PySide6.QtWidgets import QApplication, QMessageBox, QStyle, QSystemTrayIcon

from backup_shell.app.backend import BackendFacade
from backup_shell.app.lifecycle import AppLifecycle
from backup_shell.core_bridge import BackupService, ProcessManager
from backup_shell.logger import get_logger
from backup_shell.path_utils import abs_path_str, is_executable_file
from backup_shell.settings_manager import SettingsManager

# --- CLI logging options -----------------------------------------------------
# To prevent Qt from exiting due to unknown options, we preemptively parse
# our own options, reflect them in environment variables (BACKUP_SHELL_LOG_LEVEL,
# BACKUP_SHELL_LOG_CATS), and remove them from sys.argv.


def _apply_cli_logging_options() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Backup Shell", add_help=False)
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    args, remaining = parser.parse_known_args(sys.argv[1:])
    if args.log_level:
        os.environ["BACKUP_SHELL_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["BACKUP_SHELL_LOG_CATS"] = args.log_cats
    sys.argv[:] = [sys.argv[0], *remaining]


_apply_cli_logging_options()
logger = get_logger("main")
_BASE_DIR = Path(getattr(sys, "_MEIPASS", Path(__file__).resolve().parent))
_UPDATE_CHECK_DELAY_MS = 3000


def _parse_args(argv: list[str]):
    import argparse

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--engine", help="Path to the backup engine executable")
    parser.add_argument("--settings", help="Path to settings.json")
    parser.add_argument("--qml", help="QML file to load as the main window")
    parser.add_argument("--hidden", action="store_true", help="Start minimized to the tray")
    args, _ = parser.parse_known_args(argv[1:])
    return args


def build_bridge(settings: SettingsManager, engine_path: str) -> BackendFacade:
    """Wire process manager, service and facade from settings."""
    processes = ProcessManager(
        engine_path,
        max_concurrent=settings.max_concurrent_commands,
        timeout_ms=settings.command_timeout_ms,
    )
    service = BackupService(processes, terminate_on_cancel=settings.terminate_on_cancel)
    backend = BackendFacade(service)
    # The facade owns the process manager so both live as long as the UI context.
    processes.setParent(backend)
    return backend


def tray_icon(app: QApplication) -> QIcon:
    """Application icon, else the bundled tray icon, else a stock drive icon."""
    icon = app.windowIcon()
    if not icon.isNull():
        return icon
    bundled = _BASE_DIR / "assets" / "tray-icon.png"
    if bundled.is_file():
        icon = QIcon(bundled.as_posix())
        if not icon.isNull():
            return icon
    logger.debug("no application icon, using stock tray icon")
    return app.style().standardIcon(QStyle.StandardPixmap.SP_DriveHDIcon)


def run(argv: list[str] | None = None) -> int:
    """Application entrypoint (packaging-friendly)."""
    if argv is None:
        argv = sys.argv

    args = _parse_args(argv)
    settings_path = abs_path_str(args.settings) if args.settings else (_BASE_DIR / "settings.json").as_posix()
    settings = SettingsManager(settings_path)

    app = QApplication(argv)
    app.setApplicationName("Backup Shell")
    # The tray keeps the app alive while the window is hidden.
    app.setQuitOnLastWindowClosed(False)

    lifecycle = AppLifecycle(minimize_to_tray=settings.minimize_to_tray)
    if not lifecycle.acquire_single_instance():
        return 0
    app.aboutToQuit.connect(lifecycle.mark_quitting)
    app.aboutToQuit.connect(lifecycle.release_single_instance)

    engine_path = abs_path_str(args.engine) if args.engine else settings.resolve_engine_path(_BASE_DIR)
    logger.info("core executable path: %s", engine_path)
    if not is_executable_file(engine_path):
        logger.error("core binary not found at: %s", engine_path)
        QMessageBox.critical(
            None,
            "Core Component Missing",
            f"The core backup component was not found at: {engine_path}",
        )
        lifecycle.release_single_instance()
        return 1
    logger.info("core binary verified")

    backend = build_bridge(settings, engine_path)
    lifecycle.backupTriggered.connect(backend.trigger_backup)
    lifecycle.updateCheckRequested.connect(backend.check_for_updates)

    qml_engine = QQmlApplicationEngine()
    qml_engine.rootContext().setContextProperty("backend", backend)
    qml_path = Path(args.qml) if args.qml else _BASE_DIR / "qml" / "Main.qml"
    if qml_path.is_file():
        qml_engine.load(QUrl.fromLocalFile(abs_path_str(qml_path)))
        roots = qml_engine.rootObjects()
        if roots:
            lifecycle.attach_window(roots[0])
            if not args.hidden:
                lifecycle.show_window()
        else:
            logger.error("failed to load UI from %s", qml_path)
    else:
        logger.warning("no UI found at %s; running tray-only", qml_path)

    if QSystemTrayIcon.isSystemTrayAvailable():
        lifecycle.create_tray(tray_icon(app))

    if bool(settings.get("check_updates_on_start")):
        QTimer.singleShot(_UPDATE_CHECK_DELAY_MS, backend.check_for_updates)

    return app.exec()


if __name__ == "__main__":
    sys.exit(run())
