from __future__ import annotations

import contextlib
import itertools
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from PySide6.QtCore import Property, QObject, QUrl, Signal, Slot
from PySide6.QtGui import QDesktopServices

from backup_shell import __version__
from backup_shell.app.state.tasks_state import TasksState
from backup_shell.app.subscriptions import ListenerRegistry, Subscription
from backup_shell.core_bridge import protocol
from backup_shell.core_bridge.errors import BoundaryViolation, BridgeError
from backup_shell.core_bridge.futures import chain, rejected, resolved
from backup_shell.core_bridge.service import BackupService
from backup_shell.core_bridge.types import BackupProfile, CommandResult, RestoreOptions
from backup_shell.logger import get_logger
from backup_shell.path_utils import abs_dir_str

_logger = get_logger("backend")

_ALLOWED_URL_SCHEMES = frozenset({"http", "https", "mailto"})
_BACKUP_OPERATIONS = frozenset({protocol.OP_START_BACKUP, protocol.OP_START_RESTORE})

# Payload keys each command accepts. Anything else is rejected at the boundary.
_COMMAND_FIELDS: dict[str, frozenset[str]] = {
    "executeCore": frozenset({"requestId", "args"}),
    "getBackupProfiles": frozenset({"requestId"}),
    "saveProfile": frozenset({"requestId", "profile"}),
    "deleteProfile": frozenset({"requestId", "profileId"}),
    "startBackup": frozenset({"requestId", "profileId", "dryRun"}),
    "cancelBackup": frozenset({"requestId", "backupId"}),
    "listBackups": frozenset({"requestId", "profileId"}),
    "backupDetails": frozenset({"requestId", "backupId"}),
    "browseBackup": frozenset({"requestId", "backupId", "path"}),
    "startRestore": frozenset(
        {"requestId", "profileId", "backupId", "targetPath", "selectedFiles", "restorePoint"}
    ),
    "getSystemInfo": frozenset({"requestId"}),
    "selectDirectory": frozenset({"requestId"}),
    "openExternalUrl": frozenset({"requestId", "url"}),
    "checkForUpdates": frozenset(),
    "log": frozenset({"level", "message"}),
}


DirectoryPicker = Callable[[Callable[[str], None]], None]

# Non-modal dialogs stay referenced here until they finish.
_open_dialogs: list[QObject] = []


def _default_directory_picker(done: Callable[[str], None]) -> None:
    """Show a non-modal directory dialog; ``done`` gets the path, or "" on cancel."""
    from PySide6.QtWidgets import QFileDialog  # noqa: PLC0415

    dialog = QFileDialog(None, "Select directory")
    dialog.setFileMode(QFileDialog.FileMode.Directory)
    dialog.setOption(QFileDialog.Option.ShowDirsOnly, True)
    chosen: list[str] = []
    dialog.fileSelected.connect(chosen.append)

    def _finished(_result: int) -> None:
        with contextlib.suppress(ValueError):
            _open_dialogs.remove(dialog)
        dialog.deleteLater()
        done(chosen[0] if chosen else "")

    dialog.finished.connect(_finished)
    _open_dialogs.append(dialog)
    dialog.open()


def _default_url_opener(url: QUrl) -> bool:
    return bool(QDesktopServices.openUrl(url))


class BackendFacade(QObject):
    """Single backend object exposed to the UI context.

    QML → Python: backend.dispatch(cmd, payload), answered once on backend.reply(dict)
    Python → QML: backend.coreOutput / coreError / backupProgress / backupComplete /
                  triggerBackup / updateStatus / event
    QML bindings: backend.tasks

    The facade relays; engine semantics live in BackupService.
    """

    # QObject already has an .event() handler method, so we must not shadow it.
    event_ = Signal(object, name="event")
    reply = Signal(object)
    coreOutput = Signal(str)
    coreError = Signal(str)
    backupProgress = Signal(object)
    backupComplete = Signal(object)
    triggerBackup = Signal()
    updateStatus = Signal(str, object)  # status, data

    def __init__(
        self,
        service: BackupService,
        *,
        directory_picker: DirectoryPicker | None = None,
        url_opener: Callable[[QUrl], bool] | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._service = service
        self._processes = service.processes
        self._directory_picker = directory_picker or _default_directory_picker
        self._url_opener = url_opener or _default_url_opener
        self._tasks = TasksState(self)
        self._ui_request_ids = itertools.count(1)

        self._output_listeners = ListenerRegistry("output")
        self._error_listeners = ListenerRegistry("error")
        self._progress_listeners = ListenerRegistry("progress")
        self._completion_listeners = ListenerRegistry("completion")
        self._trigger_listeners = ListenerRegistry("trigger")
        self._update_listeners = ListenerRegistry("update-status")

        # request_id -> operation for commands in flight
        self._running_ops: dict[str, str] = {}
        # backupId (announced in progress payloads) -> request_id running that backup
        self._running_backups: dict[str, str] = {}

        self._setup_process_signals()

    # ---- expose state objects to QML ----
    def _get_tasks(self) -> QObject:
        return self._tasks

    tasks = Property(QObject, _get_tasks, constant=True)  # type: ignore[arg-type]

    @property
    def service(self) -> BackupService:
        return self._service

    # ---- init wiring ----
    def _setup_process_signals(self) -> None:
        self._processes.commandStarted.connect(self._on_command_started)
        self._processes.commandFinished.connect(self._on_command_finished)
        self._processes.stdoutChunk.connect(self._on_stdout_chunk)
        self._processes.stderrChunk.connect(self._on_stderr_chunk)
        self._processes.progressEvent.connect(self._on_progress_event)
        self._processes.completionEvent.connect(self._on_completion_event)

    # ═══════════════════════════════════════════════════════════════════════
    # Python API
    # ═══════════════════════════════════════════════════════════════════════

    def execute_core(self, argv: object) -> Future:
        """Run the engine with a caller-built argument vector."""
        try:
            args = _coerce_args(argv)
        except BoundaryViolation as e:
            _logger.warning("executeCore rejected: %s", e)
            return rejected(e)
        return self._processes.execute(args)

    def get_backup_profiles(self) -> Future:
        return self._service.list_profiles()

    def select_directory(self) -> Future:
        """Future[list[str]] of the chosen directory, empty when canceled.

        Returns at once; the picker settles the future from the event loop.
        """
        future: Future = Future()

        def _done(chosen: str) -> None:
            if future.done():
                return
            chosen = str(chosen or "")
            _logger.info("directory selection result: %s", chosen or "canceled")
            if chosen.startswith("file:"):
                url = QUrl(chosen)
                if url.isLocalFile():
                    chosen = url.toLocalFile()
            future.set_result([abs_dir_str(chosen)] if chosen else [])

        self._directory_picker(_done)
        return future

    def open_external_url(self, url: str) -> bool:
        qurl = QUrl(str(url))
        scheme = qurl.scheme().lower()
        if not qurl.isValid() or scheme not in _ALLOWED_URL_SCHEMES:
            _logger.warning("refusing to open url with scheme %r: %s", scheme, url)
            return False
        _logger.info("opening external url: %s", url)
        return bool(self._url_opener(qurl))

    def check_for_updates(self) -> None:
        # The shell ships without an updater; report that to subscribers.
        _logger.info("checking for updates")
        self._emit_update_status("not-available", {"version": __version__})

    def trigger_backup(self) -> None:
        """Fire-and-forget 'perform backup now' notification (tray menu)."""
        _logger.info("backup triggered")
        self.triggerBackup.emit()
        self._trigger_listeners.emit()

    def on_output(self, callback: Callable[[str], Any]) -> Subscription:
        return self._output_listeners.add(callback)

    def on_error(self, callback: Callable[[str], Any]) -> Subscription:
        return self._error_listeners.add(callback)

    def on_progress(self, callback: Callable[[dict], Any]) -> Subscription:
        return self._progress_listeners.add(callback)

    def on_completion(self, callback: Callable[[dict], Any]) -> Subscription:
        return self._completion_listeners.add(callback)

    def on_trigger_event(self, callback: Callable[[], Any]) -> Subscription:
        return self._trigger_listeners.add(callback)

    def on_update_status(self, callback: Callable[[str, dict], Any]) -> Subscription:
        return self._update_listeners.add(callback)

    # ═══════════════════════════════════════════════════════════════════════
    # QML command entry
    # ═══════════════════════════════════════════════════════════════════════

    # NOTE: The second argument must be a Qt-friendly variant type; QML passes
    # JS objects that arrive as QJSValue/QVariant.
    @Slot(str, "QVariant", result=str)  # type: ignore[call-overload]
    def dispatch(self, cmd: str, payload: object | None = None) -> str:
        command = str(cmd or "").strip()
        data = _to_mapping(payload)
        request_id = str(data.get("requestId") or f"ui-{next(self._ui_request_ids)}")

        allowed = _COMMAND_FIELDS.get(command)
        if allowed is None:
            self._reply_error(request_id, command, BoundaryViolation(f"Unknown cmd: {command or '<empty>'}"))
            return request_id

        extra = sorted(set(data) - allowed)
        if extra:
            self._reply_error(
                request_id, command, BoundaryViolation(f"{command} does not accept: {', '.join(extra)}")
            )
            return request_id

        if command == "log":
            self._handle_log_cmd(data)
            return request_id

        if command == "checkForUpdates":
            self.check_for_updates()
            return request_id

        try:
            future = self._start_command(command, data)
        except BridgeError as e:
            self._reply_error(request_id, command, e)
            return request_id
        except (TypeError, ValueError) as e:
            self._reply_error(request_id, command, BoundaryViolation(f"Invalid payload for {command}: {e}"))
            return request_id

        future.add_done_callback(lambda f: self._reply_from_future(request_id, command, f))
        return request_id

    def _start_command(self, command: str, data: dict[str, Any]) -> Future:  # noqa: PLR0911
        if command == "executeCore":
            return chain(self.execute_core(data.get("args")), _result_to_dict)

        if command == "getBackupProfiles":
            return self.get_backup_profiles()

        if command == "saveProfile":
            profile = _to_mapping(data.get("profile"))
            if not profile:
                raise BoundaryViolation("saveProfile requires a profile object")
            return self._service.save_profile(BackupProfile.from_dict(profile))

        if command == "deleteProfile":
            return self._service.delete_profile(_require_str(data, "profileId"))

        if command == "startBackup":
            return self._service.start_backup(_require_str(data, "profileId"), dry_run=bool(data.get("dryRun")))

        if command == "cancelBackup":
            backup_id = _require_str(data, "backupId")
            return self._service.cancel_backup(backup_id, running_request_id=self._running_backups.get(backup_id))

        if command == "listBackups":
            return self._service.list_backups(_require_str(data, "profileId"))

        if command == "backupDetails":
            return self._service.backup_details(_require_str(data, "backupId"))

        if command == "browseBackup":
            return self._service.browse_backup(_require_str(data, "backupId"), str(data.get("path") or "/"))

        if command == "startRestore":
            files = data.get("selectedFiles") or []
            options = RestoreOptions(
                profile_id=_require_str(data, "profileId"),
                backup_id=_optional_str(data, "backupId"),
                target_path=_optional_str(data, "targetPath"),
                selected_files=tuple(_coerce_args(files)),
                restore_point=_optional_str(data, "restorePoint"),
            )
            return self._service.start_restore(options)

        if command == "getSystemInfo":
            return self._service.system_info()

        if command == "selectDirectory":
            return self.select_directory()

        if command == "openExternalUrl":
            return resolved(self.open_external_url(_require_str(data, "url")))

        raise BoundaryViolation(f"Unknown cmd: {command}")

    # ---- replies ----
    def _reply_from_future(self, request_id: str, command: str, future: Future) -> None:
        if future.cancelled():
            self._reply_error(request_id, command, BridgeError("Request cancelled"))
            return
        exc = future.exception()
        if exc is not None:
            self._reply_error(request_id, command, exc)
            return
        self.reply.emit(
            {"type": "reply", "requestId": request_id, "cmd": command, "ok": True, "result": future.result()}
        )

    def _reply_error(self, request_id: str, command: str, exc: BaseException) -> None:
        error = exc.to_dict() if isinstance(exc, BridgeError) else {"kind": "internal", "message": str(exc)}
        _logger.error("%s failed (%s): %s", command or "<empty>", request_id, error.get("message"))
        if isinstance(exc, BoundaryViolation):
            self.event_.emit({"type": "event", "name": "error", "level": "warning", "message": str(exc)})
        self.reply.emit({"type": "reply", "requestId": request_id, "cmd": command, "ok": False, "error": error})

    # ---- cmd handlers ----
    def _handle_log_cmd(self, data: dict[str, Any]) -> None:
        level = str(data.get("level") or "debug").lower()
        msg = str(data.get("message") or "")
        if not msg:
            return

        if level == "info":
            _logger.info("[UI] %s", msg)
        elif level in {"warn", "warning"}:
            _logger.warning("[UI] %s", msg)
        elif level == "error":
            _logger.error("[UI] %s", msg)
        else:
            _logger.debug("[UI] %s", msg)

    # ═══════════════════════════════════════════════════════════════════════
    # Process manager slots
    # ═══════════════════════════════════════════════════════════════════════

    @Slot(str, list)
    def _on_command_started(self, request_id: str, argv: list) -> None:
        operation = str(argv[0]) if argv else ""
        self._running_ops[request_id] = operation
        self._tasks._set_active_commands(len(self._running_ops))
        if operation in _BACKUP_OPERATIONS:
            self._tasks._set_backup_percent(0)
            self._tasks._set_backup_running(True)

    @Slot(str, dict)
    def _on_command_finished(self, request_id: str, result: dict) -> None:
        self._running_ops.pop(request_id, None)
        for backup_id in [b for b, r in self._running_backups.items() if r == request_id]:
            del self._running_backups[backup_id]
        self._tasks._set_active_commands(len(self._running_ops))
        if not any(op in _BACKUP_OPERATIONS for op in self._running_ops.values()):
            self._tasks._set_backup_running(False)

    @Slot(str, str)
    def _on_stdout_chunk(self, request_id: str, text: str) -> None:
        self.coreOutput.emit(text)
        self._output_listeners.emit(text)

    @Slot(str, str)
    def _on_stderr_chunk(self, request_id: str, text: str) -> None:
        self.coreError.emit(text)
        self._error_listeners.emit(text)

    @Slot(str, dict)
    def _on_progress_event(self, request_id: str, payload: dict) -> None:
        backup_id = payload.get("backupId")
        if backup_id:
            self._running_backups[str(backup_id)] = request_id
        with contextlib.suppress(KeyError, TypeError, ValueError, OverflowError):
            self._tasks._set_backup_percent(float(payload["percentComplete"]))
        self.backupProgress.emit(payload)
        self._progress_listeners.emit(payload)

    @Slot(str, dict)
    def _on_completion_event(self, request_id: str, payload: dict) -> None:
        self._tasks._set_backup_percent(100)
        self.backupComplete.emit(payload)
        self._completion_listeners.emit(payload)

    def _emit_update_status(self, status: str, data: dict[str, Any]) -> None:
        self.updateStatus.emit(status, data)
        self._update_listeners.emit(status, data)


def _result_to_dict(result: CommandResult) -> dict[str, Any]:
    return result.to_dict()


def _to_mapping(payload: object | None) -> dict[str, Any]:
    """Convert a QML payload (dict, QJSValue, QVariant map) to a plain dict."""
    if payload is None:
        return {}

    # QML often passes a JS object which arrives as QJSValue/QVariant.
    if payload.__class__.__name__ == "QJSValue" and hasattr(payload, "toVariant"):
        with contextlib.suppress(Exception):
            payload = payload.toVariant()  # type: ignore[assignment, attr-defined]

    if isinstance(payload, dict):
        return {str(k): v for k, v in payload.items()}

    return {}


def _coerce_args(payload: object) -> list[str]:
    """Argument vectors must be lists of strings; nothing is converted or joined."""
    if payload is not None and payload.__class__.__name__ == "QJSValue" and hasattr(payload, "toVariant"):
        with contextlib.suppress(Exception):
            payload = payload.toVariant()  # type: ignore[attr-defined]
    if not isinstance(payload, (list, tuple)):
        raise BoundaryViolation("args must be a list of strings")
    bad = [a for a in payload if not isinstance(a, str)]
    if bad:
        raise BoundaryViolation(f"args must be strings, got {type(bad[0]).__name__}")
    return list(payload)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise BoundaryViolation(f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise BoundaryViolation(f"'{key}' must be a string")
    return value
