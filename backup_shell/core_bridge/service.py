"""Backup workflows expressed as engine commands.

Each method builds the argument vector for one operation, runs it through the
``ProcessManager`` and returns a future of the parsed value. Failures arrive
as ``CommandError`` / ``ResponseFormatError`` on that future; only
``system_info`` substitutes fallback data.
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any

from backup_shell.logger import get_logger

from . import protocol
from .fallback import default_system_info, with_fallback
from .futures import chain
from .process_manager import ProcessManager
from .types import BackupProfile, CommandResult, RestoreOptions

_logger = get_logger("service")


class BackupService:
    def __init__(self, processes: ProcessManager, *, terminate_on_cancel: bool = False) -> None:
        self._processes = processes
        self.terminate_on_cancel = bool(terminate_on_cancel)

    @property
    def processes(self) -> ProcessManager:
        return self._processes

    def _run(self, argv: list[str], operation: str) -> Future:
        return self._processes.execute(argv, operation=operation)

    # ---- profiles ----

    def list_profiles(self) -> Future:
        """Future[list[str]] of profile names."""

        def _parse(result: CommandResult) -> list[str]:
            names = protocol.parse_profile_names(result.stdout)
            _logger.info("found %d profiles", len(names))
            return names

        return chain(self._run(protocol.list_profiles_args(), protocol.OP_LIST_PROFILES), _parse)

    def save_profile(self, profile: BackupProfile | dict[str, Any]) -> Future:
        name = profile.name if isinstance(profile, BackupProfile) else profile.get("name")
        _logger.info("saving profile: %s", name)
        return chain(self._run(protocol.save_profile_args(profile), protocol.OP_SAVE_PROFILE), lambda _r: True)

    def delete_profile(self, profile_id: str) -> Future:
        _logger.info("deleting profile: %s", profile_id)
        return chain(
            self._run(protocol.delete_profile_args(profile_id), protocol.OP_DELETE_PROFILE), lambda _r: True
        )

    # ---- backups ----

    def start_backup(self, profile_id: str, *, dry_run: bool = False) -> Future:
        """Future[str] of the engine-assigned backup id."""
        _logger.info("starting backup for profile %s (dry_run=%s)", profile_id, dry_run)
        return chain(
            self._run(protocol.start_backup_args(profile_id, dry_run=dry_run), protocol.OP_START_BACKUP),
            lambda r: protocol.parse_backup_id(r.stdout),
        )

    def cancel_backup(self, backup_id: str, *, running_request_id: str | None = None) -> Future:
        """Send ``cancel-backup`` to the engine.

        The engine stops its own job. When ``terminate_on_cancel`` is set and
        the caller names the request that started the job, that process is
        terminated once the cancel command has been answered.
        """
        _logger.info("canceling backup: %s", backup_id)
        pending = self._run(protocol.cancel_backup_args(backup_id), protocol.OP_CANCEL_BACKUP)
        if self.terminate_on_cancel and running_request_id:
            pending.add_done_callback(lambda _f: self._processes.terminate(running_request_id))
        return chain(pending, lambda _r: True)

    def list_backups(self, profile_id: str) -> Future:
        return chain(
            self._run(protocol.list_backups_args(profile_id), protocol.OP_LIST_BACKUPS),
            lambda r: protocol.parse_backups_list(r.stdout),
        )

    def backup_details(self, backup_id: str) -> Future:
        return chain(
            self._run(protocol.backup_details_args(backup_id), protocol.OP_BACKUP_DETAILS),
            lambda r: protocol.parse_json_object(r.stdout, protocol.OP_BACKUP_DETAILS),
        )

    def browse_backup(self, backup_id: str, path: str = "/") -> Future:
        return chain(
            self._run(protocol.browse_backup_args(backup_id, path), protocol.OP_BROWSE_BACKUP),
            lambda r: protocol.parse_browse_items(r.stdout),
        )

    # ---- restore ----

    def start_restore(self, options: RestoreOptions) -> Future:
        """Future[str] of the engine-assigned restore id."""
        _logger.info("starting restore for profile %s", options.profile_id)
        return chain(
            self._run(protocol.start_restore_args(options), protocol.OP_START_RESTORE),
            lambda r: protocol.parse_restore_id(r.stdout),
        )

    # ---- informational ----

    def system_info(self) -> Future:
        """Future[dict] that never fails; engine failures yield the fallback payload."""
        parsed = chain(
            self._run(protocol.system_info_args(), protocol.OP_SYSTEM_INFO),
            lambda r: protocol.parse_json_object(r.stdout, protocol.OP_SYSTEM_INFO),
        )
        return with_fallback(parsed, default_system_info, operation=protocol.OP_SYSTEM_INFO)
