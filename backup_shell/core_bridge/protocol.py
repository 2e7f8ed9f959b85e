"""Per-operation argument vectors and stdout contracts of the engine CLI.

Builders return plain ``list[str]`` argument vectors; they never quote or
join anything, the process manager passes them to the engine verbatim.
Parsers take the captured stdout of a successful run.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import ResponseFormatError
from .stream_demux import starts_with_marker
from .types import BackupProfile, RestoreOptions

PROFILE_LINE_PREFIX = "- "

OP_LIST_PROFILES = "list-profiles"
OP_SAVE_PROFILE = "save-profile"
OP_DELETE_PROFILE = "delete-profile"
OP_START_BACKUP = "start-backup"
OP_CANCEL_BACKUP = "cancel-backup"
OP_LIST_BACKUPS = "list-backups"
OP_BACKUP_DETAILS = "backup-details"
OP_BROWSE_BACKUP = "browse-backup"
OP_START_RESTORE = "start-restore"
OP_SYSTEM_INFO = "system-info"

MUTATING_OPERATIONS = frozenset(
    {OP_SAVE_PROFILE, OP_DELETE_PROFILE, OP_START_BACKUP, OP_CANCEL_BACKUP, OP_START_RESTORE}
)


# ---- argv builders -----------------------------------------------------------


def list_profiles_args() -> list[str]:
    return ["--list-profiles"]


def save_profile_args(profile: BackupProfile | dict[str, Any]) -> list[str]:
    data = profile.to_json() if isinstance(profile, BackupProfile) else json.dumps(profile, ensure_ascii=False)
    return [OP_SAVE_PROFILE, "--profile-data", data]


def delete_profile_args(profile_id: str) -> list[str]:
    return [OP_DELETE_PROFILE, "--profile-id", str(profile_id)]


def start_backup_args(profile_id: str, *, dry_run: bool = False) -> list[str]:
    args = [OP_START_BACKUP, "--profile-id", str(profile_id)]
    if dry_run:
        args.append("--dry-run")
    return args


def cancel_backup_args(backup_id: str) -> list[str]:
    return [OP_CANCEL_BACKUP, "--backup-id", str(backup_id)]


def list_backups_args(profile_id: str) -> list[str]:
    return [OP_LIST_BACKUPS, "--profile-id", str(profile_id)]


def backup_details_args(backup_id: str) -> list[str]:
    return [OP_BACKUP_DETAILS, "--backup-id", str(backup_id)]


def browse_backup_args(backup_id: str, path: str = "/") -> list[str]:
    return [OP_BROWSE_BACKUP, "--backup-id", str(backup_id), "--path", str(path or "/")]


def start_restore_args(options: RestoreOptions) -> list[str]:
    args = [OP_START_RESTORE, "--profile-id", str(options.profile_id)]
    if options.backup_id:
        args += ["--backup-id", str(options.backup_id)]
    if options.target_path:
        args += ["--target-path", str(options.target_path)]
    if options.selected_files:
        args += ["--files", ",".join(str(f) for f in options.selected_files)]
    if options.restore_point:
        args += ["--restore-point", str(options.restore_point)]
    return args


def system_info_args() -> list[str]:
    return [OP_SYSTEM_INFO]


# ---- stdout parsers ----------------------------------------------------------


def parse_profile_names(stdout: str) -> list[str]:
    """Names from ``- <name>`` lines; any other line (headers, blanks) is ignored."""
    names: list[str] = []
    for line in stdout.splitlines():
        text = line.strip()
        if not text.startswith(PROFILE_LINE_PREFIX):
            continue
        name = text[len(PROFILE_LINE_PREFIX) :].strip()
        if name:
            names.append(name)
    return names


def parse_json_object(stdout: str, operation: str) -> dict[str, Any]:
    """Decode the single JSON object a data-returning operation prints.

    The whole of stdout is tried first, so marker text inside string values is
    left alone. Otherwise lines that start with ``PROGRESS:``/``COMPLETE:``
    (long-running operations print them before the object) are skipped, and if
    the rest is still not one JSON document the last line that is an object
    is used.
    """
    if not stdout.strip():
        raise ResponseFormatError(operation, "empty response", stdout)

    try:
        data = json.loads(stdout)
    except ValueError:
        data = _parse_json_fallback(stdout, operation)

    if not isinstance(data, dict):
        raise ResponseFormatError(operation, f"expected a JSON object, got {type(data).__name__}", stdout)
    return data


def _parse_json_fallback(stdout: str, operation: str) -> Any:
    body_lines = [ln for ln in stdout.splitlines() if ln.strip() and not starts_with_marker(ln)]
    if not body_lines:
        raise ResponseFormatError(operation, "empty response", stdout)
    try:
        return json.loads("\n".join(body_lines))
    except ValueError:
        pass
    for line in reversed(body_lines):
        candidate = line.strip()
        if not candidate.startswith("{"):
            continue
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    raise ResponseFormatError(operation, "stdout is not JSON", stdout)


def require_field(data: dict[str, Any], key: str, operation: str, stdout: str = "") -> Any:
    if key not in data or data[key] is None:
        raise ResponseFormatError(operation, f"missing '{key}'", stdout)
    return data[key]


def parse_backup_id(stdout: str) -> str:
    data = parse_json_object(stdout, OP_START_BACKUP)
    return str(require_field(data, "backupId", OP_START_BACKUP, stdout))


def parse_restore_id(stdout: str) -> str:
    data = parse_json_object(stdout, OP_START_RESTORE)
    return str(require_field(data, "restoreId", OP_START_RESTORE, stdout))


def parse_backups_list(stdout: str) -> list[dict[str, Any]]:
    data = parse_json_object(stdout, OP_LIST_BACKUPS)
    backups = require_field(data, "backups", OP_LIST_BACKUPS, stdout)
    if not isinstance(backups, list):
        raise ResponseFormatError(OP_LIST_BACKUPS, "'backups' is not a list", stdout)
    return backups


def parse_browse_items(stdout: str) -> list[dict[str, Any]]:
    data = parse_json_object(stdout, OP_BROWSE_BACKUP)
    items = require_field(data, "items", OP_BROWSE_BACKUP, stdout)
    if not isinstance(items, list):
        raise ResponseFormatError(OP_BROWSE_BACKUP, "'items' is not a list", stdout)
    return items
