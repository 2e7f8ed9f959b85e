"""Value types passed between the engine process and the UI context."""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Literal

StreamName = Literal["stdout", "stderr"]

_request_counter = itertools.count(1)


def next_request_id() -> str:
    return f"cmd-{next(_request_counter)}"


@dataclass(frozen=True)
class CommandRequest:
    """One engine invocation. Arguments are stored as a tuple so they cannot change after spawn."""

    operation: str
    args: tuple[str, ...]
    request_id: str = field(default_factory=next_request_id)

    @classmethod
    def create(cls, argv: list[str] | tuple[str, ...], operation: str = "execute") -> CommandRequest:
        return cls(operation=str(operation), args=tuple(str(a) for a in argv))


@dataclass(frozen=True)
class CommandResult:
    success: bool
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    spawn_error: str | None = None
    timed_out: bool = False

    def __post_init__(self) -> None:
        if self.success and self.exit_code != 0:
            raise ValueError("a successful CommandResult requires exit_code == 0")

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used across the UI boundary."""
        out: dict[str, Any] = {
            "success": self.success,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }
        if self.spawn_error is not None:
            out["spawnError"] = self.spawn_error
        if self.timed_out:
            out["timedOut"] = True
        return out


@dataclass(frozen=True)
class StreamChunk:
    request_id: str
    stream: StreamName
    text: str


@dataclass(frozen=True)
class ProgressEvent:
    request_id: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class CompletionEvent:
    request_id: str
    payload: dict[str, Any]


@dataclass
class RetentionPolicy:
    keep_daily: int = 7
    keep_weekly: int = 4
    keep_monthly: int = 12


@dataclass
class BackupProfile:
    """A named backup configuration.

    The engine owns the persisted copy; this object only exists to be marshalled
    into ``save-profile`` calls.
    """

    id: str
    name: str
    source_path: str = ""
    destination_path: str = ""
    exclude_paths: list[str] = field(default_factory=list)
    compression_level: int = 6
    encryption_enabled: bool = False
    schedule_enabled: bool = False
    schedule_frequency: str = "daily"
    schedule_time: str = "00:00"
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sourcePath": self.source_path,
            "destinationPath": self.destination_path,
            "excludePaths": list(self.exclude_paths),
            "compressionLevel": self.compression_level,
            "encryptionEnabled": self.encryption_enabled,
            "scheduleEnabled": self.schedule_enabled,
            "scheduleFrequency": self.schedule_frequency,
            "scheduleTime": self.schedule_time,
            "retention": {
                "keepDaily": self.retention.keep_daily,
                "keepWeekly": self.retention.keep_weekly,
                "keepMonthly": self.retention.keep_monthly,
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupProfile:
        retention = data.get("retention") or {}
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            source_path=str(data.get("sourcePath") or ""),
            destination_path=str(data.get("destinationPath") or ""),
            exclude_paths=[str(p) for p in data.get("excludePaths") or []],
            compression_level=int(data.get("compressionLevel", 6)),
            encryption_enabled=bool(data.get("encryptionEnabled", False)),
            schedule_enabled=bool(data.get("scheduleEnabled", False)),
            schedule_frequency=str(data.get("scheduleFrequency") or "daily"),
            schedule_time=str(data.get("scheduleTime") or "00:00"),
            retention=RetentionPolicy(
                keep_daily=int(retention.get("keepDaily", 7)),
                keep_weekly=int(retention.get("keepWeekly", 4)),
                keep_monthly=int(retention.get("keepMonthly", 12)),
            ),
        )


@dataclass(frozen=True)
class RestoreOptions:
    profile_id: str
    backup_id: str | None = None
    target_path: str | None = None
    selected_files: tuple[str, ...] = ()
    restore_point: str | None = None
