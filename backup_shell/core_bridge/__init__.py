"""Core command bridge - runs the backup engine and decodes what it prints.

This package provides:
- Process execution (process_manager)
- Output classification (stream_demux)
- Engine CLI contract (protocol) and workflows on top of it (service)
- Fallback data for informational reads (fallback)

Usage:
    from backup_shell.core_bridge import BackupService, ProcessManager

    processes = ProcessManager("/opt/utm/bin/utm-core")
    processes.progressEvent.connect(on_progress)
    service = BackupService(processes)
    service.list_profiles().add_done_callback(on_profiles)
"""

from .errors import (
    BoundaryViolation,
    BridgeError,
    CommandError,
    CommandTimeout,
    NonZeroExit,
    ProtocolParseError,
    ResponseFormatError,
    SpawnError,
)
from .process_manager import PendingCommand, ProcessManager
from .service import BackupService
from .types import BackupProfile, CommandRequest, CommandResult, RestoreOptions

__all__ = [
    "BackupProfile",
    "BackupService",
    "BoundaryViolation",
    "BridgeError",
    "CommandError",
    "CommandRequest",
    "CommandResult",
    "CommandTimeout",
    "NonZeroExit",
    "PendingCommand",
    "ProcessManager",
    "ProtocolParseError",
    "ResponseFormatError",
    "RestoreOptions",
    "SpawnError",
]
