"""Error taxonomy for engine-facing failures.

None of these are retried inside the bridge; they surface to the immediate
caller through the command's future.
"""

from __future__ import annotations

from typing import Any

from .types import CommandResult


class BridgeError(Exception):
    kind = "bridge"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class CommandError(BridgeError):
    """Engine invocation failed; ``result`` holds everything that was captured."""

    kind = "command"

    def __init__(self, message: str, result: CommandResult) -> None:
        super().__init__(message)
        self.result = result

    @property
    def exit_code(self) -> int | None:
        return self.result.exit_code

    @property
    def stdout(self) -> str:
        return self.result.stdout

    @property
    def stderr(self) -> str:
        return self.result.stderr

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), **self.result.to_dict()}


class SpawnError(CommandError):
    """Executable missing, unreadable or not executable."""

    kind = "spawn"


class NonZeroExit(CommandError):
    """Engine ran and signaled failure (nonzero exit code or crash)."""

    kind = "nonzero-exit"


class CommandTimeout(CommandError):
    """Engine exceeded the configured command timeout and was killed."""

    kind = "timeout"


class ResponseFormatError(BridgeError):
    """Exit code was 0 but stdout did not have the shape the operation expects."""

    kind = "response-format"

    def __init__(self, operation: str, message: str, stdout: str = "") -> None:
        super().__init__(f"Invalid response format from {operation} command: {message}")
        self.operation = operation
        self.stdout = stdout

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "operation": self.operation, "stdout": self.stdout}


class ProtocolParseError(BridgeError):
    """A single PROGRESS:/COMPLETE: line carried an unusable payload. Logged and dropped."""

    kind = "protocol-parse"

    def __init__(self, marker: str, line: str, reason: str) -> None:
        super().__init__(f"{marker} payload rejected ({reason}): {line[:200]}")
        self.marker = marker
        self.line = line


class BoundaryViolation(BridgeError):
    """A call from the UI context asked for something the bridge does not expose."""

    kind = "boundary"
