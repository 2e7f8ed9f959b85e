"""Split engine output into plain text, progress markers and completion markers.

The OS delivers pipe data in arbitrary chunks, so stdout is reassembled into
complete lines before classification; a ``PROGRESS:`` marker split across two
reads is still recognized. stderr is relayed as-is and never scanned.

Keep this module free of Qt dependencies.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from backup_shell.logger import get_logger

from .errors import ProtocolParseError
from .types import CompletionEvent, ProgressEvent, StreamChunk

_logger = get_logger("demux")

PROGRESS_MARKER = "PROGRESS:"
COMPLETE_MARKER = "COMPLETE:"

ChunkCallback = Callable[[StreamChunk], None]
ProgressCallback = Callable[[ProgressEvent], None]
CompletionCallback = Callable[[CompletionEvent], None]


class LineAssembler:
    """Buffers a partial trailing line between chunks."""

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, text: str) -> list[str]:
        """Return the lines completed by ``text``, each keeping its ``\\n``."""
        if not text:
            return []
        data = self._pending + text
        cut = data.rfind("\n")
        if cut < 0:
            self._pending = data
            return []
        self._pending = data[cut + 1 :]
        return [seg + "\n" for seg in data[:cut].split("\n")]

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return rest


def find_marker(line: str) -> str | None:
    """Marker carried by ``line``; ``PROGRESS:`` wins when both are present."""
    if PROGRESS_MARKER in line:
        return PROGRESS_MARKER
    if COMPLETE_MARKER in line:
        return COMPLETE_MARKER
    return None


def decode_marker_payload(line: str, marker: str) -> dict[str, Any]:
    """Parse the JSON object that follows ``marker`` up to the end of ``line``."""
    raw = line.split(marker, 1)[1].strip()
    if not raw:
        raise ProtocolParseError(marker, line, "empty payload")
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise ProtocolParseError(marker, line, f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolParseError(marker, line, f"expected object, got {type(payload).__name__}")
    return payload


def starts_with_marker(line: str) -> bool:
    """True for lines that are nothing but a marker record, e.g. ``PROGRESS:{...}``."""
    text = line.lstrip()
    return text.startswith(PROGRESS_MARKER) or text.startswith(COMPLETE_MARKER)


class OutputDemultiplexer:
    """Per-process classifier.

    Marker lines are decoded into events and are not relayed as plain stdout
    text. They are still part of the captured stdout kept by the process
    manager.
    """

    def __init__(
        self,
        request_id: str,
        *,
        on_chunk: ChunkCallback,
        on_progress: ProgressCallback,
        on_completion: CompletionCallback,
    ) -> None:
        self.request_id = request_id
        self._on_chunk = on_chunk
        self._on_progress = on_progress
        self._on_completion = on_completion
        self._stdout_lines = LineAssembler()
        self.dropped_markers = 0

    def feed_stdout(self, text: str) -> None:
        plain: list[str] = []
        for line in self._stdout_lines.feed(text):
            if not self._dispatch_marker(line):
                plain.append(line)
        if plain:
            self._on_chunk(StreamChunk(self.request_id, "stdout", "".join(plain)))

    def feed_stderr(self, text: str) -> None:
        if text:
            self._on_chunk(StreamChunk(self.request_id, "stderr", text))

    def close(self) -> None:
        """Classify whatever is left once the process has exited."""
        rest = self._stdout_lines.flush()
        if rest and not self._dispatch_marker(rest):
            self._on_chunk(StreamChunk(self.request_id, "stdout", rest))

    def _dispatch_marker(self, line: str) -> bool:
        marker = find_marker(line)
        if marker is None:
            return False
        try:
            payload = decode_marker_payload(line, marker)
        except ProtocolParseError as e:
            self.dropped_markers += 1
            _logger.warning("[%s] %s", self.request_id, e)
            return True
        if marker == PROGRESS_MARKER:
            self._on_progress(ProgressEvent(self.request_id, payload))
        else:
            self._on_completion(CompletionEvent(self.request_id, payload))
        return True
