"""Engine process execution.

Every ``execute`` call owns one ``QProcess``, one pair of output buffers and
one ``OutputDemultiplexer``. Nothing is shared between concurrent calls. All
I/O is driven by the Qt event loop; ``execute`` returns a future immediately.
"""

from __future__ import annotations

import codecs
from collections import deque
from concurrent.futures import Future
from typing import Any

from PySide6.QtCore import QObject, QProcess, QTimer, Signal

from backup_shell.logger import get_logger

from .errors import CommandError, CommandTimeout, NonZeroExit, SpawnError
from .stream_demux import OutputDemultiplexer
from .types import CommandRequest, CommandResult, CompletionEvent, ProgressEvent, StreamChunk

_logger = get_logger("process")

_LOG_PREVIEW_CHARS = 200


class PendingCommand(Future):
    """Future for one engine invocation.

    Resolves to a successful ``CommandResult`` or fails with a
    ``CommandError`` subclass that carries the captured output.
    """

    def __init__(self, request: CommandRequest) -> None:
        super().__init__()
        self.request = request

    @property
    def request_id(self) -> str:
        return self.request.request_id


class _RunningCommand:
    def __init__(self, request: CommandRequest, future: PendingCommand, process: QProcess) -> None:
        self.request = request
        self.future = future
        self.process = process
        self.stdout_parts: list[str] = []
        self.stderr_parts: list[str] = []
        self.stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.demux: OutputDemultiplexer | None = None
        self.timer: QTimer | None = None
        self.timed_out = False
        self.settled = False


class ProcessManager(QObject):
    """Spawns the engine executable with literal argument vectors.

    Signals:
        commandStarted: (request_id, argv)
        stdoutChunk: plain stdout text with marker lines removed
        stderrChunk: raw stderr text
        progressEvent / completionEvent: decoded marker payloads
        commandFinished: (request_id, CommandResult.to_dict())
    """

    commandStarted = Signal(str, list)  # request_id, argv
    stdoutChunk = Signal(str, str)  # request_id, text
    stderrChunk = Signal(str, str)  # request_id, text
    progressEvent = Signal(str, dict)  # request_id, payload
    completionEvent = Signal(str, dict)  # request_id, payload
    commandFinished = Signal(str, dict)  # request_id, result

    def __init__(
        self,
        program: str,
        *,
        prefix_args: list[str] | tuple[str, ...] = (),
        max_concurrent: int = 0,
        timeout_ms: int = 0,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._program = str(program)
        self._prefix_args = tuple(str(a) for a in prefix_args)
        self._max_concurrent = max(0, int(max_concurrent))
        self._timeout_ms = max(0, int(timeout_ms))
        self._active: dict[str, _RunningCommand] = {}
        self._waiting: deque[PendingCommand] = deque()
        self._pumping = False
        _logger.info("engine executable: %s", self._program)

    @property
    def program(self) -> str:
        return self._program

    def running_count(self) -> int:
        return len(self._active)

    def pending_count(self) -> int:
        return len(self._waiting)

    def is_running(self, request_id: str) -> bool:
        return request_id in self._active

    # ═══════════════════════════════════════════════════════════════════════
    # Public API
    # ═══════════════════════════════════════════════════════════════════════

    def execute(self, argv: list[str] | tuple[str, ...], *, operation: str = "execute") -> PendingCommand:
        """Run the engine with ``argv`` and return a future for its result."""
        return self.submit(CommandRequest.create(argv, operation))

    def submit(self, request: CommandRequest) -> PendingCommand:
        future = PendingCommand(request)
        self._waiting.append(future)
        if self._max_concurrent and len(self._active) >= self._max_concurrent:
            _logger.debug(
                "[%s] admission limit reached (%d running), queued", request.request_id, len(self._active)
            )
        self._pump()
        return future

    def terminate(self, request_id: str) -> bool:
        """Ask a running engine process to stop. Returns False if it is not running."""
        run = self._active.get(request_id)
        if run is None:
            return False
        _logger.info("[%s] terminating engine process", request_id)
        run.process.terminate()
        return True

    # ═══════════════════════════════════════════════════════════════════════
    # Scheduling
    # ═══════════════════════════════════════════════════════════════════════

    def _has_slot(self) -> bool:
        return self._max_concurrent <= 0 or len(self._active) < self._max_concurrent

    def _pump(self) -> None:
        if self._pumping:
            return
        self._pumping = True
        try:
            while self._waiting and self._has_slot():
                future = self._waiting.popleft()
                # A queued future cancelled by its caller is never started.
                if not future.set_running_or_notify_cancel():
                    _logger.debug("[%s] cancelled before start", future.request_id)
                    continue
                self._start(future)
        finally:
            self._pumping = False

    def _start(self, future: PendingCommand) -> None:
        request = future.request
        argv = [*self._prefix_args, *request.args]
        _logger.info("[%s] executing core command (%s) with args: %s", request.request_id, request.operation, argv)

        process = QProcess(self)
        process.setProgram(self._program)
        process.setArguments(argv)

        run = _RunningCommand(request, future, process)
        run.demux = OutputDemultiplexer(
            request.request_id,
            on_chunk=self._relay_chunk,
            on_progress=self._relay_progress,
            on_completion=self._relay_completion,
        )
        self._active[request.request_id] = run

        process.readyReadStandardOutput.connect(lambda r=run: self._on_stdout(r))
        process.readyReadStandardError.connect(lambda r=run: self._on_stderr(r))
        process.errorOccurred.connect(lambda err, r=run: self._on_error(r, err))
        process.finished.connect(lambda code, status, r=run: self._on_finished(r, code, status))

        if self._timeout_ms:
            timer = QTimer(self)
            timer.setSingleShot(True)
            timer.timeout.connect(lambda r=run: self._on_timeout(r))
            run.timer = timer
            timer.start(self._timeout_ms)

        self.commandStarted.emit(request.request_id, list(request.args))
        process.start()

    # ═══════════════════════════════════════════════════════════════════════
    # QProcess callbacks
    # ═══════════════════════════════════════════════════════════════════════

    def _on_stdout(self, run: _RunningCommand) -> None:
        data = bytes(run.process.readAllStandardOutput().data())
        self._consume_stdout(run, run.stdout_decoder.decode(data))

    def _on_stderr(self, run: _RunningCommand) -> None:
        data = bytes(run.process.readAllStandardError().data())
        self._consume_stderr(run, run.stderr_decoder.decode(data))

    def _consume_stdout(self, run: _RunningCommand, text: str) -> None:
        if not text:
            return
        _logger.debug("[%s] core stdout: %s", run.request.request_id, text.strip()[:_LOG_PREVIEW_CHARS])
        # Forward first, then buffer.
        if run.demux is not None:
            run.demux.feed_stdout(text)
        run.stdout_parts.append(text)

    def _consume_stderr(self, run: _RunningCommand, text: str) -> None:
        if not text:
            return
        _logger.warning("[%s] core stderr: %s", run.request.request_id, text.strip()[:_LOG_PREVIEW_CHARS])
        if run.demux is not None:
            run.demux.feed_stderr(text)
        run.stderr_parts.append(text)

    def _on_error(self, run: _RunningCommand, error: QProcess.ProcessError) -> None:
        if error != QProcess.ProcessError.FailedToStart:
            # Crashes and read errors are followed by finished(); report there.
            _logger.debug("[%s] process error: %s", run.request.request_id, error)
            return
        message = run.process.errorString() or "failed to start engine process"
        _logger.error("[%s] error executing core command: %s", run.request.request_id, message)
        result = CommandResult(
            success=False,
            exit_code=None,
            stdout="".join(run.stdout_parts),
            stderr="".join(run.stderr_parts),
            spawn_error=message,
        )
        self._settle(run, result, SpawnError(f"Failed to start engine: {message}", result))

    def _on_timeout(self, run: _RunningCommand) -> None:
        if run.settled:
            return
        run.timed_out = True
        _logger.error("[%s] engine command exceeded %d ms, killing", run.request.request_id, self._timeout_ms)
        run.process.kill()

    def _on_finished(self, run: _RunningCommand, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        if run.settled:
            return
        # Drain anything still buffered in the pipes and the decoders.
        self._consume_stdout(run, run.stdout_decoder.decode(bytes(run.process.readAllStandardOutput().data())))
        self._consume_stdout(run, run.stdout_decoder.decode(b"", final=True))
        self._consume_stderr(run, run.stderr_decoder.decode(bytes(run.process.readAllStandardError().data())))
        self._consume_stderr(run, run.stderr_decoder.decode(b"", final=True))
        if run.demux is not None:
            run.demux.close()

        crashed = exit_status == QProcess.ExitStatus.CrashExit
        code: int | None = None if crashed else int(exit_code)
        stdout = "".join(run.stdout_parts)
        stderr = "".join(run.stderr_parts)
        _logger.info("[%s] core command completed with code: %s", run.request.request_id, code)

        error: CommandError | None = None
        if code == 0 and not run.timed_out:
            result = CommandResult(success=True, exit_code=0, stdout=stdout, stderr=stderr)
        else:
            result = CommandResult(
                success=False, exit_code=code, stdout=stdout, stderr=stderr, timed_out=run.timed_out
            )
            if run.timed_out:
                error = CommandTimeout(f"Engine command timed out after {self._timeout_ms} ms", result)
            elif crashed:
                error = NonZeroExit("Engine process terminated abnormally", result)
            else:
                error = NonZeroExit(f"Engine command failed with code {code}", result)
            _logger.error("[%s] %s", run.request.request_id, error)
        self._settle(run, result, error)

    # ═══════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════

    def _settle(self, run: _RunningCommand, result: CommandResult, error: CommandError | None) -> None:
        run.settled = True
        if run.timer is not None:
            run.timer.stop()
            run.timer.deleteLater()
        self._active.pop(run.request.request_id, None)
        run.process.deleteLater()

        self.commandFinished.emit(run.request.request_id, result.to_dict())
        if error is None:
            run.future.set_result(result)
        else:
            run.future.set_exception(error)
        self._pump()

    def _relay_chunk(self, chunk: StreamChunk) -> None:
        if chunk.stream == "stdout":
            self.stdoutChunk.emit(chunk.request_id, chunk.text)
        else:
            self.stderrChunk.emit(chunk.request_id, chunk.text)

    def _relay_progress(self, event: ProgressEvent) -> None:
        self.progressEvent.emit(event.request_id, event.payload)

    def _relay_completion(self, event: CompletionEvent) -> None:
        self.completionEvent.emit(event.request_id, event.payload)


def result_of(future: Future) -> CommandResult | None:
    """CommandResult carried by a finished command future, success or failure."""
    if not future.done() or future.cancelled():
        return None
    exc: Any = future.exception()
    if exc is None:
        return future.result()
    return getattr(exc, "result", None)
