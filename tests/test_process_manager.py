from __future__ import annotations

import json

import pytest

from backup_shell.core_bridge.errors import CommandTimeout, NonZeroExit, SpawnError
from backup_shell.core_bridge.process_manager import ProcessManager, result_of


def test_success_resolves_with_captured_stdout(make_manager, wait_done) -> None:
    pm = make_manager()
    fut = wait_done(pm.execute(["--list-profiles"]))

    result = fut.result()
    assert result.success is True
    assert result.exit_code == 0
    assert "  - Home Backup\n" in result.stdout
    assert result.stderr == ""
    assert pm.running_count() == 0


def test_arguments_are_passed_literally(make_manager, wait_done) -> None:
    pm = make_manager()
    tricky = ["; rm -rf /", "$(whoami)", "a b", "", "'quoted'", "*"]
    fut = wait_done(pm.execute(["echo-args", *tricky]))

    assert json.loads(fut.result().stdout) == tricky


def test_nonzero_exit_rejects_with_diagnostics(make_manager, wait_done) -> None:
    pm = make_manager()
    fut = wait_done(pm.execute(["exit", "3"]))

    err = fut.exception()
    assert isinstance(err, NonZeroExit)
    assert err.exit_code == 3
    assert err.stdout == "partial output\n"
    assert err.stderr == "something went wrong\n"
    assert err.result.success is False
    assert result_of(fut) is err.result


def test_missing_executable_is_spawn_error_not_exit_code(qtbot, wait_done, tmp_path) -> None:
    pm = ProcessManager(str(tmp_path / "missing" / "utm-core"))
    fut = wait_done(pm.execute(["--list-profiles"]))

    err = fut.exception()
    assert isinstance(err, SpawnError)
    assert not isinstance(err, NonZeroExit)
    assert err.exit_code is None
    assert err.result.spawn_error
    assert pm.running_count() == 0


def test_concurrent_commands_keep_separate_buffers(make_manager, wait_done) -> None:
    pm = make_manager()
    futures = [pm.execute(["emit", tag, "20"]) for tag in ("alpha", "beta", "gamma")]
    for fut in futures:
        wait_done(fut)

    for tag, fut in zip(("alpha", "beta", "gamma"), futures):
        lines = fut.result().stdout.splitlines()
        assert lines == [f"{tag}-{i}" for i in range(20)]


def test_stream_signals_carry_request_id(make_manager, wait_done, qtbot) -> None:
    pm = make_manager()
    chunks: list[tuple[str, str]] = []
    errors: list[tuple[str, str]] = []
    finished: list[tuple[str, dict]] = []
    pm.stdoutChunk.connect(lambda rid, text: chunks.append((rid, text)))
    pm.stderrChunk.connect(lambda rid, text: errors.append((rid, text)))
    pm.commandFinished.connect(lambda rid, res: finished.append((rid, res)))

    fut = wait_done(pm.execute(["exit", "1"]))

    rid = fut.request_id
    assert "".join(t for r, t in chunks if r == rid) == "partial output\n"
    assert "".join(t for r, t in errors if r == rid) == "something went wrong\n"
    assert finished == [(rid, fut.exception().result.to_dict())]


def test_progress_and_completion_markers(make_manager, wait_done) -> None:
    pm = make_manager()
    progress: list[dict] = []
    completions: list[dict] = []
    relayed: list[str] = []
    pm.progressEvent.connect(lambda _rid, payload: progress.append(payload))
    pm.completionEvent.connect(lambda _rid, payload: completions.append(payload))
    pm.stdoutChunk.connect(lambda _rid, text: relayed.append(text))

    fut = wait_done(pm.execute(["progress"]))

    assert progress == [{"filesProcessed": 5, "percentComplete": 50}]
    assert completions == [{"success": True, "fileCount": 10}]
    assert "".join(relayed) == "Scanning files...\n"
    # captured stdout is the full, unfiltered output
    assert "PROGRESS:{not json}" in fut.result().stdout
    assert fut.result().success


def test_marker_split_across_writes(make_manager, wait_done) -> None:
    pm = make_manager()
    progress: list[dict] = []
    relayed: list[str] = []
    pm.progressEvent.connect(lambda _rid, payload: progress.append(payload))
    pm.stdoutChunk.connect(lambda _rid, text: relayed.append(text))

    wait_done(pm.execute(["split-marker"]))

    assert progress == [{"filesProcessed": 5}]
    assert "".join(relayed) == "tail without newline"


def test_markers_on_stderr_are_not_decoded(make_manager, wait_done) -> None:
    pm = make_manager()
    progress: list[dict] = []
    pm.progressEvent.connect(lambda _rid, payload: progress.append(payload))

    fut = wait_done(pm.execute(["stderr-marker"]))

    assert progress == []
    assert fut.result().stderr.startswith("PROGRESS:")


def test_admission_limit_queues_fifo(make_manager, wait_done) -> None:
    pm = make_manager(max_concurrent=1)
    started: list[str] = []
    pm.commandStarted.connect(lambda rid, _argv: started.append(rid))

    first = pm.execute(["sleep", "0.3"])
    second = pm.execute(["echo-args", "x"])
    assert pm.running_count() == 1
    assert pm.pending_count() == 1

    wait_done(second)
    assert first.done()
    assert started == [first.request_id, second.request_id]


def test_queued_command_can_be_cancelled(make_manager, wait_done) -> None:
    pm = make_manager(max_concurrent=1)
    started: list[str] = []
    pm.commandStarted.connect(lambda rid, _argv: started.append(rid))

    first = pm.execute(["sleep", "0.2"])
    queued = pm.execute(["echo-args", "never"])
    assert queued.cancel()

    wait_done(first)
    assert started == [first.request_id]
    assert pm.pending_count() == 0


def test_timeout_kills_and_rejects(make_manager, wait_done) -> None:
    pm = make_manager(timeout_ms=200)
    fut = wait_done(pm.execute(["sleep", "10"]))

    err = fut.exception()
    assert isinstance(err, CommandTimeout)
    assert err.result.timed_out is True
    assert err.to_dict()["timedOut"] is True


def test_terminate_running_command(make_manager, wait_done, qtbot) -> None:
    pm = make_manager()
    fut = pm.execute(["sleep", "10"])
    qtbot.waitUntil(lambda: pm.is_running(fut.request_id), timeout=5000)

    assert pm.terminate(fut.request_id) is True
    wait_done(fut)

    assert isinstance(fut.exception(), NonZeroExit)
    assert pm.terminate(fut.request_id) is False


@pytest.mark.parametrize("limit", [0, 2])
def test_every_command_settles_exactly_once(make_manager, wait_done, limit) -> None:
    pm = make_manager(max_concurrent=limit)
    finished: list[str] = []
    pm.commandFinished.connect(lambda rid, _res: finished.append(rid))

    futures = [pm.execute(["echo-args", str(i)]) for i in range(5)]
    futures.append(pm.execute(["exit", "4"]))
    for fut in futures:
        wait_done(fut)

    assert sorted(finished) == sorted(f.request_id for f in futures)
    assert pm.running_count() == 0
