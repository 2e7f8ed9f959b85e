from __future__ import annotations

import json

import pytest

from backup_shell.core_bridge.errors import NonZeroExit, ResponseFormatError, SpawnError
from backup_shell.core_bridge.fallback import is_fallback
from backup_shell.core_bridge.process_manager import ProcessManager
from backup_shell.core_bridge.service import BackupService
from backup_shell.core_bridge.types import BackupProfile, RestoreOptions


@pytest.fixture
def service(make_manager):
    return BackupService(make_manager())


def test_list_profiles_returns_names(service, wait_done) -> None:
    fut = wait_done(service.list_profiles())
    assert fut.result() == ["Home Backup", "Work Documents"]


def test_start_backup_returns_backup_id(service, wait_done) -> None:
    fut = wait_done(service.start_backup("p1", dry_run=True))
    assert fut.result() == "b-42"


def test_list_backups_passes_profile_id(service, wait_done) -> None:
    fut = wait_done(service.list_backups("profile-9"))
    assert fut.result() == [{"id": "b-1", "profileId": "profile-9", "status": "success"}]


def test_start_restore_builds_optional_flags(make_manager, wait_done) -> None:
    pm = make_manager()
    argv_seen: list[list] = []
    pm.commandStarted.connect(lambda _rid, argv: argv_seen.append(argv))
    svc = BackupService(pm)

    options = RestoreOptions(profile_id="p1", target_path="/tmp/out", selected_files=("a", "b"))
    fut = wait_done(svc.start_restore(options))

    assert fut.result() == "r-7"
    assert argv_seen == [["start-restore", "--profile-id", "p1", "--target-path", "/tmp/out", "--files", "a,b"]]


def test_save_profile_sends_profile_json(make_manager, wait_done) -> None:
    pm = make_manager()
    argv_seen: list[list] = []
    pm.commandStarted.connect(lambda _rid, argv: argv_seen.append(argv))
    svc = BackupService(pm)

    fut = wait_done(svc.save_profile(BackupProfile(id="p1", name="Home")))

    assert fut.result() is True
    assert json.loads(argv_seen[0][2])["name"] == "Home"


def test_system_info_returns_engine_data(service, wait_done) -> None:
    info = wait_done(service.system_info()).result()
    assert info["storage"]["total"] == 2000
    assert info["uptime"] == "1 day"
    assert not is_fallback(info)


def test_system_info_falls_back_when_engine_missing(qtbot, wait_done, tmp_path) -> None:
    svc = BackupService(ProcessManager(str(tmp_path / "utm-core")))
    info = wait_done(svc.system_info()).result()

    assert is_fallback(info)
    assert info["uptime"] == "5 days, 7 hours"


def test_system_info_falls_back_on_malformed_output(make_manager, wait_done) -> None:
    # Route the system-info argv to the fake engine's malformed output.
    pm = make_manager()
    pm._prefix_args = (*pm._prefix_args, "malformed")
    svc = BackupService(pm)

    info = wait_done(svc.system_info()).result()
    assert is_fallback(info)


def test_malformed_backup_response_is_format_error(make_manager, wait_done) -> None:
    pm = make_manager()
    pm._prefix_args = (*pm._prefix_args, "malformed")
    svc = BackupService(pm)

    fut = wait_done(svc.start_backup("p1"))
    assert isinstance(fut.exception(), ResponseFormatError)


def test_profiles_with_missing_engine_is_spawn_error(qtbot, wait_done, tmp_path) -> None:
    svc = BackupService(ProcessManager(str(tmp_path / "utm-core")))
    fut = wait_done(svc.list_profiles())
    assert isinstance(fut.exception(), SpawnError)


def test_mutating_operations_never_fall_back(make_manager, wait_done) -> None:
    pm = make_manager()
    pm._prefix_args = (*pm._prefix_args, "exit", "5")
    svc = BackupService(pm)

    for fut in (svc.delete_profile("p1"), svc.start_backup("p1"), svc.cancel_backup("b1")):
        wait_done(fut)
        err = fut.exception()
        assert isinstance(err, NonZeroExit)
        assert err.exit_code == 5


def test_cancel_terminates_running_backup_when_enabled(make_manager, wait_done, qtbot) -> None:
    pm = make_manager()
    svc = BackupService(pm, terminate_on_cancel=True)
    running = pm.execute(["sleep", "10"], operation="start-backup")
    qtbot.waitUntil(lambda: pm.is_running(running.request_id), timeout=5000)

    cancel = wait_done(svc.cancel_backup("b-42", running_request_id=running.request_id))
    assert cancel.result() is True

    wait_done(running)
    assert isinstance(running.exception(), NonZeroExit)


def test_cancel_leaves_process_alone_by_default(make_manager, wait_done, qtbot) -> None:
    pm = make_manager()
    svc = BackupService(pm)
    running = pm.execute(["sleep", "10"], operation="start-backup")

    wait_done(svc.cancel_backup("b-42", running_request_id=running.request_id))
    assert pm.is_running(running.request_id)
    pm.terminate(running.request_id)
    wait_done(running)
