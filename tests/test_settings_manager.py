from __future__ import annotations

import json
from pathlib import Path

import pytest

from backup_shell.settings_manager import ENGINE_BINARY_NAME, SettingsManager


@pytest.fixture(autouse=True)
def _clean_engine_env(monkeypatch):
    monkeypatch.delenv("BACKUP_SHELL_ENGINE", raising=False)
    monkeypatch.delenv("BACKUP_SHELL_ENV", raising=False)


def test_defaults_leave_hardening_disabled(tmp_path: Path) -> None:
    sm = SettingsManager(str(tmp_path / "settings.json"))

    assert sm.max_concurrent_commands == 0
    assert sm.command_timeout_ms == 0
    assert sm.terminate_on_cancel is False
    assert sm.minimize_to_tray is True
    assert sm.has("engine_path") is False


def test_values_are_persisted_as_json(tmp_path: Path) -> None:
    settings_path = tmp_path / "nested" / "settings.json"
    sm = SettingsManager(str(settings_path))
    sm.set("max_concurrent_commands", 2)

    assert json.loads(settings_path.read_text(encoding="utf-8")) == {"max_concurrent_commands": 2}
    assert SettingsManager(str(settings_path)).max_concurrent_commands == 2


def test_corrupt_settings_file_is_ignored(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")

    sm = SettingsManager(str(settings_path))
    assert sm.data == {}
    assert sm.command_timeout_ms == 0


def test_invalid_numbers_fall_back_to_disabled(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"command_timeout_ms": "soon", "max_concurrent_commands": -3}), "utf-8")

    sm = SettingsManager(str(settings_path))
    assert sm.command_timeout_ms == 0
    assert sm.max_concurrent_commands == 0


def test_engine_path_defaults_to_bundled_binary(tmp_path: Path) -> None:
    sm = SettingsManager(str(tmp_path / "settings.json"))
    resolved = Path(sm.resolve_engine_path(tmp_path))
    assert resolved == (tmp_path / "bin" / ENGINE_BINARY_NAME).resolve()


def test_engine_path_resolution_order(tmp_path: Path, monkeypatch) -> None:
    sm = SettingsManager(str(tmp_path / "settings.json"))

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BACKUP_SHELL_ENV", "development")
    dev = Path(sm.resolve_engine_path(tmp_path))
    assert dev.parts[-4:] == ("core", "build", "bin", ENGINE_BINARY_NAME)

    monkeypatch.setenv("BACKUP_SHELL_ENGINE", str(tmp_path / "env-engine"))
    assert Path(sm.resolve_engine_path(tmp_path)) == (tmp_path / "env-engine").resolve()

    sm.set("engine_path", str(tmp_path / "saved-engine"))
    assert Path(sm.resolve_engine_path(tmp_path)) == (tmp_path / "saved-engine").resolve()
