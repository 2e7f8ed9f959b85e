from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from .logger import get_logger
from .path_utils import abs_path_str

_logger = get_logger("settings")

ENGINE_BINARY_NAME = "utm-core"


class SettingsManager:
    def __init__(self, settings_path: str):
        self.settings_path = settings_path
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "engine_path": None,
        "max_concurrent_commands": 0,
        "command_timeout_ms": 0,
        "terminate_on_cancel": False,
        "minimize_to_tray": True,
        "check_updates_on_start": True,
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except (OSError, ValueError) as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.settings_path), exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except OSError as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    @property
    def max_concurrent_commands(self) -> int:
        try:
            return max(0, int(self.get("max_concurrent_commands")))
        except (TypeError, ValueError):
            return 0

    @property
    def command_timeout_ms(self) -> int:
        try:
            return max(0, int(self.get("command_timeout_ms")))
        except (TypeError, ValueError):
            return 0

    @property
    def terminate_on_cancel(self) -> bool:
        return bool(self.get("terminate_on_cancel", False))

    @property
    def minimize_to_tray(self) -> bool:
        return bool(self.get("minimize_to_tray"))

    def resolve_engine_path(self, base_dir: str | Path) -> str:
        """Pick the engine executable path.

        Order: saved ``engine_path`` setting, ``BACKUP_SHELL_ENGINE`` env var,
        the developer build tree (``BACKUP_SHELL_ENV=development``), then the
        binary bundled under ``<base_dir>/bin``.
        """
        saved = self.get("engine_path")
        if isinstance(saved, str) and saved.strip():
            return abs_path_str(saved.strip())

        env_path = (os.getenv("BACKUP_SHELL_ENGINE") or "").strip()
        if env_path:
            return abs_path_str(env_path)

        if (os.getenv("BACKUP_SHELL_ENV") or "").strip().lower() == "development":
            return abs_path_str(Path.cwd() / ".." / "core" / "build" / "bin" / ENGINE_BINARY_NAME)

        return abs_path_str(Path(base_dir) / "bin" / ENGINE_BINARY_NAME)
