"""Path normalization utilities.

- Use absolute paths when handing paths to the engine or the UI.
- Directory selections are normalized before they cross the bridge.

Keep this module free of Qt dependencies.
"""

from __future__ import annotations

import os
from pathlib import Path

_DRIVE_PREFIX_LEN = 2


def _normalize_drive_letter(path_str: str) -> str:
    # Normalize drive letter casing on Windows ("c:\\" -> "C:\\").
    if len(path_str) >= _DRIVE_PREFIX_LEN and path_str[1] == ":":
        return path_str[0].upper() + path_str[1:]
    return path_str


def abs_path(path: str | Path) -> Path:
    """Return an absolute path without requiring that it exists."""
    p = Path(path).expanduser()
    try:
        # strict=False avoids exceptions for non-existent paths.
        return p.resolve(strict=False)
    except OSError:
        return p.absolute()


def abs_path_str(path: str | Path) -> str:
    """Absolute, OS-native path string (Windows uses backslashes)."""
    return _normalize_drive_letter(str(abs_path(path)))


def abs_dir_str(path: str | Path) -> str:
    """Absolute directory path; a path to an existing file yields its parent."""
    p = abs_path(path)
    try:
        if p.exists() and not p.is_dir():
            p = p.parent
    except OSError:
        pass
    return _normalize_drive_letter(str(p))


def is_executable_file(path: str | Path) -> bool:
    p = Path(path)
    try:
        return p.is_file() and os.access(p, os.X_OK)
    except OSError:
        return False
