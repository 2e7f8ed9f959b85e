"""QML-facing application facade and lifecycle.

This package implements the UI↔engine trust boundary:
- Single command entry: backend.dispatch(cmd, payload), answered on backend.reply
- Streaming notifications via backend.coreOutput / coreError / backupProgress / backupComplete
- UI binding via state QObjects (backend.tasks)
- Process-wide window/tray/single-instance state in AppLifecycle
"""
