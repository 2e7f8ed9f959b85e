#!/usr/bin/env python3
"""Run the test suite headless.

Engine processes are spawned for real (through tests/helpers/fake_engine.py),
so a hung child would otherwise stall the run; each test gets a
pytest-timeout limit and the whole run a wall-clock limit.

Usage:
  python scripts/run_tests_offscreen.py [--timeout SECONDS] [--per-test SECONDS] [--] [pytest args...]

Examples:
  python scripts/run_tests_offscreen.py tests/test_process_manager.py::test_timeout_kills_and_rejects
  python scripts/run_tests_offscreen.py -- -k facade
"""

from __future__ import annotations

import argparse
import os
import shlex
import subprocess
import sys


def main() -> int:
    p = argparse.ArgumentParser(description="Run pytest on the offscreen Qt platform")
    p.add_argument("--timeout", type=int, default=300, help="Wall-clock limit for the whole run, in seconds")
    p.add_argument("--per-test", type=int, default=60, help="pytest-timeout limit for each test, in seconds")
    p.add_argument("--verbose", action="store_true", help="Verbose pytest output, keep going after failures")
    p.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Extra pytest args")
    args = p.parse_args()

    env = os.environ.copy()
    env.setdefault("QT_QPA_PLATFORM", "offscreen")
    env.setdefault("BACKUP_SHELL_LOG_LEVEL", "warning")

    cmd = [sys.executable, "-m", "pytest", f"--timeout={args.per_test}"]
    cmd += ["-v"] if args.verbose else ["-q", "-x"]
    cmd += [a for a in args.pytest_args if a != "--"]

    print("Running:", " ".join(shlex.quote(c) for c in cmd))
    try:
        return subprocess.run(cmd, env=env, check=False, timeout=args.timeout).returncode
    except subprocess.TimeoutExpired:
        print(f"pytest run exceeded {args.timeout} seconds", file=sys.stderr)
        return 124


if __name__ == "__main__":
    raise SystemExit(main())
