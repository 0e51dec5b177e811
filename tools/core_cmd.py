"""tools/core_cmd.py

Command-execution helpers shared by the git adapter and the executors.

This module deliberately avoids pipeline-specific knowledge. It provides:

* :func:`which_or_raise` - resolve executables reliably across environments.
* :func:`run_cmd` - run subprocesses (no shell=True), capture output, enforce
  a wall-clock deadline and honour cancellation.
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol


class Cancellable(Protocol):
    @property
    def cancelled(self) -> bool: ...


@dataclass(frozen=True)
class CmdResult:
    exit_code: int
    elapsed_seconds: float
    command_str: str
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def which_or_raise(bin_name: str, fallbacks: Optional[List[str]] = None) -> str:
    """Locate an executable and return its absolute path.

    Why this exists:
    - prevents a bare "FileNotFoundError: git" deep inside a stage
    - avoids PATH surprises on self-hosted runners
    """
    found = shutil.which(bin_name)
    if found:
        return found

    for candidate in fallbacks or []:
        p = Path(candidate)
        if p.exists() and os.access(str(p), os.X_OK):
            return str(p)

    raise FileNotFoundError(
        f"Executable '{bin_name}' not found on PATH.\n"
        f"Install it and ensure it's available to this Python process.\n"
        f"Tried fallbacks: {fallbacks or []}"
    )


def _terminate_group(proc: subprocess.Popen, grace_seconds: float = 10.0) -> None:
    """SIGTERM the child's process group, then SIGKILL if it lingers."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


def run_cmd(
    cmd: List[str],
    *,
    cwd: Optional[Path] = None,
    timeout_seconds: float = 0,
    env: Optional[Dict[str, str]] = None,
    print_stderr: bool = True,
    print_stdout: bool = False,
    cancel: Optional[Cancellable] = None,
    poll_seconds: float = 0.5,
) -> CmdResult:
    """Run a subprocess and capture stdout/stderr (no ``shell=True``).

    Never raises on non-zero exit codes; only raises on execution errors
    (e.g. binary not found). A timeout or cancellation kills the whole process
    group (build scripts spawn children) and is reported on the result.
    """
    t0 = time.time()
    deadline = t0 + timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

    # If env is provided, merge it onto the current process environment.
    env2 = None
    if env is not None:
        env2 = os.environ.copy()
        env2.update(env)

    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env2,
        start_new_session=True,
    )

    timed_out = False
    cancelled = False
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=poll_seconds)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                cancelled = True
            elif deadline is not None and time.time() >= deadline:
                timed_out = True
            else:
                continue
            _terminate_group(proc)
            stdout, stderr = proc.communicate()
            break

    elapsed = time.time() - t0

    # Many tools write progress to stderr even on success.
    if print_stderr and stderr:
        print(stderr, file=sys.stderr)
    if print_stdout and stdout:
        print(stdout)

    return CmdResult(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        elapsed_seconds=elapsed,
        command_str=" ".join(cmd),
        stdout=stdout or "",
        stderr=stderr or "",
        timed_out=timed_out,
        cancelled=cancelled,
    )
