"""pipeline.cleanup

Terminal step of every run: remove transient files from the execution host.

Benchmark hosts are long-lived and run jobs back to back; stale logs or
reports from an earlier run must never leak into a later comparison. Cleanup
therefore runs unconditionally (from a ``finally`` block in the orchestrator)
and never raises: problems are logged and returned as warnings.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class WorkingState:
    """Transient paths a run created. Filled in as stages progress."""

    workdir: Optional[Path] = None
    report_files: List[Path] = field(default_factory=list)
    # Directories whose *contents* are removed; the directory itself stays.
    log_dirs: List[Path] = field(default_factory=list)


def _remove(path: Path, warnings: List[str]) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    except OSError as e:
        msg = f"cleanup: could not remove {path}: {e}"
        logger.warning(msg)
        warnings.append(msg)


def cleanup(state: WorkingState) -> List[str]:
    """Remove log directory contents, report files and the working directory."""
    warnings: List[str] = []

    for log_dir in state.log_dirs:
        log_dir = Path(log_dir)
        if not log_dir.is_dir():
            continue
        try:
            entries = list(log_dir.iterdir())
        except OSError as e:
            msg = f"cleanup: could not list {log_dir}: {e}"
            logger.warning(msg)
            warnings.append(msg)
            continue
        for entry in entries:
            _remove(entry, warnings)

    for report in state.report_files:
        _remove(Path(report), warnings)

    if state.workdir is not None:
        _remove(Path(state.workdir), warnings)

    if not warnings:
        print("  🧹 Cleaned up transient files")
    return warnings
