"""tools/artifacts.py

Filesystem artifact store.

Reports and raw logs are copied out of the run's transient directories so they
survive Cleanup and can be retrieved independently of PR comment retention:

    <artifacts_root>/<run_id>/<name>
"""

from __future__ import annotations

import shutil
from pathlib import Path


class LocalArtifactStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def store(self, name: str, path: Path) -> Path:
        """Copy a file or directory to ``<root>/<name>``. Raises OSError on failure."""
        src = Path(path)
        if not src.exists():
            raise FileNotFoundError(f"Artifact source does not exist: {src}")
        if "/" in name or name in ("", ".", ".."):
            raise ValueError(f"Invalid artifact name: {name!r}")

        dest = self.root / name
        self.root.mkdir(parents=True, exist_ok=True)
        if src.is_dir():
            shutil.copytree(src, dest, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dest)
        return dest
