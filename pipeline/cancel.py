"""pipeline.cancel

Cooperative cancellation for a run.

A superseded run (e.g. a newer commit pushed to the same pull request) gets a
SIGTERM from the CI runner. The CLI turns that into :meth:`CancelToken.cancel`;
stages check the token between steps and the subprocess runner polls it to
terminate long-running children. Cleanup still runs afterwards.
"""

from __future__ import annotations

import threading
from typing import Optional

from pipeline.errors import RunCancelled


class CancelToken:
    """Thread-safe cancellation flag, optionally chained to a parent token."""

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._parent = parent

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        return self._parent.reason if self._parent is not None else None

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            where = f" before {stage}" if stage else ""
            raise RunCancelled(f"Run cancelled{where}: {self.reason}")
