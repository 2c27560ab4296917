from __future__ import annotations

import threading
from typing import Protocol

from xsolock.core.logger import get_logger


class OverlayPresenter(Protocol):
    """The lock overlay window; shown while the station is locked."""

    def show(self) -> None: ...

    def hide(self) -> None: ...

    def is_visible(self) -> bool: ...


class LoggingPresenter:
    """
    Headless overlay: tracks visibility and logs transitions.
    Used by the service when no window layer is attached, and by tests.
    """

    def __init__(self, *, logger=None, visible: bool = True) -> None:
        self.logger = logger or get_logger()
        self._visible = bool(visible)
        self._lock = threading.Lock()
        self.shown = 0
        self.hidden = 0

    def show(self) -> None:
        with self._lock:
            self._visible = True
            self.shown += 1
        self.logger.info("overlay: show")

    def hide(self) -> None:
        with self._lock:
            self._visible = False
            self.hidden += 1
        self.logger.info("overlay: hide")

    def is_visible(self) -> bool:
        with self._lock:
            return self._visible
