from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class RecordingPresenter:
    def __init__(self, visible: bool = True):
        self.visible = visible
        self.calls: List[str] = []

    def show(self) -> None:
        self.visible = True
        self.calls.append("show")

    def hide(self) -> None:
        self.visible = False
        self.calls.append("hide")

    def is_visible(self) -> bool:
        return self.visible


class DummyLogger:
    def __init__(self):
        self.lines: List[str] = []

    def info(self, msg, *_a, **_k):
        self.lines.append(str(msg))

    def warning(self, msg, *_a, **_k):
        self.lines.append(str(msg))

    def error(self, msg, *_a, **_k):
        self.lines.append(str(msg))


@dataclass
class RecordingAudit:
    entries: List[Dict[str, Any]] = field(default_factory=list)

    def log(self, **kwargs: Any) -> None:
        self.entries.append(kwargs)

    def events(self) -> List[str]:
        return [e["event"] for e in self.entries]
