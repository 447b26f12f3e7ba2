from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

APP_NAME = "pynanocoder"


def _events_dir(root: Path | None = None) -> Path:
    root = root or Path(user_data_dir(APP_NAME))
    d = root / "events"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


@dataclass
class EventStore:
    """Simple jsonl event store per session.

    This is intentionally append-only and tolerant of partial corruption.
    """

    session_id: str
    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @staticmethod
    def open(session_id: str, root: Path | None = None) -> "EventStore":
        path = _events_dir(root) / f"{session_id}.jsonl"
        return EventStore(session_id=session_id, path=path)

    def append(self, event_type: str, data: dict[str, Any]) -> None:
        ev = Event(ts=time.time(), type=event_type, data=data)
        line = json.dumps(ev.__dict__, ensure_ascii=False, default=str) + "\n"
        # Overlapping turns may log from different threads.
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)

    def iter_events(self) -> Iterable[Event]:
        if not self.path.exists():
            return []
        out: list[Event] = []
        for line in self.path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                out.append(Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {}))
            except Exception:
                continue
        return out
