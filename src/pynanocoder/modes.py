from __future__ import annotations

import threading
from enum import Enum


class Mode(str, Enum):
    NORMAL = "normal"
    PLAN = "plan"
    AUTO_ACCEPT = "auto-accept"

    @staticmethod
    def parse(value: "Mode | str") -> "Mode":
        if isinstance(value, Mode):
            return value
        v = str(value or "").strip().lower().replace("_", "-")
        for m in Mode:
            if m.value == v:
                return m
        known = ", ".join(m.value for m in Mode)
        raise ValueError(f"Unknown mode '{value}'. Known modes: {known}")

    def next(self) -> "Mode":
        # Order used by `/mode next`.
        order = [Mode.NORMAL, Mode.AUTO_ACCEPT, Mode.PLAN]
        return order[(order.index(self) + 1) % len(order)]


class ModeStore:
    """Process-wide current mode.

    Writes are serialized by a lock; reads take the same lock so a reader never
    sees a half-applied update. There is no buffering: the next approval
    evaluation observes the new value.
    """

    def __init__(self, initial: Mode | str = Mode.NORMAL):
        self._lock = threading.Lock()
        self._mode = Mode.parse(initial)

    def get(self) -> Mode:
        with self._lock:
            return self._mode

    def set(self, mode: Mode | str) -> None:
        m = Mode.parse(mode)
        with self._lock:
            self._mode = m

    def cycle(self) -> Mode:
        with self._lock:
            self._mode = self._mode.next()
            return self._mode


_default_store = ModeStore()


def default_store() -> ModeStore:
    return _default_store


def get_current_mode() -> Mode:
    return _default_store.get()


def set_current_mode(mode: Mode | str) -> None:
    _default_store.set(mode)
