from __future__ import annotations

import threading
from typing import Callable

from .errors import TurnCancelled


class CancellationToken:
    """Write-once, many-reader cancellation signal for one assistant turn.

    Once set it never resets. Callbacks registered with add_callback run exactly
    once, on the thread that calls cancel() (or immediately if already set).
    """

    def __init__(self, turn_id: int = 0):
        self.turn_id = turn_id
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                # one failing kill hook must not stop the others
                continue

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled()

    def add_callback(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Register cb to run on cancel. Returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)

                def _remove() -> None:
                    with self._lock:
                        if cb in self._callbacks:
                            self._callbacks.remove(cb)

                return _remove
        cb()
        return lambda: None

    def __repr__(self) -> str:
        return f"CancellationToken(turn_id={self.turn_id}, cancelled={self.is_cancelled})"


class CancellationCoordinator:
    """Hands out one fresh token per turn and cancels the live one on request."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        with self._lock:
            return self._current

    def new_turn(self) -> CancellationToken:
        with self._lock:
            self._counter += 1
            self._current = CancellationToken(turn_id=self._counter)
            return self._current

    def cancel(self, token: CancellationToken | None = None) -> None:
        if token is None:
            token = self.current
        if token is not None:
            token.cancel()

    def cancel_from_signal(self) -> threading.Thread:
        """Cancel the live turn from a signal handler.

        The handler runs on the main thread between bytecodes, possibly while
        that thread holds one of the token locks, so the work goes to a helper
        thread.
        """
        t = threading.Thread(target=self.cancel, name="cancel-turn", daemon=True)
        t.start()
        return t

    @staticmethod
    def is_cancelled(token: CancellationToken) -> bool:
        return token.is_cancelled

    def end_turn(self, token: CancellationToken) -> None:
        with self._lock:
            if self._current is token:
                self._current = None
