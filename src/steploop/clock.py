from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall clock whose pauses can be cut short from another thread."""

    def __init__(self) -> None:
        self._cancel = threading.Event()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self._cancel.wait(seconds)
        self._cancel.clear()

    def cancel(self) -> None:
        self._cancel.set()
