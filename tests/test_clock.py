from __future__ import annotations

import threading
import time

from steploop.clock import SystemClock


def test_cancel_cuts_pause_short() -> None:
    clock = SystemClock()
    timer = threading.Timer(0.05, clock.cancel)
    timer.start()
    started = time.monotonic()
    clock.sleep(10)
    timer.join()
    assert time.monotonic() - started < 5


def test_cancel_is_cleared_after_one_pause() -> None:
    clock = SystemClock()
    clock.cancel()
    clock.sleep(10)
    started = clock.monotonic()
    clock.sleep(0.05)
    assert clock.monotonic() - started >= 0.04


def test_non_positive_pause_returns_immediately() -> None:
    clock = SystemClock()
    clock.cancel()
    clock.sleep(0)
    clock.sleep(-1)
    # the pending cancel was not consumed
    started = time.monotonic()
    clock.sleep(10)
    assert time.monotonic() - started < 5
