"""Cooperative stop/pause flags shared by the controller and the loop.

Every suspension point of the automation loop goes through
:meth:`SessionControl.wait`, which re-checks the stop flag every slice and
does not count time spent paused, so a cool-down interrupted by a pause still
runs its full length after resume.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

WAIT_SLICE_S = 0.1


class SessionControl:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        slice_s: float = WAIT_SLICE_S,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self.slice_s = slice_s
        self._stop = threading.Event()
        self._paused = threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    @property
    def paused(self) -> bool:
        return self._paused.is_set()

    def request_stop(self) -> None:
        self._stop.set()

    def pause(self) -> None:
        self._paused.set()

    def resume(self) -> None:
        self._paused.clear()

    def wait(self, duration_ms: float) -> bool:
        """Sleep ``duration_ms`` of unpaused time; False if a stop cut it short."""
        remaining = max(0.0, float(duration_ms)) / 1000.0
        last = self.clock()
        while remaining > 0:
            if self.stop_requested:
                return False
            self.sleep(min(self.slice_s, remaining) if not self.paused else self.slice_s)
            now = self.clock()
            if not self.paused:
                remaining -= now - last
            last = now
        return not self.stop_requested

    def wait_while_paused(self, on_paused: Optional[Callable[[], None]] = None) -> bool:
        """Block while paused; False once a stop is requested."""
        announced = False
        while self.paused and not self.stop_requested:
            if not announced and on_paused:
                on_paused()
                announced = True
            self.sleep(self.slice_s)
        return not self.stop_requested
