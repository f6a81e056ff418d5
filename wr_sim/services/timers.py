"""Periodic timer services.

Both services hand out ``TimerHandle`` objects and run every callback while
holding ``self.lock``. Command code takes the same lock, which makes the
device state single-writer whether timers fire on threads or in virtual time.
"""
from __future__ import annotations

import datetime as dt
import heapq
import itertools
import logging
import threading
from typing import Any, Callable, Optional, Protocol

LOGGER = logging.getLogger(__name__)

Callback = Callable[[], None]


class Timers(Protocol):
    lock: Any

    def call_every(self, interval_s: float, callback: Callback, *, name: str = ...) -> "TimerHandle":
        ...


class TimerHandle:
    def __init__(self, name: str, interval_s: float) -> None:
        self.name = name
        self.interval_s = interval_s
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"TimerHandle({self.name!r}, every {self.interval_s}s, {state})"


class ThreadTimers:
    """Real-time timers, one daemon thread per periodic callback."""

    def __init__(self) -> None:
        self.lock = threading.RLock()

    def call_every(self, interval_s: float, callback: Callback, *, name: str = "timer") -> TimerHandle:
        handle = TimerHandle(name, interval_s)
        thread = threading.Thread(
            target=self._loop,
            args=(handle, callback),
            name=f"wr-sim-{name}",
            daemon=True,
        )
        thread.start()
        return handle

    def _loop(self, handle: TimerHandle, callback: Callback) -> None:
        # Event.wait returns True once cancelled, ending the loop.
        while not handle._cancelled.wait(handle.interval_s):
            with self.lock:
                if handle.cancelled:
                    break
                try:
                    callback()
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Timer %s callback failed", handle.name)


class VirtualTimers:
    """Deterministic timers driven by ``advance``.

    The service also acts as the clock for everything it drives, so a
    simulated hour runs in milliseconds and always fires in the same order.
    """

    def __init__(self, start: dt.datetime) -> None:
        self.lock = threading.RLock()
        self._now = start
        self._queue: list[tuple[dt.datetime, int, TimerHandle, Callback]] = []
        self._seq = itertools.count()

    def now(self) -> dt.datetime:
        return self._now

    def call_every(self, interval_s: float, callback: Callback, *, name: str = "timer") -> TimerHandle:
        handle = TimerHandle(name, interval_s)
        self._push(self._now + dt.timedelta(seconds=interval_s), handle, callback)
        return handle

    def pending(self) -> list[TimerHandle]:
        return [handle for _, _, handle, _ in sorted(self._queue) if not handle.cancelled]

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing due callbacks in time order.

        Returns the number of callbacks that ran.
        """
        if seconds < 0:
            raise ValueError("Cannot advance virtual time backwards")

        target = self._now + dt.timedelta(seconds=seconds)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            with self.lock:
                if handle.cancelled:
                    continue
                callback()
                fired += 1
            if not handle.cancelled:
                self._push(due + dt.timedelta(seconds=handle.interval_s), handle, callback)
        self._now = target
        return fired

    def _push(self, due: dt.datetime, handle: TimerHandle, callback: Callback) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback))


def cancel_timer(handle: Optional[TimerHandle]) -> None:
    if handle is not None:
        handle.cancel()
