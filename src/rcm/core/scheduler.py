from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from rcm.core.errors import SchedulingError

_log = logging.getLogger("rcm.scheduler")

# Virtual time is kept in integer nanoseconds so that repeated 0.1 s steps land
# exactly on instants like 100.0 s and tie with events scheduled there.
NS_PER_SECOND = 1_000_000_000


def to_ns(seconds: float) -> int:
    return int(round(float(seconds) * NS_PER_SECOND))


def to_seconds(ns: int) -> float:
    return ns / NS_PER_SECOND


@dataclass
class EventHandle:
    at_ns: int
    seq: int
    callback: Callable[..., Any]
    args: Tuple[Any, ...] = field(default_factory=tuple)
    cancelled: bool = False

    @property
    def at(self) -> float:
        return to_seconds(self.at_ns)

    def cancel(self) -> None:
        self.cancelled = True


class VirtualTimeScheduler:
    """Discrete-event clock.

    Callbacks run in (instant, schedule order). Scheduling before ``now``
    raises :class:`SchedulingError` instead of running late.
    """

    def __init__(self) -> None:
        self._now_ns = 0
        self._queue: List[Tuple[int, int, EventHandle]] = []
        self._seq = itertools.count()
        self.executed_events = 0

    @property
    def now(self) -> float:
        return to_seconds(self._now_ns)

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> EventHandle:
        if delay < 0:
            raise SchedulingError(f"Negative delay {delay!r} at t={self.now}")
        return self._push(self._now_ns + to_ns(delay), callback, args)

    def schedule_at(self, when: float, callback: Callable[..., Any], *args: Any) -> EventHandle:
        at_ns = to_ns(when)
        if at_ns < self._now_ns:
            raise SchedulingError(f"Cannot schedule at t={when} (now t={self.now})")
        return self._push(at_ns, callback, args)

    def cancel(self, handle: Optional[EventHandle]) -> None:
        if handle is not None:
            handle.cancel()

    def run(self, until: Optional[float] = None) -> float:
        """Execute events up to and including ``until``; returns the final virtual time."""
        horizon_ns = to_ns(until) if until is not None else None
        if horizon_ns is not None and horizon_ns < self._now_ns:
            raise SchedulingError(f"Horizon t={until} is before now t={self.now}")
        while self._queue:
            at_ns, _, handle = self._queue[0]
            if horizon_ns is not None and at_ns > horizon_ns:
                break
            heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now_ns = at_ns
            handle.callback(*handle.args)
            self.executed_events += 1
        if horizon_ns is not None:
            self._now_ns = max(self._now_ns, horizon_ns)
        _log.debug("scheduler halted at t=%s after %s events", self.now, self.executed_events)
        return self.now

    def _push(self, at_ns: int, callback: Callable[..., Any], args: Tuple[Any, ...]) -> EventHandle:
        handle = EventHandle(at_ns=at_ns, seq=next(self._seq), callback=callback, args=tuple(args))
        heapq.heappush(self._queue, (handle.at_ns, handle.seq, handle))
        return handle


class RepeatingTimer:
    """Fires ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(
        self,
        scheduler: VirtualTimeScheduler,
        interval: float,
        callback: Callable[[], Any],
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Timer interval must be > 0, got {interval!r}")
        self._scheduler = scheduler
        self.interval = float(interval)
        self._callback = callback
        self._handle: Optional[EventHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def start(self) -> None:
        if self.armed:
            return
        self._handle = self._scheduler.schedule(self.interval, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = self._scheduler.schedule(self.interval, self._fire)
        self._callback()
