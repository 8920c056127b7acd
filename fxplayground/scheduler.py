"""
Frame Scheduler Module
Display-refresh style callbacks: a callback requested now runs once on the
next frame and must request again to keep running.
"""

import asyncio
import itertools
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional


FrameCallback = Callable[[float], None]


class FrameScheduler(ABC):
    """Schedules one-shot callbacks on the next frame."""

    def __init__(self):
        self._ids = itertools.count(1)

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> int:
        """Run callback(timestamp) on the next frame. Returns a handle."""
        pass

    @abstractmethod
    def cancel_frame(self, handle: int) -> None:
        """Cancel a pending callback. Unknown handles are ignored."""
        pass

    def close(self) -> None:
        """Release scheduler resources."""
        pass


def _run_callback(callback: FrameCallback, timestamp: float) -> None:
    try:
        callback(timestamp)
    except Exception as e:
        print(f"Frame callback error: {e}")


class ManualFrameScheduler(FrameScheduler):
    """Frames are driven explicitly via run_frame(), e.g. from a host render loop."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        super().__init__()
        self.clock = clock
        self._pending: Dict[int, FrameCallback] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def run_frame(self) -> int:
        """Run every callback requested before this frame. Returns how many ran."""
        due = self._pending
        self._pending = {}
        timestamp = self.clock()
        for callback in due.values():
            _run_callback(callback, timestamp)
        return len(due)

    def close(self) -> None:
        self._pending.clear()


class AsyncioFrameScheduler(FrameScheduler):
    """
    Runs frames on an asyncio event loop with loop.call_later.

    Callbacks run on the loop thread, alongside the session coroutines, so
    transport and graph state are only ever touched from one thread. Without
    an explicit loop, the running loop of the first request is used from
    then on.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None,
                 frame_rate: float = 60.0):
        super().__init__()
        self.loop = loop
        self.frame_rate = frame_rate
        self._handles: Dict[int, asyncio.TimerHandle] = {}

    def request_frame(self, callback: FrameCallback) -> int:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        loop = self.loop
        handle = next(self._ids)

        def fire():
            self._handles.pop(handle, None)
            _run_callback(callback, time.perf_counter())

        self._handles[handle] = loop.call_later(1.0 / self.frame_rate, fire)
        return handle

    def cancel_frame(self, handle: int) -> None:
        timer = self._handles.pop(handle, None)
        if timer is not None:
            timer.cancel()

    def close(self) -> None:
        for timer in self._handles.values():
            timer.cancel()
        self._handles.clear()
