"""
Transport Control Module
Handles play/pause/stop/seek state and clip position timekeeping.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, List

from .scheduler import FrameScheduler, ManualFrameScheduler


class TransportPhase(Enum):
    IDLE = "idle"
    STOPPED = "idle"  # Same resting phase as IDLE
    LOADING = "loading"  # Decoding a clip before playback
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class TransportConfig:
    """Transport configuration."""
    report_interval: float = 0.0  # Minimum seconds between position reports (0 = every frame)


class Transport:
    """
    Transport controller for clip playback.

    Position is never read back from the audio device. While playing it is
    the elapsed clock time since the last start plus the banked offset:

        position = (now - anchor_time) + accumulated_offset

    clamped to [0, duration]. Pause banks the elapsed time into the offset.
    The playback rate is tracked for status only and does not scale the
    clock; the clip-time read head is reported by the graph.
    """

    def __init__(self, config: Optional[TransportConfig] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 scheduler: Optional[FrameScheduler] = None):
        self.config = config or TransportConfig()
        self.clock = clock
        self.scheduler = scheduler or ManualFrameScheduler(clock)

        self._phase = TransportPhase.IDLE
        self._anchor_time: Optional[float] = None
        self._accumulated_offset = 0.0
        self._duration = 0.0
        self._playback_rate = 1.0

        self._frame_handle: Optional[int] = None
        self._last_report: Optional[float] = None

        # Callbacks
        self._position_callbacks: List[Callable[[float, float], None]] = []  # position, duration
        self._state_callbacks: List[Callable[[TransportPhase], None]] = []
        self._end_check: Optional[Callable[[], bool]] = None
        self._end_callback: Optional[Callable[[], None]] = None

    @property
    def phase(self) -> TransportPhase:
        return self._phase

    @property
    def is_playing(self) -> bool:
        return self._phase == TransportPhase.PLAYING

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def playback_rate(self) -> float:
        return self._playback_rate

    @property
    def accumulated_offset(self) -> float:
        """Clip seconds banked from earlier play segments."""
        return self._accumulated_offset

    @property
    def anchor_time(self) -> Optional[float]:
        return self._anchor_time

    @property
    def position(self) -> float:
        """Elapsed playback position in seconds, clamped to [0, duration]."""
        return max(0.0, min(self._raw_position(), self._duration))

    def _raw_position(self) -> float:
        if self._phase == TransportPhase.PLAYING and self._anchor_time is not None:
            elapsed = self.clock() - self._anchor_time
            return elapsed + self._accumulated_offset
        return self._accumulated_offset

    def set_duration(self, duration: float):
        """Set the length of the loaded clip in seconds."""
        self._duration = max(0.0, duration)
        self._accumulated_offset = min(self._accumulated_offset, self._duration)

    def set_end_check(self, check: Optional[Callable[[], bool]]):
        """Register a probe polled every frame; True means playback has ended."""
        self._end_check = check

    def set_end_callback(self, callback: Optional[Callable[[], None]]):
        """Set the handler for natural end (default: natural_end())."""
        self._end_callback = callback

    def begin_loading(self):
        """Enter the LOADING phase while a clip is decoded."""
        self._cancel_polling()
        self._phase = TransportPhase.LOADING
        self._notify_state_change()
        print("Transport: Loading clip")

    def cancel_loading(self):
        """Return to IDLE after a failed or abandoned load."""
        if self._phase != TransportPhase.LOADING:
            return
        self._phase = TransportPhase.IDLE
        self._notify_state_change()
        print("Transport: Load cancelled")

    def play(self, offset: Optional[float] = None, playback_rate: Optional[float] = None) -> bool:
        """
        Start or resume the clock.

        Args:
            offset: Clip position to start from (default: banked offset)
            playback_rate: Rate the graph is playing at (default: unchanged)
        """
        if offset is not None:
            self._accumulated_offset = max(0.0, min(offset, self._duration))
        if playback_rate is not None:
            self._playback_rate = playback_rate

        self._anchor_time = self.clock()
        self._phase = TransportPhase.PLAYING
        self._last_report = None
        self._schedule_frame()

        self._notify_state_change()
        print(f"Transport: Playing from {self._accumulated_offset:.3f}s "
              f"at rate {self._playback_rate:.3f}")
        return True

    def pause(self) -> bool:
        """Bank the elapsed position and freeze it."""
        if self._phase != TransportPhase.PLAYING:
            return False

        elapsed = self.clock() - self._anchor_time
        self._accumulated_offset = min(self._accumulated_offset + elapsed, self._duration)
        self._anchor_time = None
        self._phase = TransportPhase.PAUSED
        self._cancel_polling()

        self._notify_state_change()
        print(f"Transport: Paused at {self._accumulated_offset:.3f}s")
        return True

    def stop(self):
        """Stop playback and return to the start."""
        was_active = self._phase != TransportPhase.IDLE or self._accumulated_offset != 0.0
        self._cancel_polling()
        self._phase = TransportPhase.IDLE
        self._anchor_time = None
        self._accumulated_offset = 0.0

        if was_active:
            self._notify_state_change()
            self._notify_position_change(0.0)
        print("Transport: Stopped")

    def natural_end(self):
        """Playback reached the end of the clip: back to IDLE at position 0."""
        self._cancel_polling()
        self._phase = TransportPhase.IDLE
        self._anchor_time = None
        self._accumulated_offset = 0.0

        self._notify_state_change()
        self._notify_position_change(0.0)
        print("Transport: Reached end of clip")

    def seek(self, seconds: float) -> float:
        """Move to a clip position. Returns the clamped position."""
        target = max(0.0, min(seconds, self._duration))
        self._accumulated_offset = target
        if self._phase == TransportPhase.PLAYING:
            self._anchor_time = self.clock()

        self._notify_position_change(target)
        print(f"Transport: Seeked to {target:.3f}s")
        return target

    def set_playback_rate(self, rate: float):
        """Record the rate the graph is playing at. The clock is not rescaled."""
        if rate <= 0:
            raise ValueError(f"Playback rate must be positive, got {rate}")
        self._playback_rate = rate

    # === Position polling ===

    def _schedule_frame(self):
        self._cancel_polling()
        self._frame_handle = self.scheduler.request_frame(self._on_frame)

    def _cancel_polling(self):
        if self._frame_handle is not None:
            self.scheduler.cancel_frame(self._frame_handle)
            self._frame_handle = None

    @property
    def is_polling(self) -> bool:
        return self._frame_handle is not None

    def _on_frame(self, timestamp: float):
        """Per-frame position update while playing."""
        self._frame_handle = None
        if self._phase != TransportPhase.PLAYING:
            return

        ended = self._duration > 0 and self._raw_position() >= self._duration
        if not ended and self._end_check is not None:
            ended = self._end_check()

        if ended:
            if self._end_callback is not None:
                self._end_callback()
            else:
                self.natural_end()
            return

        now = self.clock()
        if self._last_report is None or now - self._last_report >= self.config.report_interval:
            self._last_report = now
            self._notify_position_change(self.position)

        # A callback may have paused or stopped the transport
        if self._phase == TransportPhase.PLAYING and self._frame_handle is None:
            self._frame_handle = self.scheduler.request_frame(self._on_frame)

    def _notify_position_change(self, position: float):
        """Notify position change callbacks."""
        for callback in self._position_callbacks:
            try:
                callback(position, self._duration)
            except Exception as e:
                print(f"Position callback error: {e}")

    def _notify_state_change(self):
        """Notify state change callbacks."""
        for callback in self._state_callbacks:
            try:
                callback(self._phase)
            except Exception as e:
                print(f"State callback error: {e}")

    def add_position_callback(self, callback: Callable[[float, float], None]):
        """Register callback for position changes (position, duration)."""
        self._position_callbacks.append(callback)

    def add_state_callback(self, callback: Callable[[TransportPhase], None]):
        """Register callback for phase changes."""
        self._state_callbacks.append(callback)

    def get_status(self) -> dict:
        """Get current transport status."""
        return {
            'state': self._phase.value,
            'is_playing': self.is_playing,
            'position': self.position,
            'duration': self._duration,
            'playback_rate': self._playback_rate,
        }
