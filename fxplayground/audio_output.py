"""
Audio Output Module
Output sinks that pull rendered blocks from the live effect graph.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any

import numpy as np

from .effect_graph import EffectGraph
from .errors import DeviceError


class OutputState(Enum):
    CLOSED = "closed"
    RUNNING = "running"
    SUSPENDED = "suspended"


@dataclass
class AudioOutputConfig:
    """Configuration for audio output."""
    sample_rate: int = 44100
    buffer_size: int = 512  # ~11ms latency at 44100Hz
    channels: int = 2  # Stereo output
    dtype: str = 'float32'
    device: Optional[int] = None


class BaseOutput(ABC):
    """
    A single exclusive output device.

    At most one graph is attached at a time; attaching a graph replaces the
    previous one, and once detach() returns the old graph is never pulled
    again.
    """

    def __init__(self, config: Optional[AudioOutputConfig] = None):
        self.config = config or AudioOutputConfig()
        self.state = OutputState.CLOSED
        self._graph: Optional[EffectGraph] = None
        self._lock = threading.Lock()

    @property
    def graph(self) -> Optional[EffectGraph]:
        return self._graph

    @property
    def is_running(self) -> bool:
        return self.state == OutputState.RUNNING

    def attach(self, graph: EffectGraph) -> None:
        """Route a graph to the device, replacing any attached graph."""
        with self._lock:
            self._graph = graph

    def detach(self) -> None:
        """Remove the attached graph. Output goes silent."""
        with self._lock:
            self._graph = None

    def ensure_running(self) -> None:
        """
        Make sure the device is producing audio.

        A closed device is opened on first use. A suspended device is resumed,
        with one retry before giving up.

        Raises:
            DeviceError: If the device could not be started or resumed
        """
        if self.state == OutputState.RUNNING:
            return

        try:
            self.resume()
        except DeviceError as e:
            print(f"Audio output: resume failed ({e}), retrying")
            self.resume()

        if self.state != OutputState.RUNNING:
            raise DeviceError("Audio output device did not resume")

    def resume(self) -> None:
        """Open the device if needed and start it."""
        if self.state == OutputState.RUNNING:
            return
        if self.state == OutputState.CLOSED:
            self._open()
            self.state = OutputState.SUSPENDED
        self._start()
        self.state = OutputState.RUNNING

    def suspend(self) -> None:
        """Pause the device without releasing it."""
        if self.state != OutputState.RUNNING:
            return
        self._stop()
        self.state = OutputState.SUSPENDED

    def close(self) -> None:
        """Release the device."""
        self.detach()
        if self.state == OutputState.CLOSED:
            return
        if self.state == OutputState.RUNNING:
            self._stop()
        self._close()
        self.state = OutputState.CLOSED

    def render(self, frames: int) -> np.ndarray:
        """Pull a block from the attached graph, mapped to the device channels."""
        with self._lock:
            graph = self._graph
            if graph is None:
                return np.zeros((frames, self.config.channels), dtype=np.float32)
            block = graph.render(frames)

        if self.config.channels == 1:
            block = block.mean(axis=1, keepdims=True)
        elif self.config.channels > block.shape[1]:
            padded = np.zeros((frames, self.config.channels), dtype=np.float32)
            padded[:, :block.shape[1]] = block
            block = padded

        # Clip output to prevent distortion
        return np.clip(block[:, :self.config.channels], -1.0, 1.0)

    @abstractmethod
    def _open(self) -> None:
        pass

    @abstractmethod
    def _start(self) -> None:
        pass

    @abstractmethod
    def _stop(self) -> None:
        pass

    @abstractmethod
    def _close(self) -> None:
        pass

    def get_info(self) -> dict:
        return {
            'state': self.state.value,
            'sample_rate': self.config.sample_rate,
            'buffer_size': self.config.buffer_size,
            'channels': self.config.channels,
            'device': self.config.device,
            'graph_attached': self._graph is not None,
        }


class SoundDeviceOutput(BaseOutput):
    """Plays the attached graph through a sounddevice output stream."""

    def __init__(self, config: Optional[AudioOutputConfig] = None):
        super().__init__(config)
        self.stream: Optional[Any] = None

    def _open(self) -> None:
        # PortAudio is only loaded once the device is actually needed
        try:
            import sounddevice as sd
        except OSError as e:
            raise DeviceError(f"PortAudio is not available: {e}") from e

        # Build stream kwargs
        stream_kwargs = {
            'samplerate': self.config.sample_rate,
            'blocksize': self.config.buffer_size,
            'channels': self.config.channels,
            'dtype': self.config.dtype,
            'callback': self._audio_callback
        }

        # Add device if specified
        if self.config.device is not None:
            stream_kwargs['device'] = self.config.device

        try:
            self.stream = sd.OutputStream(**stream_kwargs)
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceError(f"Could not open audio output: {e}") from e

        device_name = f"device {self.config.device}" if self.config.device is not None else "default device"
        print(f"Audio output opened on {device_name}: {self.config.sample_rate}Hz, "
              f"buffer={self.config.buffer_size} samples")

    def _start(self) -> None:
        import sounddevice as sd

        try:
            self.stream.start()
        except sd.PortAudioError as e:
            raise DeviceError(f"Could not start audio output: {e}") from e
        print("Audio output started")

    def _stop(self) -> None:
        import sounddevice as sd

        try:
            self.stream.stop()
        except sd.PortAudioError as e:
            print(f"Error stopping audio stream: {e}")
        print("Audio output suspended")

    def _close(self) -> None:
        import sounddevice as sd

        if self.stream is not None:
            try:
                self.stream.close()
            except sd.PortAudioError as e:
                print(f"Error closing audio stream: {e}")
            self.stream = None
        print("Audio output closed")

    def _audio_callback(self, outdata: np.ndarray, frames: int,
                        time_info: Any, status: Any) -> None:
        """Internal callback called by sounddevice for output."""
        if status:
            print(f"Audio status: {status}")
        outdata[:] = self.render(frames)

    @staticmethod
    def list_output_devices() -> list[dict]:
        """List available audio output devices."""
        import sounddevice as sd

        devices = sd.query_devices()
        output_devices = []
        for i, dev in enumerate(devices):
            if dev['max_output_channels'] > 0:
                output_devices.append({
                    'id': i,
                    'name': dev['name'],
                    'channels': dev['max_output_channels'],
                    'sample_rate': dev['default_samplerate'],
                    'type': 'output'
                })
        return output_devices


class OfflineOutput(BaseOutput):
    """
    Device-free output. Blocks are produced only when pull() is called,
    e.g. from tests or a host application's own audio loop.
    """

    def _open(self) -> None:
        pass

    def _start(self) -> None:
        pass

    def _stop(self) -> None:
        pass

    def _close(self) -> None:
        pass

    def pull(self, frames: int) -> np.ndarray:
        """Render frames from the attached graph (silence when not running)."""
        if self.state != OutputState.RUNNING:
            return np.zeros((frames, self.config.channels), dtype=np.float32)
        return self.render(frames)
