"""Audio recorder module for capturing microphone clips into memory."""

import io
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Callable, Any

import numpy as np
import soundfile as sf

from .errors import DeviceError


@dataclass
class RecordingConfig:
    """Configuration for audio recording."""
    sample_rate: int = 44100
    buffer_size: int = 512
    channels: int = 1  # Mono recording
    dtype: str = 'float32'
    max_duration: float = 60.0  # Maximum recording duration in seconds
    device: Optional[int] = None


@dataclass
class RecordingMetadata:
    """Metadata for a recording."""
    duration: float = 0.0
    sample_rate: int = 44100
    channels: int = 1
    num_samples: int = 0
    created_at: str = ""


class AudioRecorder:
    """
    Records audio buffers to memory.

    Buffers come either from a sounddevice input stream (start(capture=True))
    or from a caller feeding add_audio_buffer() directly.
    """

    def __init__(self, config: Optional[RecordingConfig] = None):
        self.config = config or RecordingConfig()

        # Recording state
        self.is_recording = False
        self._started = False  # Between start() and stop(), even after hitting max_duration
        self.stream: Optional[Any] = None

        # Audio buffer storage
        self.audio_buffers: List[np.ndarray] = []
        self._buffer_lock = threading.Lock()

        self.metadata: Optional[RecordingMetadata] = None

        # Callbacks for recording events
        self.on_recording_stopped: Optional[Callable[[RecordingMetadata], None]] = None

    def start(self, capture: bool = True) -> bool:
        """Start recording.

        Args:
            capture: Open the input device and record from it

        Returns:
            True if recording started, False if already recording

        Raises:
            DeviceError: If the input device cannot be opened
        """
        if self._started:
            return False

        with self._buffer_lock:
            self.audio_buffers = []

        self.metadata = RecordingMetadata(
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
            created_at=datetime.now().isoformat()
        )

        if capture:
            self._open_stream()

        self.is_recording = True
        self._started = True
        print("Audio recording started")
        return True

    def _open_stream(self) -> None:
        try:
            import sounddevice as sd
        except OSError as e:
            raise DeviceError(f"PortAudio is not available: {e}") from e

        stream_kwargs = {
            'samplerate': self.config.sample_rate,
            'blocksize': self.config.buffer_size,
            'channels': self.config.channels,
            'dtype': self.config.dtype,
            'callback': self._audio_callback
        }
        if self.config.device is not None:
            stream_kwargs['device'] = self.config.device

        try:
            self.stream = sd.InputStream(**stream_kwargs)
            self.stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self.stream = None
            raise DeviceError(f"Could not open audio input: {e}") from e

    def _audio_callback(self, indata: np.ndarray, frames: int,
                        time_info: Any, status: Any) -> None:
        """Internal callback called by sounddevice."""
        if status:
            print(f"Audio status: {status}")
        self.add_audio_buffer(indata)

    def stop(self) -> Optional[RecordingMetadata]:
        """Stop recording and return metadata.

        Returns:
            Recording metadata or None if not recording
        """
        if not self._started:
            return None

        self.is_recording = False
        self._started = False

        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None

        with self._buffer_lock:
            total_samples = sum(len(buf) for buf in self.audio_buffers)

        metadata = self.metadata
        metadata.num_samples = total_samples
        metadata.duration = total_samples / self.config.sample_rate

        if self.on_recording_stopped:
            try:
                self.on_recording_stopped(metadata)
            except Exception as e:
                print(f"Error in recording stopped callback: {e}")

        print(f"Audio recording stopped: {metadata.duration:.3f}s, "
              f"{metadata.num_samples} samples")
        return metadata

    def add_audio_buffer(self, audio_data: np.ndarray) -> None:
        """Add an audio buffer to the recording.

        This method is thread-safe and can be called from audio callbacks.
        """
        if not self.is_recording:
            return

        if self.get_duration() >= self.config.max_duration:
            print(f"Max recording duration reached: {self.config.max_duration}s")
            # The stream is closed by stop() on the caller's thread
            self.is_recording = False
            return

        # Copy the data to avoid issues with buffer reuse
        buffer_copy = np.array(audio_data, dtype=np.float32, copy=True)
        if buffer_copy.ndim == 1:
            buffer_copy = buffer_copy.reshape(-1, 1)

        with self._buffer_lock:
            self.audio_buffers.append(buffer_copy)

    def get_audio_data(self) -> Optional[np.ndarray]:
        """Get the complete recording as a (frames, channels) array, or None."""
        with self._buffer_lock:
            if not self.audio_buffers:
                return None
            return np.concatenate(self.audio_buffers, axis=0)

    def get_duration(self) -> float:
        """Get the current recording duration in seconds."""
        with self._buffer_lock:
            total_samples = sum(len(buf) for buf in self.audio_buffers)
        return total_samples / self.config.sample_rate

    def to_wav_bytes(self) -> Optional[bytes]:
        """Encode the recording as 16-bit WAV, ready for ClipStore.load()."""
        audio_data = self.get_audio_data()
        if audio_data is None:
            return None

        buffer = io.BytesIO()
        sf.write(buffer, audio_data, self.config.sample_rate, format='WAV', subtype='PCM_16')
        return buffer.getvalue()

    def clear(self) -> None:
        """Clear all recorded audio data."""
        with self._buffer_lock:
            self.audio_buffers = []
        self.metadata = None
