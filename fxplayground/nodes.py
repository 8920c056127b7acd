"""Signal graph nodes for real-time clip playback with effects."""

import math
from abc import ABC, abstractmethod
from typing import Dict, Any

import numpy as np
from scipy.fft import rfft, irfft

from .clip_store import AudioClip
from .impulse_response import ImpulseResponse


OUTPUT_CHANNELS = 2  # Graph is rendered in stereo


# === Base Node Class ===

class BaseNode(ABC):
    """Abstract base class for graph nodes."""

    def __init__(self, sample_rate: int = 44100):
        self.sample_rate = sample_rate

    @abstractmethod
    def reset(self) -> None:
        """Reset node state (read heads, delay lines, ramps)."""
        pass

    @abstractmethod
    def get_parameters(self) -> Dict[str, Any]:
        """Get current node parameters."""
        pass

    @abstractmethod
    def set_parameter(self, name: str, value: float) -> bool:
        """Set a node parameter by name."""
        pass


# === Buffer Source ===

class BufferSource(BaseNode):
    """
    Plays an AudioClip at a variable playback rate.

    The read head advances by playback_rate * clip_rate / output_rate clip
    frames per output frame, with linear interpolation between samples.
    Mono clips feed both output channels; clips with more than two channels
    contribute their first two.
    """

    def __init__(self, clip: AudioClip, sample_rate: int = 44100,
                 playback_rate: float = 1.0, start_offset: float = 0.0):
        super().__init__(sample_rate)
        self.clip = clip
        self.playback_rate = max(playback_rate, 1e-6)
        self.start_offset = max(0.0, min(start_offset, clip.duration_seconds))

        if clip.num_channels == 1:
            self._channels = (clip.channels[0], clip.channels[0])
        else:
            self._channels = clip.channels[:OUTPUT_CHANNELS]

        self._position = self.start_offset * clip.sample_rate  # In clip frames
        self._ended = False
        self._stopped = False

    @property
    def ended(self) -> bool:
        """True once the read head has passed the last clip frame."""
        return self._ended

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def position_seconds(self) -> float:
        """Read head position in clip seconds."""
        return min(self._position, self.clip.frames) / self.clip.sample_rate

    def stop(self) -> None:
        """Silence the source immediately. A stopped source never restarts."""
        self._stopped = True

    def render(self, frames: int) -> np.ndarray:
        """Render the next block as a (frames, 2) float32 array."""
        output = np.zeros((frames, OUTPUT_CHANNELS), dtype=np.float32)
        if self._stopped or self._ended:
            return output

        length = self.clip.frames
        step = self.playback_rate * self.clip.sample_rate / self.sample_rate

        positions = self._position + step * np.arange(frames)
        valid = positions < length
        count = int(np.count_nonzero(valid))

        if count > 0:
            read = positions[:count]
            index = read.astype(np.int64)
            frac = (read - index).astype(np.float32)
            next_index = np.minimum(index + 1, length - 1)

            for channel_index, channel in enumerate(self._channels):
                output[:count, channel_index] = (
                    channel[index] * (1.0 - frac) + channel[next_index] * frac
                )

        self._position += step * frames
        if self._position >= length:
            self._ended = True

        return output

    def reset(self) -> None:
        """Rewind to the start offset."""
        self._position = self.start_offset * self.clip.sample_rate
        self._ended = False

    def get_parameters(self) -> Dict[str, Any]:
        return {
            'playback_rate': self.playback_rate,
            'start_offset': self.start_offset,
            'position': self.position_seconds,
            'ended': self._ended,
        }

    def set_parameter(self, name: str, value: float) -> bool:
        if name == 'playback_rate':
            self.playback_rate = max(float(value), 1e-6)
            return True
        return False


# === Gain ===

class GainNode(BaseNode):
    """Gain stage. New values are ramped linearly across one block."""

    def __init__(self, gain: float = 1.0, sample_rate: int = 44100):
        super().__init__(sample_rate)
        self.gain = gain
        self._current = gain

    def process(self, audio: np.ndarray) -> np.ndarray:
        """Apply gain to a (frames, channels) block."""
        target = self.gain
        if self._current == target:
            if target == 1.0:
                return audio
            return audio * np.float32(target)

        ramp = np.linspace(self._current, target, len(audio), dtype=np.float32)
        self._current = target
        return audio * ramp[:, np.newaxis]

    @property
    def is_silent(self) -> bool:
        """True when the gain is, and will stay, zero for the next block."""
        return self.gain == 0.0 and self._current == 0.0

    def reset(self) -> None:
        self._current = self.gain

    def get_parameters(self) -> Dict[str, Any]:
        return {'gain': self.gain}

    def set_parameter(self, name: str, value: float) -> bool:
        if name == 'gain':
            self.gain = float(value)
            return True
        return False


# === Convolver ===

# Loudness calibration for normalized impulse responses
GAIN_CALIBRATION = 0.00125
GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
MIN_POWER = 0.000125


def normalization_scale(impulse: ImpulseResponse) -> float:
    """Scale that brings an impulse response to a consistent loudness."""
    data = impulse.data.astype(np.float64)
    power = math.sqrt(float(np.sum(data * data)) / (impulse.num_channels * impulse.frames))
    power = max(power, MIN_POWER)

    scale = 1.0 / power
    scale *= GAIN_CALIBRATION
    scale *= GAIN_CALIBRATION_SAMPLE_RATE / impulse.sample_rate

    # True-stereo kernels feed each output twice
    if impulse.num_channels == 4:
        scale *= 0.5
    return scale


class Convolver(BaseNode):
    """
    Uniformly partitioned FFT convolution.

    The impulse response is cut into block-sized partitions; each incoming
    block is transformed once, pushed onto a frequency-domain delay line, and
    multiplied against every partition (overlap-save). Channel c of the input
    is convolved with channel c of the impulse response.
    """

    def __init__(self, impulse: ImpulseResponse, block_size: int = 512,
                 normalize: bool = True):
        super().__init__(impulse.sample_rate)
        self.impulse = impulse
        self.block_size = block_size
        self.normalize = normalize
        self.scale = normalization_scale(impulse) if normalize else 1.0

        channels = impulse.num_channels
        fft_size = 2 * block_size
        self._partitions = max(1, math.ceil(impulse.frames / block_size))

        padded = np.zeros((self._partitions * block_size, channels), dtype=np.float64)
        padded[:impulse.frames] = impulse.data * self.scale
        segments = padded.reshape(self._partitions, block_size, channels)

        # (partitions, bins, channels)
        self._spectra = rfft(segments, n=fft_size, axis=1)

        # Frequency-domain delay line, stored twice so the newest-first
        # window is always a contiguous slice
        self._fdl = np.zeros((2 * self._partitions,) + self._spectra.shape[1:],
                             dtype=np.complex128)
        self._head = 0
        self._previous = np.zeros((block_size, channels), dtype=np.float64)

    @property
    def partitions(self) -> int:
        return self._partitions

    def process(self, audio: np.ndarray, accumulate: bool = True) -> np.ndarray:
        """
        Convolve one (block_size, channels) block.

        Args:
            audio: Input block
            accumulate: If False, only advance the delay line and return
                silence (used while the wet path is muted)

        Returns:
            Convolved block, float32
        """
        if len(audio) != self.block_size:
            raise ValueError(f"Convolver expects blocks of {self.block_size} frames, "
                             f"got {len(audio)}")

        frame = np.concatenate([self._previous, audio], axis=0)
        self._previous = np.asarray(audio, dtype=np.float64)

        spectrum = rfft(frame, axis=0)
        self._head = (self._head - 1) % self._partitions
        self._fdl[self._head] = spectrum
        self._fdl[self._head + self._partitions] = spectrum

        if not accumulate:
            return np.zeros_like(audio, dtype=np.float32)

        window = self._fdl[self._head:self._head + self._partitions]
        combined = np.einsum('pkc,pkc->kc', window, self._spectra)
        output = irfft(combined, n=2 * self.block_size, axis=0)[self.block_size:]
        return output.astype(np.float32)

    def reset(self) -> None:
        self._fdl.fill(0.0)
        self._previous.fill(0.0)
        self._head = 0

    def get_parameters(self) -> Dict[str, Any]:
        return {
            'tail_seconds': self.impulse.tail_seconds,
            'sharpness': self.impulse.sharpness,
            'partitions': self._partitions,
            'normalize': self.normalize,
        }

    def set_parameter(self, name: str, value: float) -> bool:
        # Kernel shape is fixed once built
        return False
