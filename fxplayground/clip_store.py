"""
Clip Store Module
Decodes encoded audio sources into in-memory PCM clips and caches the
current clip for the session.
"""

import asyncio
import io
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union, BinaryIO
from urllib.parse import urlparse
from urllib.request import url2pathname

import numpy as np
import requests
import soundfile as sf

from .errors import DecodeError


AudioSource = Union[bytes, bytearray, memoryview, BinaryIO, str, os.PathLike]

# Formats offered by the upload dialog; anything libsndfile can open is accepted
SUPPORTED_FORMATS = ('WAV', 'FLAC', 'OGG', 'MP3')


@dataclass(frozen=True)
class AudioClip:
    """Decoded audio: one float32 array per channel, all the same length."""
    sample_rate: int
    channels: Tuple[np.ndarray, ...]

    @property
    def num_channels(self) -> int:
        return len(self.channels)

    @property
    def frames(self) -> int:
        return len(self.channels[0]) if self.channels else 0

    @property
    def duration_seconds(self) -> float:
        return self.frames / self.sample_rate

    @classmethod
    def from_array(cls, audio_data: np.ndarray, sample_rate: int) -> 'AudioClip':
        """
        Build a clip from a (frames,) or (frames, channels) sample array.

        Args:
            audio_data: Audio samples as numpy array (int16, int32 or float)
            sample_rate: Sample rate of the audio

        Returns:
            Read-only AudioClip
        """
        if sample_rate <= 0:
            raise DecodeError(f"Invalid sample rate: {sample_rate}")

        audio_data = np.asarray(audio_data)

        # Convert to float32 if needed
        if audio_data.dtype == np.int16:
            audio_data = audio_data.astype(np.float32) / 32768.0
        elif audio_data.dtype == np.int32:
            audio_data = audio_data.astype(np.float32) / 2147483648.0
        elif audio_data.dtype != np.float32:
            audio_data = audio_data.astype(np.float32)

        if audio_data.ndim == 1:
            audio_data = audio_data.reshape(-1, 1)
        elif audio_data.ndim != 2:
            raise DecodeError(f"Unexpected sample array shape: {audio_data.shape}")

        if audio_data.shape[0] == 0 or audio_data.shape[1] == 0:
            raise DecodeError("Audio contains no samples")

        channels = []
        for index in range(audio_data.shape[1]):
            channel = audio_data[:, index].copy()
            channel.flags.writeable = False
            channels.append(channel)

        return cls(sample_rate=int(sample_rate), channels=tuple(channels))

    def get_info(self) -> dict:
        return {
            'sample_rate': self.sample_rate,
            'channels': self.num_channels,
            'frames': self.frames,
            'duration': self.duration_seconds,
        }


@dataclass
class ClipStoreConfig:
    """Configuration for the clip store."""
    fetch_timeout: float = 20.0  # Seconds, for http(s) sources


class ClipStore:
    """
    Holds the single decoded clip of a session.

    Loading a new source replaces the cached clip. A failed load leaves the
    previous clip in place.
    """

    def __init__(self, config: Optional[ClipStoreConfig] = None):
        self.config = config or ClipStoreConfig()
        self._clip: Optional[AudioClip] = None
        self._source_name: Optional[str] = None

    @property
    def clip(self) -> Optional[AudioClip]:
        return self._clip

    @property
    def has_clip(self) -> bool:
        return self._clip is not None

    async def load(self, source: AudioSource) -> AudioClip:
        """
        Fetch and decode an audio source, then cache the result.

        Decoding runs in a worker thread; the caller is suspended until it
        completes or fails.

        Args:
            source: Raw bytes, a binary file object, a file path, or a
                file://, http:// or https:// URL

        Returns:
            The decoded clip

        Raises:
            DecodeError: If the source cannot be read or parsed as audio
        """
        data = await asyncio.to_thread(self._read_source, source)
        clip = await asyncio.to_thread(self.decode, data)

        self._clip = clip
        self._source_name = self._describe(source)
        print(f"Clip store: loaded {self._source_name} "
              f"({clip.duration_seconds:.3f}s, {clip.num_channels}ch, {clip.sample_rate}Hz)")
        return clip

    def load_pcm(self, audio_data: np.ndarray, sample_rate: int) -> AudioClip:
        """Cache already decoded PCM (e.g., from a recording)."""
        clip = AudioClip.from_array(audio_data, sample_rate)
        self._clip = clip
        self._source_name = "pcm"
        print(f"Clip store: loaded recording ({clip.duration_seconds:.3f}s, {clip.sample_rate}Hz)")
        return clip

    def clear(self) -> None:
        """Evict the cached clip."""
        self._clip = None
        self._source_name = None
        print("Clip store: cleared")

    @staticmethod
    def decode(data: bytes) -> AudioClip:
        """Decode encoded audio bytes into a clip."""
        if not data:
            raise DecodeError("Audio source is empty")

        try:
            audio_data, sample_rate = sf.read(io.BytesIO(data), dtype='float32', always_2d=True)
        except (RuntimeError, ValueError, TypeError) as e:
            raise DecodeError(f"Could not decode audio: {e}") from e

        return AudioClip.from_array(audio_data, sample_rate)

    def _read_source(self, source: AudioSource) -> bytes:
        """Resolve a source to its encoded bytes."""
        if isinstance(source, (bytes, bytearray, memoryview)):
            return bytes(source)

        if hasattr(source, 'read'):
            data = source.read()
            if not isinstance(data, (bytes, bytearray)):
                raise DecodeError("Audio file object must be opened in binary mode")
            return bytes(data)

        if isinstance(source, str):
            scheme = urlparse(source).scheme.lower()
            if scheme in ('http', 'https'):
                return self._fetch(source)
            if scheme == 'file':
                source = url2pathname(urlparse(source).path)

        try:
            return Path(source).read_bytes()
        except (OSError, TypeError) as e:
            raise DecodeError(f"Could not read audio source {source!r}: {e}") from e

    def _fetch(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=self.config.fetch_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DecodeError(f"Could not fetch audio from {url}: {e}") from e
        return response.content

    @staticmethod
    def _describe(source: AudioSource) -> str:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return f"<{len(source)} bytes>"
        if hasattr(source, 'read'):
            return getattr(source, 'name', '<stream>')
        return str(source)

    def get_info(self) -> Optional[dict]:
        if self._clip is None:
            return None
        info = self._clip.get_info()
        info['source'] = self._source_name
        return info
