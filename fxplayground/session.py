"""
Playground Session

Owns everything one playback session needs: the clip store, the live effect
graph, the output device and the transport. Sessions are independent; no
state is shared between them.
"""

from dataclasses import dataclass
import time
from typing import Optional, Callable

import numpy as np

from .audio_output import BaseOutput, SoundDeviceOutput, AudioOutputConfig
from .clip_store import ClipStore, ClipStoreConfig, AudioClip, AudioSource
from .effect_graph import EffectGraph, build_graph, apply_settings
from .effect_settings import EffectSettings, NEUTRAL
from .errors import DecodeError, GraphBuildError
from .scheduler import FrameScheduler, AsyncioFrameScheduler
from .transport import Transport, TransportConfig, TransportPhase


@dataclass
class EngineConfig:
    """Engine configuration."""
    sample_rate: int = 44100
    buffer_size: int = 512
    channels: int = 2
    output_device: Optional[int] = None
    frame_rate: float = 60.0  # Position polling rate
    fetch_timeout: float = 20.0
    websocket_host: str = "localhost"
    websocket_port: int = 8765
    position_broadcast_interval: float = 0.05  # 50ms


class PlaygroundSession:
    """
    Audio effect engine for one user session.

    play() is a coroutine: its only suspension point is decoding a clip that
    has not been loaded yet. Every other operation is synchronous. Calls are
    expected from one thread; the default frame scheduler polls position on
    the same event loop that runs play().
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 output: Optional[BaseOutput] = None,
                 scheduler: Optional[FrameScheduler] = None,
                 clock: Callable[[], float] = time.perf_counter,
                 rng: Optional[np.random.Generator] = None):
        self.config = config or EngineConfig()

        self.clip_store = ClipStore(ClipStoreConfig(fetch_timeout=self.config.fetch_timeout))

        output_config = AudioOutputConfig(
            sample_rate=self.config.sample_rate,
            buffer_size=self.config.buffer_size,
            channels=self.config.channels,
            device=self.config.output_device,
        )
        self.output = output or SoundDeviceOutput(output_config)

        self.scheduler = scheduler or AsyncioFrameScheduler(frame_rate=self.config.frame_rate)
        self.transport = Transport(TransportConfig(), clock=clock, scheduler=self.scheduler)
        self.transport.set_end_check(self._graph_finished)
        self.transport.set_end_callback(self.on_natural_end)

        self.settings: EffectSettings = NEUTRAL
        self._graph: Optional[EffectGraph] = None
        self._rng = rng

    @property
    def graph(self) -> Optional[EffectGraph]:
        """The live graph, if any."""
        return self._graph

    @property
    def clip(self) -> Optional[AudioClip]:
        return self.clip_store.clip

    @property
    def phase(self) -> TransportPhase:
        return self.transport.phase

    @property
    def is_playing(self) -> bool:
        return self.transport.is_playing

    @property
    def position(self) -> float:
        return self.transport.position

    @property
    def duration(self) -> float:
        return self.transport.duration

    # === Clip loading ===

    async def load(self, source: AudioSource) -> AudioClip:
        """
        Decode a source and make it the session clip, stopping any playback.

        Raises:
            DecodeError: If the source cannot be decoded; the transport
                returns to IDLE
        """
        self.stop()
        clip = await self._load_clip(source)
        self.transport.cancel_loading()
        return clip

    def load_pcm(self, audio_data: np.ndarray, sample_rate: int) -> AudioClip:
        """Make already decoded samples (e.g., a recording) the session clip."""
        self.stop()
        clip = self.clip_store.load_pcm(audio_data, sample_rate)
        self.transport.set_duration(clip.duration_seconds)
        return clip

    async def _load_clip(self, source: AudioSource) -> AudioClip:
        self.transport.begin_loading()
        try:
            clip = await self.clip_store.load(source)
        except DecodeError:
            self.transport.cancel_loading()
            raise
        self.transport.set_duration(clip.duration_seconds)
        return clip

    def clear_clip(self):
        """Stop playback and evict the loaded clip."""
        self.stop()
        self.clip_store.clear()
        self.transport.set_duration(0.0)

    # === Transport ===

    async def play(self, source: Optional[AudioSource] = None,
                   settings: Optional[EffectSettings] = None) -> bool:
        """
        Start, resume, or restart playback with effects.

        The clip is decoded from source only if no clip is loaded yet. A
        paused session resumes from its banked position; a playing session
        is rebuilt in place at its current position; otherwise playback
        starts at 0.

        Returns:
            True if playback started, False if a stop() arrived while the
            clip was still loading

        Raises:
            DeviceError: If the output device cannot be resumed
            DecodeError: If the clip cannot be decoded
            GraphBuildError: If there is no clip and no source
        """
        if settings is not None:
            self.settings = settings

        self.output.ensure_running()

        if not self.clip_store.has_clip and source is not None:
            await self._load_clip(source)
            if self.transport.phase != TransportPhase.LOADING:
                print("Playback abandoned: stopped while loading")
                return False

        clip = self.clip_store.clip
        if clip is None:
            raise GraphBuildError("Cannot play: no clip loaded")

        phase = self.transport.phase
        if phase == TransportPhase.PLAYING:
            offset = self.transport.position
        elif phase == TransportPhase.PAUSED:
            offset = self.transport.accumulated_offset
        else:
            offset = 0.0

        self._start_graph(clip, offset)
        return True

    def _start_graph(self, clip: AudioClip, offset: float):
        # Tear down first so two graphs never sound at once
        self._teardown_graph()

        graph = build_graph(
            clip,
            self.settings,
            start_offset_seconds=offset,
            sample_rate=self.config.sample_rate,
            block_size=self.config.buffer_size,
            rng=self._rng,
        )
        self._graph = graph
        self.output.attach(graph)
        self.transport.set_duration(clip.duration_seconds)
        self.transport.play(offset, playback_rate=graph.levels.playback_rate)

    def _teardown_graph(self):
        if self._graph is None:
            return
        self.output.detach()
        self._graph.disconnect()
        self._graph = None

    def pause(self) -> bool:
        """Pause playback, keeping the position. No-op unless playing."""
        if not self.transport.is_playing:
            return False
        self.transport.pause()
        self._teardown_graph()
        return True

    def stop(self):
        """Stop playback and rewind to 0."""
        self._teardown_graph()
        self.transport.stop()

    def seek(self, seconds: float) -> float:
        """Move to a clip position; a playing session continues from there."""
        position = self.transport.seek(seconds)
        if self.transport.is_playing and self.clip is not None:
            self._start_graph(self.clip, position)
        return position

    def on_natural_end(self):
        """Playback ran past the end of the clip."""
        self._teardown_graph()
        self.transport.natural_end()

    def _graph_finished(self) -> bool:
        return self._graph is not None and self._graph.finished

    # === Effects ===

    def update_effects(self, settings: EffectSettings) -> bool:
        """
        Apply new slider values to the live graph without rebuilding it.

        The reverb tail keeps the shape it was built with; only the dry/wet
        mix, output gain and playback rate change. Safe to call on every
        slider tick.

        Returns:
            True if a live graph was updated
        """
        self.settings = settings
        if not apply_settings(self._graph, settings):
            return False
        self.transport.set_playback_rate(self._graph.levels.playback_rate)
        return True

    def reset_effects(self) -> bool:
        """Return every slider to neutral."""
        return self.update_effects(NEUTRAL)

    # === Lifecycle ===

    def close(self):
        """Stop playback and release the output device."""
        self.stop()
        self.scheduler.close()
        self.output.close()

    def get_status(self) -> dict:
        """Get current session status."""
        status = self.transport.get_status()
        status['settings'] = self.settings.to_dict()
        # Read head in clip seconds; differs from position when the rate is not 1
        status['clip_position'] = self._graph.position_seconds if self._graph is not None else None
        status['clip'] = self.clip_store.get_info()
        status['output'] = self.output.get_info()
        status['graph'] = self._graph.get_info() if self._graph is not None else None
        return status
