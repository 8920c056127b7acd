"""
Effect Graph Module
Builds the playback routing graph for a clip and updates it live.

Topology:

    source --> dry gain -------------------> output gain --> sink
          \--> convolver --> wet gain ---/
"""

from typing import Optional, List, Tuple, Dict, Any

import numpy as np

from .clip_store import AudioClip
from .effect_settings import EffectSettings, EffectLevels
from .errors import GraphBuildError
from .impulse_response import ImpulseResponse, synthesize
from .nodes import BufferSource, GainNode, Convolver, OUTPUT_CHANNELS


CONNECTIONS: List[Tuple[str, str]] = [
    ('source', 'dry_gain'),
    ('dry_gain', 'output_gain'),
    ('source', 'convolver'),
    ('convolver', 'wet_gain'),
    ('wet_gain', 'output_gain'),
    ('output_gain', 'destination'),
]


class EffectGraph:
    """
    One playback attempt: a clip source routed through dry and wet paths.

    Rendering is done in fixed blocks of block_size frames; render() accepts
    any frame count and buffers the remainder.
    """

    def __init__(self, source: BufferSource, convolver: Convolver,
                 settings: EffectSettings, block_size: int = 512):
        self.source = source
        self.convolver = convolver
        self.block_size = block_size
        self.sample_rate = source.sample_rate

        self.settings = settings
        self.levels = settings.levels()

        self.dry_gain = GainNode(self.levels.dry_gain, self.sample_rate)
        self.wet_gain = GainNode(self.levels.wet_gain, self.sample_rate)
        self.output_gain = GainNode(self.levels.output_gain, self.sample_rate)

        self._connected = True
        self._pending = np.zeros((0, OUTPUT_CHANNELS), dtype=np.float32)

    @property
    def impulse(self) -> ImpulseResponse:
        return self.convolver.impulse

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def finished(self) -> bool:
        """True once the source has played past the end of the clip."""
        return self.source.ended

    @property
    def position_seconds(self) -> float:
        return self.source.position_seconds

    def apply(self, settings: EffectSettings) -> None:
        """Retarget rate and gains. The impulse response is left as built."""
        levels = settings.levels()
        self.source.set_parameter('playback_rate', levels.playback_rate)
        self.dry_gain.set_parameter('gain', levels.dry_gain)
        self.wet_gain.set_parameter('gain', levels.wet_gain)
        self.output_gain.set_parameter('gain', levels.output_gain)
        self.settings = settings
        self.levels = levels

    def render(self, frames: int) -> np.ndarray:
        """Render the next (frames, 2) float32 block."""
        if not self._connected:
            return np.zeros((frames, OUTPUT_CHANNELS), dtype=np.float32)

        blocks = [self._pending]
        available = len(self._pending)
        while available < frames:
            block = self._process_block()
            blocks.append(block)
            available += len(block)

        rendered = np.concatenate(blocks, axis=0)
        self._pending = rendered[frames:]
        return rendered[:frames]

    def _process_block(self) -> np.ndarray:
        audio = self.source.render(self.block_size)

        dry = self.dry_gain.process(audio)
        wet = self.convolver.process(audio, accumulate=not self.wet_gain.is_silent)
        wet = self.wet_gain.process(wet)

        return self.output_gain.process(dry + wet)

    def disconnect(self) -> None:
        """Stop the source and detach every node. Idempotent."""
        if not self._connected:
            return
        self.source.stop()
        self._connected = False
        self._pending = np.zeros((0, OUTPUT_CHANNELS), dtype=np.float32)

    def get_info(self) -> Dict[str, Any]:
        """Describe the graph topology and node parameters."""
        return {
            'connected': self._connected,
            'connections': list(CONNECTIONS) if self._connected else [],
            'nodes': {
                'source': self.source.get_parameters(),
                'dry_gain': self.dry_gain.get_parameters(),
                'convolver': self.convolver.get_parameters(),
                'wet_gain': self.wet_gain.get_parameters(),
                'output_gain': self.output_gain.get_parameters(),
            },
            'levels': self.levels.to_dict(),
        }


def build_graph(clip: Optional[AudioClip], settings: EffectSettings,
                start_offset_seconds: float = 0.0, sample_rate: int = 44100,
                block_size: int = 512, rng: Optional[np.random.Generator] = None,
                normalize: bool = True) -> EffectGraph:
    """
    Assemble a graph for one playback of a clip.

    A fresh impulse response is synthesized on every build, so the reverb
    tail differs between playbacks unless a seeded rng is passed.

    Args:
        clip: Decoded clip to play
        settings: Effect slider snapshot
        start_offset_seconds: Where in the clip playback starts
        sample_rate: Output sample rate
        block_size: Render block size in frames
        rng: Optional random generator for the impulse response
        normalize: Normalize the impulse response loudness

    Returns:
        A connected EffectGraph, ready to be attached to an output

    Raises:
        GraphBuildError: If no clip is given
    """
    if clip is None:
        raise GraphBuildError("Cannot build an effect graph without a loaded clip")

    levels = EffectLevels.from_settings(settings)

    source = BufferSource(
        clip,
        sample_rate=sample_rate,
        playback_rate=levels.playback_rate,
        start_offset=start_offset_seconds,
    )

    impulse = synthesize(settings.reverb_amount, sample_rate, rng=rng)
    convolver = Convolver(impulse, block_size=block_size, normalize=normalize)

    return EffectGraph(source, convolver, settings, block_size=block_size)


def apply_settings(graph: Optional[EffectGraph], settings: EffectSettings) -> bool:
    """
    Push new settings into a live graph without rebuilding it.

    Returns:
        True if a connected graph was updated, False if there was nothing to update
    """
    if graph is None or not graph.is_connected:
        return False
    graph.apply(settings)
    return True
