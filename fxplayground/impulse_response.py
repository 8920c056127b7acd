"""Synthetic reverb impulse responses (decaying noise bursts)."""

from dataclasses import dataclass
from typing import Optional

import numpy as np


IR_CHANNELS = 2


@dataclass(frozen=True)
class ImpulseResponse:
    """Stereo reverb kernel, shape (frames, 2)."""
    data: np.ndarray
    sample_rate: int
    tail_seconds: float
    sharpness: float

    @property
    def frames(self) -> int:
        return self.data.shape[0]

    @property
    def num_channels(self) -> int:
        return self.data.shape[1]


def tail_seconds_for(reverb_amount: float) -> float:
    """Tail length in seconds: 2 s at 0% up to 5 s at 100%."""
    return 2.0 + (reverb_amount / 100.0) * 3.0


def sharpness_for(reverb_amount: float) -> float:
    """Decay exponent: 2 at 0% up to 4 at 100%."""
    return 2.0 + (reverb_amount / 100.0) * 2.0


def synthesize(reverb_amount: float, sample_rate: int,
               rng: Optional[np.random.Generator] = None) -> ImpulseResponse:
    """
    Generate a stereo noise burst shaped by a polynomial decay envelope.

    Each channel is filled independently with uniform noise in [-1, 1) and
    multiplied by (1 - i/length) ** sharpness.

    The noise is unseeded by default, so two calls with the same reverb
    amount give different kernels and reverb output is not reproducible
    between playbacks. Pass a seeded Generator for repeatable buffers.

    Args:
        reverb_amount: Reverb slider value (0-100)
        sample_rate: Sample rate of the kernel
        rng: Optional random generator (default: fresh unseeded generator)

    Returns:
        ImpulseResponse of int(sample_rate * tail_seconds) frames
    """
    reverb_amount = max(0.0, min(float(reverb_amount), 100.0))
    rng = rng if rng is not None else np.random.default_rng()

    tail_seconds = tail_seconds_for(reverb_amount)
    sharpness = sharpness_for(reverb_amount)
    length = int(sample_rate * tail_seconds)

    envelope = (1.0 - np.arange(length) / length) ** sharpness
    noise = rng.uniform(-1.0, 1.0, size=(length, IR_CHANNELS))
    data = (noise * envelope[:, np.newaxis]).astype(np.float32)
    data.flags.writeable = False

    return ImpulseResponse(
        data=data,
        sample_rate=sample_rate,
        tail_seconds=tail_seconds,
        sharpness=sharpness,
    )
