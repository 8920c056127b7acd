"""
Effect Settings Module
Parameter snapshot for the audio effects and the levels derived from it.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any


PITCH_RANGE = (-12.0, 12.0)  # Semitones
AMOUNT_RANGE = (0.0, 100.0)  # Percent

# Slider resolution used by the effects panel
SLIDER_STEPS = {
    'pitch': 1.0,
    'voiceclone': 5.0,
    'reverb': 5.0,
}


def _clamp(value: float, bounds: tuple) -> float:
    return max(bounds[0], min(float(value), bounds[1]))


@dataclass(frozen=True)
class EffectSettings:
    """Immutable snapshot of the audio effect sliders.

    Values outside their range are clamped on construction.
    """
    pitch_semitones: float = 0.0     # -12 to +12
    voice_clone_amount: float = 0.0  # 0-100
    reverb_amount: float = 0.0       # 0-100

    def __post_init__(self):
        object.__setattr__(self, 'pitch_semitones', _clamp(self.pitch_semitones, PITCH_RANGE))
        object.__setattr__(self, 'voice_clone_amount', _clamp(self.voice_clone_amount, AMOUNT_RANGE))
        object.__setattr__(self, 'reverb_amount', _clamp(self.reverb_amount, AMOUNT_RANGE))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EffectSettings':
        """Build settings from a UI payload ({'pitch', 'voiceclone', 'reverb'})."""
        if not isinstance(data, dict):
            raise TypeError(f"Effect settings must be a mapping, got {type(data).__name__}")
        return cls(
            pitch_semitones=data.get('pitch', 0.0),
            voice_clone_amount=data.get('voiceclone', 0.0),
            reverb_amount=data.get('reverb', 0.0),
        )

    def to_dict(self) -> Dict[str, float]:
        """Convert to the UI payload shape."""
        return {
            'pitch': self.pitch_semitones,
            'voiceclone': self.voice_clone_amount,
            'reverb': self.reverb_amount,
        }

    def snapped(self) -> 'EffectSettings':
        """Round every value to the nearest slider step."""
        def snap(value: float, step: float) -> float:
            return round(value / step) * step

        return EffectSettings(
            pitch_semitones=snap(self.pitch_semitones, SLIDER_STEPS['pitch']),
            voice_clone_amount=snap(self.voice_clone_amount, SLIDER_STEPS['voiceclone']),
            reverb_amount=snap(self.reverb_amount, SLIDER_STEPS['reverb']),
        )

    def levels(self) -> 'EffectLevels':
        return EffectLevels.from_settings(self)


NEUTRAL = EffectSettings()


@dataclass(frozen=True)
class EffectLevels:
    """Node-level values derived from an EffectSettings snapshot."""
    pitch_rate: float = 1.0
    formant_multiplier: float = 1.0
    dry_gain: float = 1.0
    wet_gain: float = 0.0
    output_gain: float = 1.0

    @property
    def playback_rate(self) -> float:
        return self.pitch_rate * self.formant_multiplier

    @classmethod
    def from_settings(cls, settings: EffectSettings) -> 'EffectLevels':
        """Derive node levels.

        Pitch is a plain playback-rate change (2 ** (semitones / 12)), so a
        shift up also shortens the clip. The voice clone amount is a rough
        formant stand-in: it speeds playback up by as much as 30% and raises
        output gain by as much as 20%. It does not transfer speaker identity.
        """
        pitch_rate = 2.0 ** (settings.pitch_semitones / 12.0)

        voice_clone = settings.voice_clone_amount / 100.0
        formant_multiplier = 1.0
        if voice_clone > 0:
            formant_multiplier = 1.0 + voice_clone * 0.3

        reverb = settings.reverb_amount / 100.0

        return cls(
            pitch_rate=pitch_rate,
            formant_multiplier=formant_multiplier,
            dry_gain=1.0 - reverb * 0.5,
            wet_gain=reverb,
            output_gain=1.0 + voice_clone * 0.2,
        )

    def to_dict(self) -> Dict[str, float]:
        info = asdict(self)
        info['playback_rate'] = self.playback_rate
        return info
