"""
Tests for effect settings and the levels derived from them.

Covers:
1. Semitone to playback-rate scaling
2. Dry/wet gain formulas
3. Voice clone formant approximation
4. Clamping, UI payload conversion and slider snapping
"""

import pytest

from fxplayground.effect_settings import EffectSettings, EffectLevels, NEUTRAL


@pytest.mark.parametrize("semitones", [-12, -7, -1, 0, 1, 5, 12])
def test_pitch_rate_is_equal_tempered(semitones):
    levels = EffectSettings(pitch_semitones=semitones).levels()
    assert levels.pitch_rate == pytest.approx(2.0 ** (semitones / 12.0))


def test_pitch_rate_at_zero_is_exactly_one():
    assert EffectSettings(pitch_semitones=0).levels().pitch_rate == 1.0
    assert NEUTRAL.levels().playback_rate == 1.0


def test_octave_up_doubles_playback_rate():
    levels = EffectSettings(pitch_semitones=12).levels()
    assert levels.playback_rate == 2.0
    assert EffectSettings(pitch_semitones=-12).levels().playback_rate == 0.5


@pytest.mark.parametrize("reverb", [0, 5, 25, 50, 75, 100])
def test_dry_and_wet_gains(reverb):
    levels = EffectSettings(reverb_amount=reverb).levels()
    assert levels.dry_gain == 1.0 - (reverb / 100.0) * 0.5
    assert levels.wet_gain == reverb / 100.0


def test_dry_plus_wet_is_not_normalized():
    levels = EffectSettings(reverb_amount=100).levels()
    assert levels.dry_gain + levels.wet_gain == pytest.approx(1.5)


def test_voice_clone_off_leaves_rate_and_gain_alone():
    levels = EffectSettings(pitch_semitones=3, voice_clone_amount=0).levels()
    assert levels.formant_multiplier == 1.0
    assert levels.output_gain == 1.0
    assert levels.playback_rate == levels.pitch_rate


def test_voice_clone_scales_rate_and_gain():
    levels = EffectSettings(pitch_semitones=0, voice_clone_amount=50).levels()
    assert levels.formant_multiplier == pytest.approx(1.15)
    assert levels.output_gain == pytest.approx(1.1)
    assert levels.playback_rate == pytest.approx(1.15)

    full = EffectSettings(pitch_semitones=12, voice_clone_amount=100).levels()
    assert full.playback_rate == pytest.approx(2.0 * 1.3)
    assert full.output_gain == pytest.approx(1.2)


def test_out_of_range_values_are_clamped():
    settings = EffectSettings(pitch_semitones=30, voice_clone_amount=-5, reverb_amount=250)
    assert settings.pitch_semitones == 12.0
    assert settings.voice_clone_amount == 0.0
    assert settings.reverb_amount == 100.0


def test_ui_payload_round_trip():
    settings = EffectSettings.from_dict({'pitch': -4, 'voiceclone': 35, 'reverb': 60})
    assert settings == EffectSettings(-4, 35, 60)
    assert settings.to_dict() == {'pitch': -4.0, 'voiceclone': 35.0, 'reverb': 60.0}
    assert EffectSettings.from_dict({}) == NEUTRAL


def test_snapped_rounds_to_slider_steps():
    settings = EffectSettings(pitch_semitones=2.4, voice_clone_amount=37, reverb_amount=81)
    snapped = settings.snapped()
    assert snapped.pitch_semitones == 2.0
    assert snapped.voice_clone_amount == 35.0
    assert snapped.reverb_amount == 80.0


def test_settings_are_immutable():
    settings = EffectSettings()
    with pytest.raises(AttributeError):
        settings.reverb_amount = 50


def test_levels_to_dict_includes_playback_rate():
    info = EffectLevels.from_settings(EffectSettings(pitch_semitones=12)).to_dict()
    assert info['playback_rate'] == 2.0
    assert set(info) >= {'pitch_rate', 'dry_gain', 'wet_gain', 'output_gain'}
