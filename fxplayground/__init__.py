"""Playground Audio Effect Engine."""

from .clip_store import AudioClip, ClipStore, ClipStoreConfig
from .effect_settings import EffectSettings, EffectLevels, NEUTRAL
from .impulse_response import ImpulseResponse, synthesize
from .effect_graph import EffectGraph, build_graph, apply_settings
from .audio_output import AudioOutputConfig, OfflineOutput, SoundDeviceOutput
from .scheduler import ManualFrameScheduler, AsyncioFrameScheduler
from .transport import Transport, TransportPhase
from .session import PlaygroundSession, EngineConfig
from .recorder import AudioRecorder, RecordingConfig
from .errors import PlaygroundError, DecodeError, GraphBuildError, DeviceError

__all__ = [
    'AudioClip',
    'ClipStore',
    'ClipStoreConfig',
    'EffectSettings',
    'EffectLevels',
    'NEUTRAL',
    'ImpulseResponse',
    'synthesize',
    'EffectGraph',
    'build_graph',
    'apply_settings',
    'AudioOutputConfig',
    'OfflineOutput',
    'SoundDeviceOutput',
    'ManualFrameScheduler',
    'AsyncioFrameScheduler',
    'Transport',
    'TransportPhase',
    'PlaygroundSession',
    'EngineConfig',
    'AudioRecorder',
    'RecordingConfig',
    'PlaygroundError',
    'DecodeError',
    'GraphBuildError',
    'DeviceError',
]
