#!/usr/bin/env python
"""
End-to-End Test: Playground Session

Drives a whole session without an audio device:
1. Load a clip and play it with effects
2. Pause, resume and check the clock-derived position
3. Move sliders during playback
4. Restart while playing (no overlapping graphs)
5. Seek, stop and natural end
6. Error paths (bad audio, no clip, device failures, stop during load)
7. Recorder clip played back through the effects
"""

import asyncio
import io
import sys
import threading

import numpy as np
import pytest
import soundfile as sf

from fxplayground.audio_output import AudioOutputConfig, OfflineOutput
from fxplayground.effect_settings import EffectSettings, NEUTRAL
from fxplayground.errors import DecodeError, GraphBuildError, DeviceError
from fxplayground.recorder import AudioRecorder, RecordingConfig
from fxplayground.scheduler import ManualFrameScheduler, AsyncioFrameScheduler
from fxplayground.session import PlaygroundSession, EngineConfig
from fxplayground.transport import TransportPhase

SR = 8000
BLOCK = 128


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def generate_voice_clip(duration: float = 10.0, sample_rate: int = SR) -> bytes:
    """Generate a vowel-like tone and encode it as WAV."""
    t = np.arange(int(sample_rate * duration)) / sample_rate
    tone = 0.3 * np.sin(2 * np.pi * 220 * t) + 0.1 * np.sin(2 * np.pi * 660 * t)
    buffer = io.BytesIO()
    sf.write(buffer, tone.astype(np.float32), sample_rate, format='WAV', subtype='PCM_16')
    return buffer.getvalue()


def make_session(clock=None, output=None):
    clock = clock or FakeClock()
    config = EngineConfig(sample_rate=SR, buffer_size=BLOCK)
    output = output or OfflineOutput(AudioOutputConfig(sample_rate=SR, buffer_size=BLOCK))
    return PlaygroundSession(
        config,
        output=output,
        scheduler=ManualFrameScheduler(clock),
        clock=clock,
        rng=np.random.default_rng(0),
    )


class FailingOutput(OfflineOutput):
    """Output whose device refuses to start a number of times."""

    def __init__(self, failures: int):
        super().__init__(AudioOutputConfig(sample_rate=SR, buffer_size=BLOCK))
        self.failures = failures
        self.start_attempts = 0

    def _start(self) -> None:
        self.start_attempts += 1
        if self.start_attempts <= self.failures:
            raise DeviceError("device busy")


def test_playground_session():
    """Full play/pause/slider/stop walkthrough."""
    print("=" * 60)
    print("E2E Playground Session Verification")
    print("=" * 60)

    results = []
    clock = FakeClock()
    session = make_session(clock)
    positions = []
    session.transport.add_position_callback(lambda pos, dur: positions.append(pos))

    # Step 1: Play with effects
    print("\n[1/7] Loading clip and starting playback...")
    settings = EffectSettings(pitch_semitones=0, voice_clone_amount=0, reverb_amount=30)
    started = asyncio.run(session.play(generate_voice_clip(), settings))
    print(f"  Playback started: {started}, duration {session.duration:.2f}s")
    results.append(("Playback started",
                    started and session.phase == TransportPhase.PLAYING
                    and session.duration == pytest.approx(10.0) and session.output.is_running,
                    f"phase={session.phase.value}"))

    block = session.output.pull(1024)
    results.append(("Graph renders audio",
                    block.shape == (1024, 2) and np.any(block != 0.0),
                    f"peak={np.max(np.abs(block)):.3f}"))

    # Step 2: Pause after 3 seconds, resume 10 seconds later
    print("\n[2/7] Pausing and resuming...")
    clock.advance(3.0)
    session.scheduler.run_frame()
    session.pause()
    paused_at = session.position
    clock.advance(10.0)
    asyncio.run(session.play())
    resumed_graph = session.graph
    clock.advance(1.0)
    session.scheduler.run_frame()
    print(f"  Paused at {paused_at:.2f}s, position after resume {session.position:.2f}s")
    results.append(("Pause banks position",
                    paused_at == pytest.approx(3.0) and resumed_graph.position_seconds == pytest.approx(3.0),
                    f"paused_at={paused_at:.3f}"))
    results.append(("Position continues after resume",
                    session.position == pytest.approx(4.0) and positions[-1] == pytest.approx(4.0),
                    f"position={session.position:.3f}"))

    # Step 3: Live slider moves
    print("\n[3/7] Moving sliders during playback...")
    graph = session.graph
    impulse = graph.impulse
    updated = session.update_effects(EffectSettings(pitch_semitones=12, reverb_amount=60))
    clock.advance(0.25)
    results.append(("Sliders update graph in place",
                    updated and session.graph is graph and graph.impulse is impulse
                    and graph.wet_gain.gain == pytest.approx(0.6),
                    f"rate={graph.source.playback_rate:.2f}"))
    results.append(("Position is elapsed clock time at the new rate",
                    session.position == pytest.approx(4.25) and session.transport.playback_rate == 2.0,
                    f"position={session.position:.3f}"))
    session.reset_effects()
    results.append(("Reset returns sliders to neutral",
                    session.settings == NEUTRAL and graph.source.playback_rate == 1.0,
                    f"settings={session.settings.to_dict()}"))

    # Step 4: Restart while playing
    print("\n[4/7] Restarting while playing...")
    old_graph = session.graph
    asyncio.run(session.play())
    results.append(("Old graph torn down before new one starts",
                    not old_graph.is_connected and session.output.graph is session.graph
                    and session.graph is not old_graph,
                    f"old_connected={old_graph.is_connected}"))

    # Step 5: Seek and stop
    print("\n[5/7] Seeking and stopping...")
    session.seek(1.5)
    results.append(("Seek while playing rebuilds at target",
                    session.graph.position_seconds == pytest.approx(1.5) and session.is_playing,
                    f"position={session.position:.3f}"))
    session.stop()
    results.append(("Stop returns to idle at 0",
                    session.phase == TransportPhase.IDLE and session.position == 0.0
                    and session.graph is None and not session.transport.is_polling,
                    f"phase={session.phase.value}"))

    # Step 6: Natural end
    print("\n[6/7] Playing to the end of the clip...")
    asyncio.run(session.play())
    clock.advance(11.0)
    session.scheduler.run_frame()
    results.append(("Natural end returns to idle",
                    session.phase == TransportPhase.IDLE and session.position == 0.0
                    and session.graph is None,
                    f"phase={session.phase.value}"))

    # Step 7: Status
    print("\n[7/7] Checking status...")
    status = session.get_status()
    results.append(("Status reports session",
                    status['state'] == 'idle' and status['clip']['sample_rate'] == SR
                    and status['graph'] is None and status['output']['state'] == 'running',
                    f"state={status['state']}"))

    session.close()

    # Print summary
    print("\n" + "=" * 60)
    print("VERIFICATION RESULTS")
    print("=" * 60)

    all_passed = True
    for name, passed, details in results:
        status = "PASSED" if passed else "FAILED"
        print(f"  [{status}] {name}: {details}")
        if not passed:
            all_passed = False

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!" if all_passed else "SOME TESTS FAILED!")
    print("=" * 60)

    assert all_passed


def test_graph_exhaustion_ends_playback():
    clock = FakeClock()
    session = make_session(clock)
    asyncio.run(session.play(generate_voice_clip(duration=0.5)))

    # Render past the clip while the clock stands still
    for _ in range(40):
        session.output.pull(BLOCK)
    assert session.graph.finished
    session.scheduler.run_frame()

    assert session.phase == TransportPhase.IDLE
    assert session.graph is None


def test_bad_audio_returns_to_idle():
    session = make_session()
    with pytest.raises(DecodeError):
        asyncio.run(session.play(b"this is not a wav file" * 20))
    assert session.phase == TransportPhase.IDLE
    assert session.graph is None


def test_play_without_clip_fails():
    session = make_session()
    with pytest.raises(GraphBuildError):
        asyncio.run(session.play())
    assert session.phase == TransportPhase.IDLE


def test_device_failure_surfaces():
    output = FailingOutput(failures=5)
    session = make_session(output=output)
    with pytest.raises(DeviceError):
        asyncio.run(session.play(generate_voice_clip(duration=0.5)))
    assert output.start_attempts == 2
    assert session.phase == TransportPhase.IDLE
    assert session.clip is None


def test_device_resume_retries_once():
    output = FailingOutput(failures=1)
    session = make_session(output=output)
    assert asyncio.run(session.play(generate_voice_clip(duration=0.5))) is True
    assert output.start_attempts == 2
    assert session.is_playing


def test_stop_during_load_abandons_play():
    session = make_session()

    async def scenario():
        task = asyncio.create_task(session.play(generate_voice_clip(duration=0.5)))
        await asyncio.sleep(0)
        assert session.phase == TransportPhase.LOADING
        session.stop()
        return await task

    assert asyncio.run(scenario()) is False
    assert session.phase == TransportPhase.IDLE
    assert session.graph is None


def test_sliders_before_play_are_kept():
    session = make_session()
    assert session.update_effects(EffectSettings(pitch_semitones=-12)) is False
    asyncio.run(session.play(generate_voice_clip(duration=0.5)))
    assert session.graph.source.playback_rate == 0.5
    assert session.transport.playback_rate == 0.5


def test_default_scheduler_ends_playback_on_loop_thread():
    clock = FakeClock()
    session = PlaygroundSession(
        EngineConfig(sample_rate=SR, buffer_size=BLOCK),
        output=OfflineOutput(AudioOutputConfig(sample_rate=SR, buffer_size=BLOCK)),
        clock=clock,
        rng=np.random.default_rng(0),
    )
    assert isinstance(session.scheduler, AsyncioFrameScheduler)
    state_threads = []
    session.transport.add_state_callback(lambda phase: state_threads.append(threading.get_ident()))

    async def scenario():
        await session.play(generate_voice_clip(duration=0.5))
        await asyncio.sleep(0.05)
        assert session.is_playing

        clock.advance(1.0)
        await asyncio.sleep(0.1)
        return threading.get_ident()

    loop_thread = asyncio.run(scenario())

    assert session.phase == TransportPhase.IDLE
    assert session.graph is None
    assert session.position == 0.0
    assert set(state_threads) == {loop_thread}


def test_position_and_clip_position_at_octave_up():
    clock = FakeClock()
    session = make_session(clock)
    asyncio.run(session.play(generate_voice_clip(duration=2.0), EffectSettings(pitch_semitones=12)))

    session.output.pull(BLOCK * 50)  # 0.8 s of output
    clock.advance(0.8)
    status = session.get_status()

    assert status['position'] == pytest.approx(0.8)
    assert status['clip_position'] == pytest.approx(1.6)
    assert status['playback_rate'] == 2.0

    session.pause()
    assert session.transport.accumulated_offset == pytest.approx(0.8)
    assert session.get_status()['clip_position'] is None


def test_load_replaces_clip_and_stops():
    session = make_session()
    asyncio.run(session.play(generate_voice_clip(duration=0.5)))
    clip = asyncio.run(session.load(generate_voice_clip(duration=1.0)))
    assert session.clip is clip
    assert session.duration == pytest.approx(1.0)
    assert session.phase == TransportPhase.IDLE
    assert session.graph is None


def test_clear_clip():
    session = make_session()
    asyncio.run(session.play(generate_voice_clip(duration=0.5)))
    session.clear_clip()
    assert session.clip is None
    assert session.duration == 0.0
    assert session.get_status()['clip'] is None


def test_recording_plays_through_effects():
    recorder = AudioRecorder(RecordingConfig(sample_rate=SR, buffer_size=BLOCK))
    assert recorder.start(capture=False)
    t = np.arange(BLOCK) / SR
    for _ in range(50):
        recorder.add_audio_buffer(0.2 * np.sin(2 * np.pi * 330 * t).astype(np.float32))
    metadata = recorder.stop()
    assert metadata.num_samples == 50 * BLOCK

    session = make_session()
    session.load_pcm(recorder.get_audio_data(), SR)
    assert session.duration == pytest.approx(50 * BLOCK / SR)
    assert asyncio.run(session.play(settings=EffectSettings(reverb_amount=50))) is True
    assert np.any(session.output.pull(BLOCK) != 0.0)

    wav = recorder.to_wav_bytes()
    clip = asyncio.run(session.load(wav))
    assert clip.frames == 50 * BLOCK


def test_recorder_stops_at_max_duration():
    recorder = AudioRecorder(RecordingConfig(sample_rate=SR, max_duration=0.05))
    recorder.start(capture=False)
    for _ in range(10):
        recorder.add_audio_buffer(np.zeros(BLOCK, dtype=np.float32))
    assert not recorder.is_recording
    assert recorder.get_duration() == pytest.approx(4 * BLOCK / SR)
    assert recorder.stop() is not None


def test_recorder_clear_resets_state():
    recorder = AudioRecorder(RecordingConfig(sample_rate=SR))
    recorder.start(capture=False)
    recorder.add_audio_buffer(np.ones(BLOCK, dtype=np.float32))
    metadata = recorder.stop()
    assert metadata.duration == pytest.approx(BLOCK / SR)
    assert metadata.created_at

    recorder.clear()
    assert recorder.get_audio_data() is None
    assert recorder.get_duration() == 0.0
    assert recorder.metadata is None
    assert recorder.to_wav_bytes() is None
    assert recorder.stop() is None


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
