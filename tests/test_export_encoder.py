"""
Tests for the offline export driver.

A recording sink replaces FFmpeg, so these run anywhere; the FFmpeg sink
itself only gets its setup checks exercised.
"""
import threading
import time
from pathlib import Path

import pytest

from core.errors import SetupFailure
from core.resource_cache import PREVIEW, MediaResourceCache
from exporters import ffmpeg_sink
from exporters.export_encoder import (
    ExportEncoder,
    ExportProgress,
    ExportSettings,
    ExportState,
    ProgressThrottle,
    ReorderBuffer,
    count_frames,
    resolve_resolution,
)
from exporters.ffmpeg_sink import FfmpegFrameSink
from models.media import EffectType, MediaKind
from models.timeline import TrackVolumes
from runtime_config import RuntimeConfig

from conftest import (
    FakeAudioHandle,
    FakeImageHandle,
    FakeVideoHandle,
    constant_audio,
    make_effect,
    make_item,
)


class RecordingSink:
    """Collects frames in memory in place of an encoder."""

    def __init__(self, settings, width, height, on_write=None):
        self.settings = settings
        self.width = width
        self.height = height
        self.frames = []
        self.opened = False
        self.finalized_with = None
        self.aborted = False
        self._on_write = on_write

    def open(self):
        self.opened = True

    def write(self, frame):
        assert len(frame) == self.width * self.height * 4
        self.frames.append(frame)
        if self._on_write is not None:
            self._on_write(len(self.frames))

    def finalize(self, audio_path=None):
        self.finalized_with = audio_path
        self.audio_bytes = Path(audio_path).read_bytes() if audio_path else b""
        return Path(self.settings.output_path)

    def abort(self):
        self.aborted = True


class SinkRecorder:
    def __init__(self, on_write=None):
        self.sink = None
        self._on_write = on_write

    def __call__(self, settings, width, height):
        self.sink = RecordingSink(settings, width, height, self._on_write)
        return self.sink


def pixel(frame, width, x, y):
    offset = (y * width + x) * 4
    return tuple(frame[offset:offset + 3])


@pytest.fixture
def settings(tmp_path):
    return ExportSettings(output_path=str(tmp_path / "out.mp4"), preset="fast", fps=24)


@pytest.fixture
def red_image(loader):
    loader.register("red.png", lambda: FakeImageHandle("red"))
    return make_item(MediaKind.IMAGE, "red.png", duration=0.51)


def test_frame_count_is_ceil_of_duration(cache, settings, red_image):
    recorder = SinkRecorder()
    result = ExportEncoder([red_image], TrackVolumes(), cache, settings,
                           sink_factory=recorder).run()

    assert result.state == ExportState.COMPLETED
    # ceil(0.51 * 24)
    assert result.frames_written == 13
    assert len(recorder.sink.frames) == 13
    assert result.output_path == settings.output_path


def test_frames_arrive_in_order(cache, loader, settings):
    loader.register("red.png", lambda: FakeImageHandle("red"))
    loader.register("blue.png", lambda: FakeImageHandle("blue"))
    items = [
        make_item(MediaKind.IMAGE, "red.png", start=0.0, duration=0.25),
        make_item(MediaKind.IMAGE, "blue.png", start=0.25, duration=0.25),
    ]
    recorder = SinkRecorder()
    ExportEncoder(items, TrackVolumes(), cache, settings, sink_factory=recorder).run()

    width, height = settings.resolution
    colours = [pixel(f, width, width // 2, height // 2) for f in recorder.sink.frames]
    # 6 frames of red then 6 of blue; frame bytes are RGBA
    assert colours == [(255, 0, 0)] * 6 + [(0, 0, 255)] * 6


def test_fade_is_frame_exact(cache, loader, settings):
    loader.register("white.png", lambda: FakeImageHandle("white"))
    items = [
        make_item(MediaKind.IMAGE, "white.png", duration=1.0),
        make_effect(EffectType.FADE_IN, duration=1.0),
    ]
    recorder = SinkRecorder()
    ExportEncoder(items, TrackVolumes(), cache, settings, sink_factory=recorder).run()

    width, height = settings.resolution
    levels = [pixel(f, width, width // 2, height // 2)[0] for f in recorder.sink.frames]
    assert levels[0] == 0
    assert levels[12] == pytest.approx(255 * 12 / 24, abs=2)
    assert all(b >= a for a, b in zip(levels, levels[1:]))


def test_fade_out_ends_at_effect_end(cache, loader, settings):
    loader.register("white.png", lambda: FakeImageHandle("white"))
    items = [
        make_item(MediaKind.IMAGE, "white.png", duration=2.0),
        make_effect(EffectType.FADE_OUT, duration=1.0),
    ]
    recorder = SinkRecorder()
    ExportEncoder(items, TrackVolumes(), cache, settings, sink_factory=recorder).run()

    width, height = settings.resolution
    levels = [pixel(f, width, width // 2, height // 2)[0] for f in recorder.sink.frames]
    assert levels[0] == 255
    assert levels[23] <= 12
    assert all(b <= a for a, b in zip(levels[:24], levels[1:24]))
    # Frame 24 sits exactly on the effect's end time
    assert levels[24:] == [255] * 24


def test_missing_resource_still_emits_every_frame(cache, loader, settings, red_image):
    loader.fail("gone.png")
    missing = make_item(MediaKind.IMAGE, "gone.png", duration=0.51, track=1)
    recorder = SinkRecorder()
    result = ExportEncoder([red_image, missing], TrackVolumes(), cache, settings,
                           sink_factory=recorder).run()

    assert result.state == ExportState.COMPLETED
    assert len(recorder.sink.frames) == 13


def test_stalled_resource_does_not_stall_every_frame(loader, settings):
    loader.register("red.png", lambda: FakeImageHandle("red"))
    loader.register("stall.mp4", FakeVideoHandle)
    gate = loader.block("stall.mp4")
    cache = MediaResourceCache(loader, timeout=0.25, max_workers=2)
    image = make_item(MediaKind.IMAGE, "red.png", duration=1.0)
    stalled = make_item(MediaKind.VIDEO, "stall.mp4", duration=1.0, track=1)
    recorder = SinkRecorder()
    try:
        started = time.monotonic()
        result = ExportEncoder([image, stalled], TrackVolumes(), cache, settings,
                               sink_factory=recorder).run()
        elapsed = time.monotonic() - started

        assert result.state == ExportState.COMPLETED
        assert len(recorder.sink.frames) == 24
        # One bounded wait while preparing, none per frame
        assert elapsed < 2.0
        assert loader.calls.count("stall.mp4") == 1
    finally:
        gate.set()
        cache.shutdown()


def _recording_video(loader, path, handles):
    def factory():
        handle = FakeVideoHandle("red")
        handles.append(handle)
        return handle
    loader.register(path, factory)


def test_seek_tolerance_setting_controls_repositioning(cache, loader, tmp_path):
    handles = []
    _recording_video(loader, "clip.mp4", handles)
    clip = make_item(MediaKind.VIDEO, "clip.mp4", duration=0.25, offset=2.0)

    loose = ExportSettings(output_path=str(tmp_path / "loose.mp4"), fps=24, seek_tolerance=5.0)
    ExportEncoder([clip], TrackVolumes(), cache, loose, sink_factory=SinkRecorder()).run()
    # 2s of drift is inside the tolerance: decoded forward instead
    assert handles[0].seeks == []

    strict = ExportSettings(output_path=str(tmp_path / "strict.mp4"), fps=24)
    ExportEncoder([clip], TrackVolumes(), cache, strict, sink_factory=SinkRecorder()).run()
    assert handles[1].seeks == [pytest.approx(2.0)]


def test_audio_mixdown_handed_to_sink(cache, loader, settings):
    loader.register("tone.wav", lambda: FakeAudioHandle(constant_audio(1000, 1.0)))
    music = make_item(MediaKind.AUDIO, "tone.wav", duration=0.5, track=3)
    recorder = SinkRecorder()
    result = ExportEncoder([music], TrackVolumes(), cache, settings,
                           sink_factory=recorder).run()

    assert result.state == ExportState.COMPLETED
    assert recorder.sink.audio_bytes[:4] == b"RIFF"
    # The temporary mix is removed once the sink has it
    assert not Path(recorder.sink.finalized_with).exists()


def test_cancel_mid_run(cache, loader, settings):
    loader.register("red.png", lambda: FakeImageHandle("red"))
    item = make_item(MediaKind.IMAGE, "red.png", duration=5.0)
    encoder_ref = []

    def cancel_after_five(count):
        if count == 5:
            encoder_ref[0].cancel()

    recorder = SinkRecorder(on_write=cancel_after_five)
    encoder = ExportEncoder([item], TrackVolumes(), cache, settings, sink_factory=recorder)
    encoder_ref.append(encoder)

    result = encoder.run()

    assert result.state == ExportState.CANCELLED
    assert encoder.state == ExportState.CANCELLED
    assert recorder.sink.aborted
    assert recorder.sink.finalized_with is None
    assert result.frames_written < encoder.total_frames
    assert len(cache) == 0


def test_cache_returns_to_baseline(cache, loader, settings, red_image):
    loader.register("held.png", lambda: FakeImageHandle("blue"))
    held = make_item(MediaKind.IMAGE, "held.png", duration=1.0)
    cache.acquire(held, PREVIEW)
    baseline = len(cache)

    ExportEncoder([red_image, held], TrackVolumes(), cache, settings,
                  sink_factory=SinkRecorder()).run()

    assert len(cache) == baseline
    assert cache.owners(held.uuid) == {PREVIEW}
    assert red_image.uuid not in cache


def test_empty_timeline_is_an_error(cache, settings):
    recorder = SinkRecorder()
    result = ExportEncoder([], TrackVolumes(), cache, settings, sink_factory=recorder).run()

    assert result.state == ExportState.ERROR
    assert "empty" in result.error
    assert recorder.sink is None


def test_effects_only_timeline_has_frames(cache, settings):
    recorder = SinkRecorder()
    fade = make_effect(EffectType.FADE_IN, duration=0.25)
    result = ExportEncoder([fade], TrackVolumes(), cache, settings, sink_factory=recorder).run()

    assert result.state == ExportState.COMPLETED
    assert len(recorder.sink.frames) == 6


def test_missing_ffmpeg_is_setup_error(cache, settings, red_image, monkeypatch):
    monkeypatch.setattr(ffmpeg_sink.shutil, "which", lambda name: None)
    result = ExportEncoder([red_image], TrackVolumes(), cache, settings).run()

    assert result.state == ExportState.ERROR
    assert "FFmpeg" in result.error
    assert not Path(settings.output_path).exists()


def test_sink_open_failure_aborts_nothing_written(cache, settings, red_image):
    def failing_factory(settings, width, height):
        raise SetupFailure("no encoder")

    result = ExportEncoder([red_image], TrackVolumes(), cache, settings,
                           sink_factory=failing_factory).run()
    assert result.state == ExportState.ERROR
    assert result.frames_written == 0


def test_progress_reports_states_and_final_frame(cache, settings, red_image):
    reports = []
    recorder = SinkRecorder()
    ExportEncoder([red_image], TrackVolumes(), cache, settings, sink_factory=recorder,
                  progress_callback=reports.append).run()

    states = [r.state for r in reports]
    assert states[0] == ExportState.PREPARING
    assert ExportState.RENDERING in states
    assert ExportState.ENCODING in states
    assert states[-1] == ExportState.COMPLETED
    rendering = [r for r in reports if r.state == ExportState.RENDERING]
    assert rendering[-1].frames_done == 13
    assert reports[-1].fraction == 1.0


def test_progress_is_throttled(cache, loader, settings):
    loader.register("red.png", lambda: FakeImageHandle("red"))
    item = make_item(MediaKind.IMAGE, "red.png", duration=1.0)
    # A frozen clock lets nothing through except forced reports
    reports = []
    ExportEncoder([item], TrackVolumes(), cache, settings, sink_factory=SinkRecorder(),
                  progress_callback=reports.append, clock=lambda: 5.0).run()

    rendering = [r for r in reports if r.state == ExportState.RENDERING]
    # The state change and the final frame
    assert [r.frames_done for r in rendering] == [0, 24]


def test_run_from_worker_thread(cache, settings, red_image):
    results = []
    recorder = SinkRecorder()
    encoder = ExportEncoder([red_image], TrackVolumes(), cache, settings, sink_factory=recorder)
    worker = threading.Thread(target=lambda: results.append(encoder.run()))
    worker.start()
    worker.join(30)

    assert results and results[0].state == ExportState.COMPLETED


class TestHelpers:
    def test_resolutions(self):
        assert resolve_resolution("16:9", "balanced") == (1440, 810)
        assert resolve_resolution("16:9", "fast") == (960, 540)
        assert resolve_resolution("9:16", "fast") == (540, 960)
        assert resolve_resolution("4:3", "high") == (1440, 1080)

    def test_count_frames(self):
        assert count_frames(2.0, 30) == 60
        assert count_frames(2.01, 30) == 61
        assert count_frames(0.1 * 3, 30) == 9
        assert count_frames(0.0, 30) == 0

    def test_settings_validation(self, tmp_path):
        with pytest.raises(ValueError):
            ExportSettings(output_path=str(tmp_path / "a.mp4"), preset="ultra")
        with pytest.raises(ValueError):
            ExportSettings(output_path=str(tmp_path / "a.mp4"), fps=25)
        with pytest.raises(ValueError):
            ExportSettings(output_path=str(tmp_path / "a.mp4"), aspect_ratio="21:9")
        with pytest.raises(ValueError):
            ExportSettings(output_path=str(tmp_path / "a.mp4"), seek_tolerance=-0.1)

    def test_settings_from_runtime_config(self, tmp_path):
        config = RuntimeConfig(export_quality="high", export_fps=60, seek_tolerance=0.4)
        settings = ExportSettings.from_runtime_config(config, str(tmp_path / "a.mp4"))
        assert (settings.preset, settings.fps) == ("high", 60)
        assert settings.seek_tolerance == 0.4

    def test_progress_fraction(self):
        assert ExportProgress(ExportState.RENDERING, 5, 20).percent == 25
        assert ExportProgress(ExportState.COMPLETED).fraction == 1.0
        assert ExportProgress(ExportState.PREPARING).fraction == 0.0

    def test_terminal_states(self):
        assert ExportState.CANCELLED.is_terminal
        assert not ExportState.RENDERING.is_terminal


class TestProgressThrottle:
    def test_interval(self):
        now = [0.0]
        throttle = ProgressThrottle(min_interval=0.1, clock=lambda: now[0])
        assert throttle.ready()
        now[0] = 0.05
        assert not throttle.ready()
        assert throttle.ready(force=True)
        now[0] = 0.2
        assert throttle.ready()


class TestReorderBuffer:
    def test_releases_in_index_order(self):
        buffer = ReorderBuffer()
        buffer.push(2, "c")
        buffer.push(1, "b")
        assert buffer.pop_ready() == []
        buffer.push(0, "a")
        assert buffer.pop_ready() == [(0, "a"), (1, "b"), (2, "c")]
        assert buffer.next_index == 3
        assert len(buffer) == 0

    def test_rejects_duplicates_and_delivered(self):
        buffer = ReorderBuffer()
        buffer.push(1, "b")
        with pytest.raises(ValueError):
            buffer.push(1, "again")
        buffer.push(0, "a")
        buffer.pop_ready()
        with pytest.raises(ValueError):
            buffer.push(0, "late")


class TestFfmpegFrameSink:
    def test_open_without_ffmpeg_raises(self, tmp_path, monkeypatch):
        monkeypatch.setattr(ffmpeg_sink.shutil, "which", lambda name: None)
        sink = FfmpegFrameSink(tmp_path / "out.mp4", 64, 36, 30)
        with pytest.raises(SetupFailure):
            sink.open()

    def test_abort_keeps_existing_output(self, tmp_path):
        existing = tmp_path / "out.mp4"
        existing.write_bytes(b"previous export")
        sink = FfmpegFrameSink(existing, 64, 36, 30)
        sink.abort()
        assert existing.read_bytes() == b"previous export"
