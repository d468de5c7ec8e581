"""\
Export Encoder - frame-exact offline driver.

Walks the timeline frame by frame (time = index / fps) through the same
FrameCompositor and AudioMixGraph the preview uses and streams the result
into a frame sink:

    Idle -> Preparing -> Rendering -> Encoding -> Completed | Error | Cancelled

Resolving a frame touches shared decoder state, so it runs on the calling
thread in index order. Drawing the resolved frame is farmed out to a bounded
thread pool; a ReorderBuffer puts finished frames back in index order before
they reach the sink.
"""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import logging
import math
import os
import tempfile
import threading
import time as _time

from PyQt6.QtCore import Qt
from PyQt6.QtGui import QImage

from config import (
    ASPECT_RATIOS,
    QUALITY_PRESETS,
    FRAME_RATES,
    DEFAULT_QUALITY,
    DEFAULT_ASPECT_RATIO,
    DEFAULT_FPS,
    DYNAMICS_ENABLED,
    PROGRESS_MIN_INTERVAL,
    SEEK_TOLERANCE,
)
from core.audio_buses import MixdownBus
from core.audio_graph import AudioMixGraph
from core.compositor import FrameCompositor, FrameJob
from core.errors import ExportCancelled, FrameRenderFailure, SetupFailure
from core.image_ops import frame_bytes
from core.resource_cache import EXPORT
from exporters.ffmpeg_sink import FfmpegFrameSink

logger = logging.getLogger(__name__)


class ExportState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RENDERING = "rendering"
    ENCODING = "encoding"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportState.COMPLETED, ExportState.ERROR, ExportState.CANCELLED)


def resolve_resolution(aspect_ratio: str, preset: str) -> tuple[int, int]:
    """Output size for an aspect ratio at a quality preset, rounded to even."""
    base_w, base_h = ASPECT_RATIOS[aspect_ratio]
    scale = QUALITY_PRESETS[preset]['scale']

    def even(value: float) -> int:
        return max(2, int(round(value / 2)) * 2)

    return even(base_w * scale), even(base_h * scale)


def count_frames(duration: float, fps: int) -> int:
    """ceil(duration x fps), ignoring float noise below a microframe."""
    return max(0, math.ceil(round(duration * fps, 6)))


@dataclass
class ExportSettings:
    """What to export and how."""
    output_path: str
    preset: str = DEFAULT_QUALITY
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    fps: int = DEFAULT_FPS
    dynamics: bool = DYNAMICS_ENABLED
    seek_tolerance: float = SEEK_TOLERANCE

    def __post_init__(self):
        if self.preset not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality preset: {self.preset}")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ValueError(f"Unknown aspect ratio: {self.aspect_ratio}")
        if self.fps not in FRAME_RATES:
            raise ValueError(f"Unsupported frame rate: {self.fps}")
        if self.seek_tolerance < 0:
            raise ValueError(f"Seek tolerance must be >= 0: {self.seek_tolerance}")

    @property
    def preset_values(self) -> dict:
        return QUALITY_PRESETS[self.preset]

    @property
    def resolution(self) -> tuple[int, int]:
        return resolve_resolution(self.aspect_ratio, self.preset)

    @classmethod
    def from_runtime_config(cls, config, output_path: str) -> "ExportSettings":
        return cls(
            output_path=output_path,
            preset=config.export_quality,
            aspect_ratio=config.export_aspect_ratio,
            fps=config.export_fps,
            dynamics=config.export_dynamics,
            seek_tolerance=config.seek_tolerance,
        )


@dataclass
class ExportProgress:
    state: ExportState
    frames_done: int = 0
    total_frames: int = 0
    throughput: float = 0.0  # frames per second

    @property
    def fraction(self) -> float:
        if self.total_frames <= 0:
            return 1.0 if self.state == ExportState.COMPLETED else 0.0
        return self.frames_done / self.total_frames

    @property
    def percent(self) -> int:
        return int(self.fraction * 100)


@dataclass
class ExportResult:
    state: ExportState
    output_path: Optional[str] = None
    error: Optional[str] = None
    frames_written: int = 0
    total_frames: int = 0
    elapsed: float = 0.0

    @property
    def throughput(self) -> float:
        return self.frames_written / self.elapsed if self.elapsed > 0 else 0.0


class ProgressThrottle:
    """Lets a report through at most once per *min_interval* seconds."""

    def __init__(self, min_interval: float = PROGRESS_MIN_INTERVAL,
                 clock: Callable[[], float] = _time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last: Optional[float] = None

    def ready(self, force: bool = False) -> bool:
        now = self._clock()
        if force or self._last is None or now - self._last >= self.min_interval:
            self._last = now
            return True
        return False


class ReorderBuffer:
    """Holds out-of-order results until every earlier index has arrived."""

    def __init__(self, first_index: int = 0):
        self._pending: dict[int, object] = {}
        self._next = first_index

    @property
    def next_index(self) -> int:
        return self._next

    def push(self, index: int, value) -> None:
        if index < self._next or index in self._pending:
            raise ValueError(f"Index {index} already delivered or queued")
        self._pending[index] = value

    def pop_ready(self) -> list[tuple[int, object]]:
        ready = []
        while self._next in self._pending:
            ready.append((self._next, self._pending.pop(self._next)))
            self._next += 1
        return ready

    def __len__(self) -> int:
        return len(self._pending)


def _default_sink_factory(settings: ExportSettings, width: int, height: int):
    values = settings.preset_values
    return FfmpegFrameSink(
        settings.output_path, width, height, settings.fps,
        bitrate=values['bitrate'],
        x264_preset=values['x264_preset'],
    )


def _default_surface_factory(width: int, height: int) -> QImage:
    return QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)


class ExportEncoder:
    """
    Renders a timeline snapshot into a single media file.

    Args:
        items: Timeline snapshot (read only)
        volumes: TrackVolumes table
        cache: Shared MediaResourceCache
        settings: ExportSettings
        sink_factory: (settings, width, height) -> frame sink
        progress_callback: Called with ExportProgress, at most ~10 times a second
        surface_factory: (width, height) -> QImage render surface
    """

    def __init__(
        self,
        items,
        volumes,
        cache,
        settings: ExportSettings,
        sink_factory: Callable = _default_sink_factory,
        progress_callback: Optional[Callable[[ExportProgress], None]] = None,
        surface_factory: Callable[[int, int], QImage] = _default_surface_factory,
        clock: Callable[[], float] = _time.perf_counter,
    ):
        self.items = tuple(items)
        self.volumes = volumes
        self.cache = cache
        self.settings = settings
        self._sink_factory = sink_factory
        self._progress_callback = progress_callback
        self._surface_factory = surface_factory
        self._clock = clock

        self._cancel = threading.Event()
        self._state = ExportState.IDLE
        self._throttle = ProgressThrottle(clock=clock)
        self._started_at = 0.0
        self._frames_written = 0
        self._total_frames = 0

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def duration(self) -> float:
        return max((item.end_time for item in self.items), default=0.0)

    @property
    def total_frames(self) -> int:
        return count_frames(self.duration, self.settings.fps)

    def cancel(self) -> None:
        """Request a cooperative stop; takes effect at the next check."""
        self._cancel.set()

    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise ExportCancelled()

    # -- Driver --------------------------------------------------------------

    def run(self) -> ExportResult:
        """Run the export to a terminal state. Never raises."""
        self._started_at = self._clock()
        self._frames_written = 0
        self._total_frames = self.total_frames
        sink = None
        audio_path: Optional[str] = None

        try:
            self._set_state(ExportState.PREPARING)
            if self._total_frames == 0:
                raise SetupFailure("Timeline is empty, nothing to export")

            width, height = self.settings.resolution
            probe = self._surface_factory(width, height)
            if probe is None or probe.isNull():
                raise SetupFailure(f"Could not allocate a {width}x{height} render surface")

            sink = self._sink_factory(self.settings, width, height)
            sink.open()
            items = self._prepare()

            self._set_state(ExportState.RENDERING)
            mixdown = self._render(items, sink, width, height)

            self._set_state(ExportState.ENCODING)
            fd, audio_path = tempfile.mkstemp(prefix="cliptrack_mix_", suffix=".wav")
            os.close(fd)
            mixdown.finish(audio_path)
            output = sink.finalize(audio_path)
            sink = None

            self._set_state(ExportState.COMPLETED)
            return self._result(ExportState.COMPLETED, output_path=str(output))

        except ExportCancelled:
            logger.info("Export cancelled after %d frames", self._frames_written)
            self._abort(sink)
            self._set_state(ExportState.CANCELLED)
            return self._result(ExportState.CANCELLED)

        except SetupFailure as e:
            logger.error("Export setup failed: %s", e)
            self._abort(sink)
            self._set_state(ExportState.ERROR)
            return self._result(ExportState.ERROR, error=str(e))

        except Exception as e:
            logger.exception("Export failed")
            self._abort(sink)
            self._set_state(ExportState.ERROR)
            return self._result(ExportState.ERROR, error=str(e))

        finally:
            self.cache.release_owner(EXPORT)
            if audio_path and os.path.exists(audio_path):
                os.remove(audio_path)

    def _prepare(self) -> tuple:
        """Acquire every referenced resource up front; misses only degrade.

        Returns:
            The items to render: effects plus every media item that loaded.
        """
        usable = []
        for item in self.items:
            self._check_cancel()
            if not item.is_effect and self.cache.acquire(item, EXPORT) is None:
                logger.warning("Item %s will be missing from the export", item.uuid)
                continue
            usable.append(item)
        return tuple(usable)

    def _render(self, items, sink, width: int, height: int) -> MixdownBus:
        fps = self.settings.fps
        values = self.settings.preset_values
        window = values['in_flight']

        # Everything usable was loaded by _prepare, so rendering never waits
        tolerance = self.settings.seek_tolerance
        compositor = FrameCompositor(self.cache, EXPORT, acquire_timeout=0, seek_tolerance=tolerance)
        mixdown = MixdownBus(self.cache, EXPORT, dynamics=self.settings.dynamics, acquire_timeout=0)
        graph = AudioMixGraph(mixdown, self.volumes, seek_tolerance=tolerance)
        reorder = ReorderBuffer()
        in_flight: dict[Future, int] = {}

        pool = ThreadPoolExecutor(max_workers=values['workers'], thread_name_prefix="export-compose")
        try:
            index = 0
            while index < self._total_frames or in_flight:
                # Resolve in strict index order, up to the in-flight window
                while index < self._total_frames and len(in_flight) < window:
                    self._check_cancel()
                    t = index / fps
                    job = compositor.resolve(t, items)
                    graph.sync(t, items, playing=True)
                    mixdown.render_span(t, (index + 1) / fps)
                    future = pool.submit(self._compose_frame, compositor, job, width, height)
                    in_flight[future] = index
                    index += 1

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    reorder.push(in_flight.pop(future), future.result())

                for _, frame in reorder.pop_ready():
                    sink.write(frame)
                    self._frames_written += 1
                    self._report()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        return mixdown

    def _compose_frame(self, compositor: FrameCompositor, job: FrameJob,
                       width: int, height: int) -> bytes:
        surface = self._surface_factory(width, height)
        try:
            compositor.compose(job, surface)
        except Exception as e:
            # The frame is still emitted, black
            logger.warning("%s", FrameRenderFailure("<frame>", job.time, e))
            surface.fill(Qt.GlobalColor.black)
        return frame_bytes(surface)

    def _abort(self, sink) -> None:
        if sink is None:
            return
        try:
            sink.abort()
        except Exception as e:
            logger.warning("Failed to discard partial export: %s", e)

    # -- Reporting -----------------------------------------------------------

    def _set_state(self, state: ExportState) -> None:
        self._state = state
        self._report(force=True)

    def _report(self, force: bool = False) -> None:
        if self._progress_callback is None:
            return
        last_frame = self._frames_written == self._total_frames
        if not self._throttle.ready(force=force or last_frame):
            return
        elapsed = self._clock() - self._started_at
        throughput = self._frames_written / elapsed if elapsed > 0 else 0.0
        self._progress_callback(ExportProgress(
            state=self._state,
            frames_done=self._frames_written,
            total_frames=self._total_frames,
            throughput=throughput,
        ))

    def _result(self, state: ExportState, output_path: Optional[str] = None,
                error: Optional[str] = None) -> ExportResult:
        return ExportResult(
            state=state,
            output_path=output_path,
            error=error,
            frames_written=self._frames_written,
            total_frames=self._total_frames,
            elapsed=self._clock() - self._started_at,
        )
