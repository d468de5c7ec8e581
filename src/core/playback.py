"""
Playback Synchronizer - real-time preview driver.

Runs on the Qt event loop: a QTimer tick advances the clock, renders the
frame through the shared FrameCompositor and keeps the PlayerBus in step via
AudioMixGraph. While a video item is active its decoder sets the pace: if it
cannot keep up, the clock follows the last decoded frame instead of running
ahead of the picture.
"""
from __future__ import annotations

from typing import Callable, Optional
import logging
import time as _time

from PyQt6.QtCore import QObject, QTimer, pyqtSignal
from PyQt6.QtGui import QImage

from config import (
    PREVIEW_WIDTH,
    PREVIEW_HEIGHT,
    PREVIEW_TICK_MS,
    PREVIEW_MAX_DECODE_FRAMES_PER_TICK,
    PREVIEW_STILL_ACQUIRE_TIMEOUT,
    PRELOAD_WINDOW,
)
from core.audio_graph import AudioMixGraph
from core.compositor import FrameCompositor
from core.resource_cache import PREVIEW
from models.media import MediaKind
from runtime_config import get_config

logger = logging.getLogger(__name__)

STOPPED = "stopped"
PLAYING = "playing"
SEEKING = "seeking"


class PlaybackSynchronizer(QObject):
    """
    Drives FrameCompositor + AudioMixGraph in real time.

    Signals:
        frame_ready: Emitted with a copy of every rendered frame
        position_changed: Emitted with the global time (seconds)
        state_changed: Emitted with 'stopped', 'playing' or 'seeking'
    """

    frame_ready = pyqtSignal(QImage)
    position_changed = pyqtSignal(float)
    state_changed = pyqtSignal(str)

    def __init__(self, cache, volumes, bus, width: int = PREVIEW_WIDTH,
                 height: int = PREVIEW_HEIGHT,
                 clock: Callable[[], float] = _time.perf_counter,
                 seek_tolerance: Optional[float] = None,
                 parent=None):
        super().__init__(parent)
        if seek_tolerance is None:
            seek_tolerance = get_config().seek_tolerance
        self.cache = cache
        self.bus = bus
        self.compositor = FrameCompositor(
            cache, PREVIEW,
            acquire_timeout=0,
            seek_tolerance=seek_tolerance,
            max_decode_frames=PREVIEW_MAX_DECODE_FRAMES_PER_TICK,
        )
        self.mix_graph = AudioMixGraph(bus, volumes, seek_tolerance=seek_tolerance)
        self._clock = clock

        self._surface = QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)
        self._last_frame: Optional[QImage] = None

        self._items: tuple = ()
        self._duration = 0.0
        self._position = 0.0
        self._state = STOPPED
        self._primary_id: Optional[str] = None
        self._last_tick_time: Optional[float] = None

        self._timer = QTimer(self)
        self._timer.setInterval(PREVIEW_TICK_MS)
        self._timer.timeout.connect(self.tick)

    # -- Properties --------------------------------------------------------

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state == PLAYING

    @property
    def last_frame(self) -> Optional[QImage]:
        return self._last_frame

    @property
    def seek_tolerance(self) -> float:
        return self.compositor.seek_tolerance

    def set_volume(self, volume: float) -> None:
        """Master preview volume (0.0 to 1.0), applied on top of item gains."""
        self.bus.set_volume(volume)

    def set_seek_tolerance(self, seconds: float) -> None:
        """Drift allowed before picture and sound sources are repositioned."""
        self.compositor.seek_tolerance = seconds
        self.mix_graph.seek_tolerance = seconds

    @property
    def primary_item_id(self) -> Optional[str]:
        return self._primary_id

    # -- Timeline ----------------------------------------------------------

    def set_items(self, items) -> None:
        """Replace the timeline snapshot the preview reads."""
        self._items = tuple(items)
        self._duration = max((item.end_time for item in self._items), default=0.0)
        present = [item.uuid for item in self._items]
        self.cache.evict(present, PREVIEW)
        self.bus.release(present)
        if self._position > self._duration:
            self._position = self._duration

    def refresh(self) -> None:
        """Redraw the current position without starting playback."""
        if self._state != PLAYING:
            self._render_pass(self._position, playing=False, timeout=PREVIEW_STILL_ACQUIRE_TIMEOUT)

    # -- Transport ---------------------------------------------------------

    def play(self) -> None:
        if self._state == PLAYING:
            return
        if self._position >= self._duration:
            self._position = 0.0
        self._last_tick_time = None
        self.cache.preload(self._items, self._position, PREVIEW)
        self._set_state(PLAYING)
        self._timer.start()

    def stop(self) -> None:
        """Halt the loop and pause every source; the last frame stays."""
        self._timer.stop()
        self._last_tick_time = None
        try:
            self.mix_graph.stop()
        except Exception as e:
            logger.warning("Failed to pause preview audio: %s", e)
        self._set_state(STOPPED)

    def toggle(self) -> None:
        if self._state == PLAYING:
            self.stop()
        else:
            self.play()

    def seek(self, seconds: float) -> None:
        self._position = max(0.0, min(seconds, self._duration))
        self._last_tick_time = None

        if self._state == PLAYING:
            # The next tick repositions handles that drifted past tolerance
            self.position_changed.emit(self._position)
            return

        self._set_state(SEEKING)
        self._render_pass(self._position, playing=False, timeout=PREVIEW_STILL_ACQUIRE_TIMEOUT)
        self._set_state(STOPPED)

    # -- Loop --------------------------------------------------------------

    def tick(self) -> None:
        """One scheduling step; failures are logged and playback continues."""
        if self._state != PLAYING:
            return
        try:
            now = self._clock()
            target = self._position
            if self._last_tick_time is not None:
                target += now - self._last_tick_time
            self._last_tick_time = now

            if target >= self._duration:
                self._position = self._duration
                self.position_changed.emit(self._position)
                self.stop()
                return

            primary = self._primary_video(target)
            if primary is not None:
                target = self._follow_video(primary, target)
            elif self._primary_id is not None:
                self._primary_id = None

            self._render_pass(target, playing=True)
            self._maintain_cache(target)
        except Exception:
            logger.exception("Preview tick failed at %.3fs", self._position)

    def _primary_video(self, time: float):
        """Lowest-track active video item, the one that paces the clock."""
        videos = [
            item for item in self._items
            if item.media.kind == MediaKind.VIDEO and item.is_active(time)
        ]
        return min(videos, key=lambda item: item.track, default=None)

    def _follow_video(self, primary, target: float) -> float:
        """Advance the primary decoder and derive the clock from it."""
        handle = self.cache.acquire(primary, PREVIEW, timeout=0)
        if handle is None:
            return target

        if primary.uuid != self._primary_id:
            logger.debug("Primary video switched to %s", primary.uuid)
            self._primary_id = primary.uuid

        self.compositor.sync_handle(handle, primary, target)
        decoded = primary.start_time + (handle.position - primary.media_start_offset)
        frame_interval = getattr(handle, "frame_interval", 0.0)
        if target - decoded > frame_interval:
            # Decoder is behind: hold the clock at the last decoded frame
            return max(self._position, decoded)
        return target

    def _render_pass(self, time: float, playing: bool, timeout: Optional[float] = None) -> None:
        self._position = time
        try:
            self.compositor.render(time, self._items, self._surface, timeout=timeout)
            self._last_frame = self._surface.copy()
            self.frame_ready.emit(self._last_frame)
        except Exception:
            logger.exception("Preview render failed at %.3fs", time)
        try:
            self.mix_graph.sync(time, self._items, playing=playing)
        except Exception:
            logger.exception("Preview audio sync failed at %.3fs", time)
        self.position_changed.emit(time)

    def _maintain_cache(self, time: float) -> None:
        self.cache.preload(self._items, time, PREVIEW)
        in_window = [
            item.uuid for item in self._items
            if item.end_time >= time - PRELOAD_WINDOW and item.start_time <= time + PRELOAD_WINDOW
        ]
        self.cache.evict(in_window, PREVIEW)

    def _set_state(self, state: str) -> None:
        if state != self._state:
            self._state = state
            self.state_changed.emit(state)

    def cleanup(self) -> None:
        self.stop()
        self.cache.release_owner(PREVIEW)
