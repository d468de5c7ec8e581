"""
Frame Compositor - time + items + effect params -> one rendered frame.

Rendering is split in two stages so the export pipeline can parallelise the
expensive half:

  resolve()  picks the active layers, evaluates effects once and positions
             time-based handles. It touches shared decoder state, so it
             always runs on the driver's own thread, in time order.
  compose()  draws a resolved FrameJob onto a surface. It only reads the
             snapshot it is given and may run on any thread.

render() chains both and is what the preview calls.

Overlapping layers are offset-stacked, not alpha-blended: each track is
inset by a per-track offset so stacked items stay visually separated.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

from PyQt6.QtCore import QRectF, Qt
from PyQt6.QtGui import QImage, QPainter

from config import (
    SEEK_TOLERANCE,
    TRACK_OFFSET_PX,
    REFERENCE_HEIGHT,
    IMAGE_FIT_SCALE,
)
from core.effects import EffectParams, evaluate_effects
from core.errors import FrameRenderFailure
from core.image_ops import apply_filters
from models.media import MediaKind
from models.timeline import active_items

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Layer:
    """One drawable snapshot of an active item."""
    item_id: str
    kind: MediaKind
    track: int
    image: QImage


@dataclass(frozen=True)
class FrameJob:
    """Everything compose() needs for one frame, detached from handles."""
    time: float
    layers: tuple[Layer, ...]
    params: EffectParams
    skipped: tuple[str, ...] = ()


def target_rect(image_w: int, image_h: int, surface_w: int, surface_h: int,
                track: int, kind: MediaKind) -> QRectF:
    """Fit-inside, aspect-preserving, centred rect inset by the track offset."""
    scale = min(surface_w / image_w, surface_h / image_h)
    if kind == MediaKind.IMAGE:
        scale *= IMAGE_FIT_SCALE
    width = image_w * scale
    height = image_h * scale
    x = (surface_w - width) / 2
    y = (surface_h - height) / 2

    offset = track * TRACK_OFFSET_PX * surface_h / REFERENCE_HEIGHT
    return QRectF(
        x + offset,
        y + offset,
        max(1.0, width - 2 * offset),
        max(1.0, height - 2 * offset),
    )


class FrameCompositor:
    """
    Shared frame renderer used by both the preview and the export drivers.

    Args:
        cache: MediaResourceCache handing out handles
        owner: Cache owner tag of the driver using this compositor
        acquire_timeout: Wait bound per acquire (None = cache default).
            Preview passes 0 so a cold resource never stalls a tick.
        seek_tolerance: Drift (seconds) above which a handle is repositioned
        max_decode_frames: Cap on frames decoded per layer per call
    """

    def __init__(self, cache, owner: str, acquire_timeout: Optional[float] = None,
                 seek_tolerance: float = SEEK_TOLERANCE,
                 max_decode_frames: Optional[int] = None):
        self.cache = cache
        self.owner = owner
        self.acquire_timeout = acquire_timeout
        self.seek_tolerance = seek_tolerance
        self.max_decode_frames = max_decode_frames

    # -- Stage 1 -----------------------------------------------------------

    def sync_handle(self, handle, item, time: float) -> None:
        """Bring a time-based handle to the source position for *time*."""
        if not handle.time_based:
            return
        target = item.source_position(time)
        if handle.duration:
            target = min(target, handle.duration)
        if handle.at_end and target >= handle.position:
            # Item outlasts its source: hold the last decoded frame
            return
        if abs(handle.position - target) > self.seek_tolerance:
            handle.seek(target)
        else:
            handle.advance_to(target, max_frames=self.max_decode_frames)

    def resolve(self, time: float, items, timeout: Optional[float] = None) -> FrameJob:
        """Snapshot the active visual layers at *time*.

        Args:
            timeout: Acquire bound overriding the compositor default
        """
        wait = self.acquire_timeout if timeout is None else timeout
        params = evaluate_effects(items, time)
        layers: list[Layer] = []
        skipped: list[str] = []

        for item in active_items(items, time):
            if not item.media.is_visual:
                continue
            try:
                handle = self.cache.acquire(item, self.owner, timeout=wait)
                if handle is None:
                    skipped.append(item.uuid)
                    continue
                self.sync_handle(handle, item, time)
                image = handle.current_image()
                if image is None or image.isNull():
                    skipped.append(item.uuid)
                    continue
                layers.append(Layer(item.uuid, item.media.kind, item.track, image))
            except Exception as e:
                logger.warning("%s", FrameRenderFailure(item.uuid, time, e))
                skipped.append(item.uuid)

        return FrameJob(time=time, layers=tuple(layers), params=params, skipped=tuple(skipped))

    # -- Stage 2 -----------------------------------------------------------

    def compose(self, job: FrameJob, surface: QImage) -> QImage:
        width, height = surface.width(), surface.height()
        params = job.params

        painter = QPainter(surface)
        try:
            painter.fillRect(surface.rect(), Qt.GlobalColor.black)
            if not job.layers:
                return surface

            layer_image = QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)
            layer_image.fill(Qt.GlobalColor.transparent)

            layer_painter = QPainter(layer_image)
            try:
                layer_painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
                if params.zoom_scale != 1.0:
                    # Uniform scale pinned at the surface centre
                    layer_painter.translate(width / 2, height / 2)
                    layer_painter.scale(params.zoom_scale, params.zoom_scale)
                    layer_painter.translate(-width / 2, -height / 2)

                for layer in job.layers:
                    try:
                        image = layer.image
                        rect = target_rect(image.width(), image.height(), width, height,
                                           layer.track, layer.kind)
                        layer_painter.drawImage(rect, image)
                    except Exception as e:
                        logger.warning("%s", FrameRenderFailure(layer.item_id, job.time, e))
            finally:
                layer_painter.end()

            if params.needs_filter:
                blur = params.blur_px * height / REFERENCE_HEIGHT
                layer_image = apply_filters(layer_image, params.grayscale, blur)

            painter.setOpacity(params.alpha)
            painter.drawImage(0, 0, layer_image)
        finally:
            painter.end()
        return surface

    def render(self, time: float, items, surface: QImage, timeout: Optional[float] = None) -> FrameJob:
        """Resolve and draw the frame at *time* onto *surface*."""
        job = self.resolve(time, items, timeout=timeout)
        self.compose(job, surface)
        return job
