"""
Audio Mix Graph - time + items + effect params -> audio routing state.

For every audio-bearing item (audio or video kind):

    source -> item gain (track volume x fade alpha) -> track submix -> [dynamics] -> output

The graph only decides *what* each source should be doing at a given time;
an audio bus (PlayerBus for preview, MixdownBus for export) carries it out.
The fade alpha is shared with the picture so fades affect sound and image
together.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol
import logging

from config import SEEK_TOLERANCE
from core.effects import evaluate_effects

logger = logging.getLogger(__name__)


class AudioBus(Protocol):
    """What AudioMixGraph needs from an output backend."""

    def position(self, item) -> Optional[float]: ...

    def seek(self, item, seconds: float) -> None: ...

    def set_gain(self, item, gain: float) -> None: ...

    def play(self, item) -> None: ...

    def pause(self, item) -> None: ...

    def pause_all(self) -> None: ...

    def release(self, present_ids) -> None: ...


@dataclass(frozen=True)
class AudioRoute:
    """Routing decision for one source at one instant."""
    item_id: str
    track: int
    active: bool
    gain: float
    position: Optional[float] = None
    repositioned: bool = False


class AudioMixGraph:
    """
    Keeps an audio bus in step with the timeline.

    Args:
        bus: Output backend
        volumes: TrackVolumes table (item id -> 0-200 %)
        seek_tolerance: Drift (seconds) above which a source is repositioned
    """

    def __init__(self, bus: AudioBus, volumes, seek_tolerance: float = SEEK_TOLERANCE):
        self.bus = bus
        self.volumes = volumes
        self.seek_tolerance = seek_tolerance

    def item_gain(self, item, alpha: float) -> float:
        return (self.volumes.get(item.uuid) / 100.0) * alpha

    def sync(self, time: float, items, playing: bool = True) -> list[AudioRoute]:
        """Bring every audio-bearing source in line with *time*.

        Args:
            time: Global timeline time in seconds
            items: Timeline snapshot
            playing: Start active sources (False positions them paused)

        Returns:
            One AudioRoute per audio-bearing item
        """
        alpha = evaluate_effects(items, time).alpha
        routes: list[AudioRoute] = []

        for item in items:
            if item.is_effect or not item.media.has_audio:
                continue

            if not item.is_active(time):
                self.bus.pause(item)
                self.bus.set_gain(item, 0.0)
                routes.append(AudioRoute(item.uuid, item.track, active=False, gain=0.0))
                continue

            gain = self.item_gain(item, alpha)
            target = item.source_position(time)
            current = self.bus.position(item)
            repositioned = current is None or abs(current - target) > self.seek_tolerance
            if repositioned:
                self.bus.seek(item, target)
            self.bus.set_gain(item, gain)
            if playing:
                self.bus.play(item)
            else:
                self.bus.pause(item)
            routes.append(AudioRoute(item.uuid, item.track, active=True, gain=gain,
                                     position=target, repositioned=repositioned))

        return routes

    def stop(self) -> None:
        """Pause every source the bus knows about."""
        self.bus.pause_all()
