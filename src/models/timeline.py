"""
Timeline - Tracks and timeline items.

TimelineItems are *instances* of media files placed on tracks. They hold a
shared reference to their MediaFile plus timeline coordinates. Effect items
are ordinary items whose media kind is "effect"; they carry no decodable
resource and modify whatever media is active at the same time.

The editing UI owns the Timeline and mutates it; the compositor and the
export pipeline only ever read snapshots of the item list.
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List

from config import DEFAULT_TRACK_VOLUME, MAX_TRACK_VOLUME
from core.errors import InvalidItem, TrackTypeMismatch
from models.media import MediaFile, MediaKind, MediaRegistry


class TrackType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


# Media kind -> track type it must sit on (effects may sit anywhere)
_REQUIRED_TRACK_TYPE = {
    MediaKind.VIDEO: TrackType.VIDEO,
    MediaKind.IMAGE: TrackType.VIDEO,
    MediaKind.AUDIO: TrackType.AUDIO,
}


# ---------------------------------------------------------------------------
# Timeline Items
# ---------------------------------------------------------------------------

@dataclass
class TimelineItem:
    """Anything placed on a timeline track.

    Attributes:
        media: The MediaFile this item plays (shared, not owned).
        start_time: When this item begins on the timeline (seconds).
        duration: How long this item occupies the timeline (seconds).
        track: Index of the owning track (z-order for video, bus for audio).
        media_start_offset: Seconds into the source where playback begins.
    """
    media: MediaFile
    start_time: float = 0.0
    duration: float = 0.0
    track: int = 0
    media_start_offset: float = 0.0
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.start_time < 0:
            raise InvalidItem(f"start_time must be >= 0, got {self.start_time}")
        if self.duration <= 0:
            raise InvalidItem(f"duration must be > 0, got {self.duration}")
        if self.media_start_offset < 0:
            raise InvalidItem(f"media_start_offset must be >= 0, got {self.media_start_offset}")

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def is_effect(self) -> bool:
        return self.media.is_effect

    def is_active(self, time: float) -> bool:
        """Half-open activity test: [start, start + duration)."""
        return self.start_time <= time < self.end_time

    def progress(self, time: float) -> float:
        """Fraction of the item elapsed at *time* (unclamped)."""
        return (time - self.start_time) / self.duration

    def source_position(self, time: float) -> float:
        """Position inside the source media that corresponds to *time*."""
        return self.media_start_offset + (time - self.start_time)

    def to_dict(self) -> dict:
        return {
            "uuid": self.uuid,
            "media_uuid": self.media.uuid,
            "start_time": self.start_time,
            "duration": self.duration,
            "track": self.track,
            "media_start_offset": self.media_start_offset,
        }

    @classmethod
    def from_dict(cls, data: dict, registry: MediaRegistry) -> "TimelineItem":
        media = registry.get(data.get("media_uuid", ""))
        if media is None:
            raise InvalidItem(f"Item {data.get('uuid')} references unknown media {data.get('media_uuid')}")
        return cls(
            uuid=data.get("uuid", str(uuid.uuid4())),
            media=media,
            start_time=data.get("start_time", 0.0),
            duration=data.get("duration", 0.0),
            track=data.get("track", 0),
            media_start_offset=data.get("media_start_offset", 0.0),
        )


def active_items(items, time: float) -> list[TimelineItem]:
    """Non-effect items whose interval contains *time*, ascending by track."""
    active = [item for item in items if not item.is_effect and item.is_active(time)]
    # sorted() is stable: same-track items keep timeline order
    return sorted(active, key=lambda item: item.track)


# ---------------------------------------------------------------------------
# Track
# ---------------------------------------------------------------------------

@dataclass
class Track:
    """A lane with a type governing z-order (video) or bus grouping (audio)."""
    index: int = 0
    track_type: TrackType = TrackType.VIDEO
    label: str = ""
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))

    def accepts(self, media: MediaFile) -> bool:
        required = _REQUIRED_TRACK_TYPE.get(media.kind)
        return required is None or required == self.track_type

    def to_dict(self) -> dict:
        return {
            "uuid": self.uuid,
            "index": self.index,
            "track_type": self.track_type.value,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        return cls(
            uuid=data.get("uuid", str(uuid.uuid4())),
            index=data.get("index", 0),
            track_type=TrackType(data.get("track_type", "video")),
            label=data.get("label", ""),
        )


# ---------------------------------------------------------------------------
# Track volumes
# ---------------------------------------------------------------------------

class TrackVolumes:
    """Per-item volume table (item id -> percent 0-200, default 100).

    Independent of TimelineItem; mutated by the mixer control surface and read
    by the audio graph in both preview and export.
    """

    def __init__(self, volumes: Optional[dict[str, float]] = None):
        self._volumes: dict[str, float] = {}
        for item_id, volume in (volumes or {}).items():
            self.set(item_id, volume)

    def get(self, item_id: str) -> float:
        return self._volumes.get(item_id, DEFAULT_TRACK_VOLUME)

    def set(self, item_id: str, volume: float) -> None:
        self._volumes[item_id] = max(0.0, min(float(volume), float(MAX_TRACK_VOLUME)))

    def reset(self) -> None:
        self._volumes.clear()

    def to_dict(self) -> dict:
        return dict(self._volumes)

    @classmethod
    def from_dict(cls, data: dict) -> "TrackVolumes":
        return cls(data)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

@dataclass
class Timeline:
    """Top-level container holding tracks and the items placed on them."""
    tracks: List[Track] = field(default_factory=list)
    items: List[TimelineItem] = field(default_factory=list)
    name: str = "Main Timeline"

    @classmethod
    def with_default_tracks(cls) -> "Timeline":
        """Three video lanes and two audio lanes, as the editor starts with."""
        timeline = cls()
        for i in range(3):
            timeline.add_track(Track(index=i, track_type=TrackType.VIDEO, label=f"Video {i + 1}"))
        for i in range(3, 5):
            timeline.add_track(Track(index=i, track_type=TrackType.AUDIO, label=f"Audio {i - 2}"))
        return timeline

    # -- Tracks ------------------------------------------------------------

    def add_track(self, track: Track) -> None:
        if self.get_track(track.index) is not None:
            raise ValueError(f"Track index {track.index} already exists")
        self.tracks.append(track)
        self.tracks.sort(key=lambda t: t.index)

    def get_track(self, index: int) -> Optional[Track]:
        for t in self.tracks:
            if t.index == index:
                return t
        return None

    # -- Items -------------------------------------------------------------

    def validate_placement(self, item: TimelineItem) -> None:
        """Check track-type compatibility; the only validation the core performs."""
        if item.is_effect:
            return
        track = self.get_track(item.track)
        if track is None:
            raise TrackTypeMismatch(f"Item {item.uuid} placed on unknown track {item.track}")
        if not track.accepts(item.media):
            raise TrackTypeMismatch(
                f"{item.media.kind.value} item {item.uuid} cannot sit on "
                f"{track.track_type.value} track {track.index}"
            )

    def add_item(self, item: TimelineItem) -> None:
        self.validate_placement(item)
        self.items.append(item)

    def move_item(self, item_uuid: str, start_time: float, track: Optional[int] = None) -> TimelineItem:
        item = self.get_item(item_uuid)
        if item is None:
            raise KeyError(item_uuid)
        if start_time < 0:
            raise InvalidItem(f"start_time must be >= 0, got {start_time}")
        if track is not None and track != item.track:
            old_track = item.track
            item.track = track
            try:
                self.validate_placement(item)
            except TrackTypeMismatch:
                item.track = old_track
                raise
        item.start_time = start_time
        return item

    def remove_item(self, item_uuid: str) -> Optional[TimelineItem]:
        for i, item in enumerate(self.items):
            if item.uuid == item_uuid:
                return self.items.pop(i)
        return None

    def get_item(self, item_uuid: str) -> Optional[TimelineItem]:
        for item in self.items:
            if item.uuid == item_uuid:
                return item
        return None

    def snapshot(self) -> tuple[TimelineItem, ...]:
        """Read-only view of the item list handed to the drivers."""
        return tuple(self.items)

    def active_items(self, time: float) -> list[TimelineItem]:
        return active_items(self.items, time)

    @property
    def duration(self) -> float:
        """Total timeline duration (end of the last item)."""
        return max((item.end_time for item in self.items), default=0.0)

    # -- Serialization -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "tracks": [t.to_dict() for t in self.tracks],
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict, registry: MediaRegistry) -> "Timeline":
        timeline = cls(name=data.get("name", "Main Timeline"))
        for track_data in data.get("tracks", []):
            timeline.add_track(Track.from_dict(track_data))
        for item_data in data.get("items", []):
            timeline.add_item(TimelineItem.from_dict(item_data, registry))
        return timeline
