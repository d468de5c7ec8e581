"""
Project - Top-level container for a Cliptrack project.

Brings together:
  1. Media Registry : imported sources and applied effects
  2. Timeline       : tracks and items
  3. Track volumes  : per-item mixer levels
  4. Settings       : RuntimeConfig dict (export preset, aspect, fps, ...)
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from models.media import MediaRegistry
from models.timeline import Timeline, TrackVolumes


PROJECT_FORMAT_VERSION = "1.0"


@dataclass
class Project:
    """Root object of a Cliptrack project.

    Attributes:
        uuid: Unique project identifier.
        name: Human-readable project name.
        created_at: ISO-8601 timestamp.
        settings: RuntimeConfig dict persisted with the project.
        media_registry: All imported media and effect records.
        timeline: The editing timeline.
        volumes: Mixer levels per item.
    """
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    settings: dict = field(default_factory=dict)

    media_registry: MediaRegistry = field(default_factory=MediaRegistry)
    timeline: Timeline = field(default_factory=Timeline.with_default_tracks)
    volumes: TrackVolumes = field(default_factory=TrackVolumes)

    # -- Serialization -----------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "version": PROJECT_FORMAT_VERSION,
            "uuid": self.uuid,
            "name": self.name,
            "created_at": self.created_at,
            "settings": self.settings,
            "media_registry": self.media_registry.to_dict(),
            "timeline": self.timeline.to_dict(),
            "volumes": self.volumes.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        registry = MediaRegistry.from_dict(data.get("media_registry", []))
        return cls(
            uuid=data.get("uuid", str(uuid.uuid4())),
            name=data.get("name", "Untitled"),
            created_at=data.get("created_at", datetime.now().isoformat()),
            settings=data.get("settings", {}),
            media_registry=registry,
            timeline=Timeline.from_dict(data.get("timeline", {}), registry),
            volumes=TrackVolumes.from_dict(data.get("volumes", {})),
        )

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)

    @classmethod
    def load(cls, path: str | Path) -> "Project":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))
