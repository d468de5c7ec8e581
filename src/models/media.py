"""
Media Registry - Media file definitions with UUID-based identification.

Each MediaFile holds metadata about an imported source (path, kind, probed
duration) or, for effects, the effect type and intensity. Timeline items
reference media files by object, several items may share one record.
MediaFile records are immutable once created.
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config import EFFECT_DEFAULT_DURATIONS, EFFECT_DEFAULT_INTENSITY


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    EFFECT = "effect"


class EffectType(str, Enum):
    FADE_IN = "fade_in"
    FADE_OUT = "fade_out"
    BLACK_WHITE = "black_white"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    BLUR = "blur"

    @property
    def default_duration(self) -> float:
        return EFFECT_DEFAULT_DURATIONS[self.value]

    @property
    def has_intensity(self) -> bool:
        return self in (EffectType.ZOOM_IN, EffectType.ZOOM_OUT, EffectType.BLUR)


@dataclass(frozen=True)
class MediaFile:
    """An imported source file or an applied effect.

    Attributes:
        uuid: Unique identifier.
        kind: video | audio | image | effect.
        path: Resolved source locator (empty for effects).
        name: Display name.
        duration: Nominal (probed) duration in seconds.
        effect_type: Set only for effect records.
        intensity: 0-100, only meaningful for zoom/blur effects.
    """
    kind: MediaKind
    path: str = ""
    name: str = ""
    duration: float = 0.0
    effect_type: Optional[EffectType] = None
    intensity: Optional[int] = None
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.intensity is not None and not 0 <= self.intensity <= 100:
            raise ValueError(f"intensity must be within 0-100, got {self.intensity}")
        if self.kind == MediaKind.EFFECT and self.effect_type is None:
            raise ValueError("effect media requires an effect_type")

    @classmethod
    def effect(cls, effect_type: EffectType, intensity: Optional[int] = None) -> "MediaFile":
        """Create the media record for an applied effect."""
        effect_type = EffectType(effect_type)
        if intensity is None and effect_type.has_intensity:
            intensity = EFFECT_DEFAULT_INTENSITY
        return cls(
            kind=MediaKind.EFFECT,
            name=effect_type.value.replace("_", " ").title(),
            duration=effect_type.default_duration,
            effect_type=effect_type,
            intensity=intensity,
        )

    @property
    def is_effect(self) -> bool:
        return self.kind == MediaKind.EFFECT

    @property
    def has_audio(self) -> bool:
        """Video sources are mixed for their soundtrack too."""
        return self.kind in (MediaKind.AUDIO, MediaKind.VIDEO)

    @property
    def is_visual(self) -> bool:
        return self.kind in (MediaKind.VIDEO, MediaKind.IMAGE)

    def to_dict(self) -> dict:
        d = {
            "uuid": self.uuid,
            "kind": self.kind.value,
            "path": self.path,
            "name": self.name,
            "duration": self.duration,
        }
        if self.effect_type is not None:
            d["effect_type"] = self.effect_type.value
        if self.intensity is not None:
            d["intensity"] = self.intensity
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "MediaFile":
        effect_type = data.get("effect_type")
        return cls(
            uuid=data.get("uuid", str(uuid.uuid4())),
            kind=MediaKind(data.get("kind", "video")),
            path=data.get("path", ""),
            name=data.get("name", ""),
            duration=data.get("duration", 0.0),
            effect_type=EffectType(effect_type) if effect_type else None,
            intensity=data.get("intensity"),
        )


class MediaRegistry:
    """Collection of all MediaFile records in a project, keyed by UUID."""

    def __init__(self):
        self._files: dict[str, MediaFile] = {}

    def add(self, media: MediaFile) -> None:
        self._files[media.uuid] = media

    def get(self, media_uuid: str) -> Optional[MediaFile]:
        return self._files.get(media_uuid)

    def remove(self, media_uuid: str) -> Optional[MediaFile]:
        return self._files.pop(media_uuid, None)

    def all(self) -> list[MediaFile]:
        return list(self._files.values())

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, media_uuid: str) -> bool:
        return media_uuid in self._files

    def to_dict(self) -> list:
        return [m.to_dict() for m in self._files.values()]

    @classmethod
    def from_dict(cls, data: list) -> "MediaRegistry":
        registry = cls()
        for entry in data:
            registry.add(MediaFile.from_dict(entry))
        return registry
