"""
Cliptrack Data Models.

Public API:

  Media Layer:
    MediaFile, MediaKind, EffectType, MediaRegistry

  Timeline Layer:
    Timeline, Track, TrackType, TimelineItem, TrackVolumes, active_items

  Project:
    Project
"""

from models.media import (
    MediaFile,
    MediaKind,
    EffectType,
    MediaRegistry,
)
from models.timeline import (
    Timeline,
    Track,
    TrackType,
    TimelineItem,
    TrackVolumes,
    active_items,
)
from models.project import Project

__all__ = [
    # Media
    "MediaFile",
    "MediaKind",
    "EffectType",
    "MediaRegistry",
    # Timeline
    "Timeline",
    "Track",
    "TrackType",
    "TimelineItem",
    "TrackVolumes",
    "active_items",
    # Project
    "Project",
]
