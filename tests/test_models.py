"""
Unit tests for the data model layer (models package).

Tests cover:
  - Media files: creation, effect records, serialization, registry operations
  - Timeline: items, activity, track-type validation, serialization
  - Track volumes: defaults and clamping
  - Project: full save/load round-trip
"""
import sys
import os
import tempfile
import unittest

# Ensure src/ is on the path so that absolute imports within models work.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.errors import InvalidItem, TrackTypeMismatch
from models.media import EffectType, MediaFile, MediaKind, MediaRegistry
from models.timeline import (
    Timeline,
    Track,
    TrackType,
    TimelineItem,
    TrackVolumes,
    active_items,
)
from models.project import Project
from runtime_config import RuntimeConfig


def _video(path="clip.mp4", duration=10.0):
    return MediaFile(kind=MediaKind.VIDEO, path=path, name=path, duration=duration)


def _audio(path="music.wav", duration=10.0):
    return MediaFile(kind=MediaKind.AUDIO, path=path, name=path, duration=duration)


# ---- Media ---------------------------------------------------------------

class TestMediaFile(unittest.TestCase):
    def test_round_trip(self):
        m = _video()
        m2 = MediaFile.from_dict(m.to_dict())
        self.assertEqual(m2, m)

    def test_frozen(self):
        m = _video()
        with self.assertRaises(Exception):
            m.path = "other.mp4"

    def test_effect_defaults(self):
        fade = MediaFile.effect(EffectType.FADE_IN)
        self.assertTrue(fade.is_effect)
        self.assertEqual(fade.path, "")
        self.assertEqual(fade.duration, 2.0)
        self.assertIsNone(fade.intensity)

        zoom = MediaFile.effect(EffectType.ZOOM_IN)
        self.assertEqual(zoom.duration, 3.0)
        self.assertEqual(zoom.intensity, 50)

    def test_effect_round_trip(self):
        blur = MediaFile.effect(EffectType.BLUR, intensity=80)
        d = blur.to_dict()
        self.assertEqual(d["effect_type"], "blur")
        self.assertEqual(MediaFile.from_dict(d), blur)

    def test_intensity_range(self):
        with self.assertRaises(ValueError):
            MediaFile.effect(EffectType.BLUR, intensity=150)

    def test_effect_requires_type(self):
        with self.assertRaises(ValueError):
            MediaFile(kind=MediaKind.EFFECT)

    def test_audio_bearing_kinds(self):
        self.assertTrue(_video().has_audio)
        self.assertTrue(_audio().has_audio)
        self.assertFalse(MediaFile(kind=MediaKind.IMAGE, path="a.png").has_audio)


class TestMediaRegistry(unittest.TestCase):
    def test_add_get_remove(self):
        reg = MediaRegistry()
        m = _video()
        reg.add(m)
        self.assertIn(m.uuid, reg)
        self.assertIs(reg.get(m.uuid), m)
        self.assertEqual(len(reg), 1)
        reg.remove(m.uuid)
        self.assertEqual(len(reg), 0)

    def test_round_trip(self):
        reg = MediaRegistry()
        reg.add(_video())
        reg.add(MediaFile.effect(EffectType.FADE_OUT))
        reg2 = MediaRegistry.from_dict(reg.to_dict())
        self.assertEqual(len(reg2), 2)


# ---- Timeline ------------------------------------------------------------

class TestTimelineItem(unittest.TestCase):
    def test_half_open_activity(self):
        item = TimelineItem(media=_video(), start_time=1.0, duration=2.0)
        self.assertFalse(item.is_active(0.999))
        self.assertTrue(item.is_active(1.0))
        self.assertTrue(item.is_active(2.999))
        self.assertFalse(item.is_active(3.0))

    def test_source_position(self):
        item = TimelineItem(media=_video(), start_time=5.0, duration=2.0, media_start_offset=1.5)
        self.assertAlmostEqual(item.source_position(6.0), 2.5)

    def test_invalid_values(self):
        with self.assertRaises(InvalidItem):
            TimelineItem(media=_video(), start_time=-1.0, duration=1.0)
        with self.assertRaises(InvalidItem):
            TimelineItem(media=MediaFile.effect(EffectType.FADE_IN), duration=0.0)
        with self.assertRaises(InvalidItem):
            TimelineItem(media=_video(), duration=1.0, media_start_offset=-0.5)

    def test_shared_media(self):
        m = _video()
        a = TimelineItem(media=m, start_time=0.0, duration=1.0)
        b = TimelineItem(media=m, start_time=2.0, duration=1.0)
        self.assertIs(a.media, b.media)
        self.assertNotEqual(a.uuid, b.uuid)

    def test_round_trip(self):
        reg = MediaRegistry()
        m = _video()
        reg.add(m)
        item = TimelineItem(media=m, start_time=1.0, duration=2.0, track=1, media_start_offset=0.5)
        item2 = TimelineItem.from_dict(item.to_dict(), reg)
        self.assertEqual(item2.uuid, item.uuid)
        self.assertIs(item2.media, m)
        self.assertEqual(item2.track, 1)

    def test_unknown_media_rejected(self):
        with self.assertRaises(InvalidItem):
            TimelineItem.from_dict({"media_uuid": "missing", "duration": 1.0}, MediaRegistry())


class TestActiveItems(unittest.TestCase):
    def test_sorted_by_track_and_effects_excluded(self):
        top = TimelineItem(media=_video("top.mp4"), duration=5.0, track=2)
        base = TimelineItem(media=_video("base.mp4"), duration=5.0, track=0)
        fade = TimelineItem(media=MediaFile.effect(EffectType.FADE_IN), duration=5.0, track=1)
        result = active_items([top, fade, base], 1.0)
        self.assertEqual([i.uuid for i in result], [base.uuid, top.uuid])

    def test_same_track_overlap_keeps_order(self):
        a = TimelineItem(media=_video("a.mp4"), duration=5.0, track=0)
        b = TimelineItem(media=_video("b.mp4"), start_time=1.0, duration=5.0, track=0)
        result = active_items([a, b], 2.0)
        self.assertEqual([i.uuid for i in result], [a.uuid, b.uuid])


class TestTimeline(unittest.TestCase):
    def test_default_tracks(self):
        tl = Timeline.with_default_tracks()
        self.assertEqual([t.track_type for t in tl.tracks],
                         [TrackType.VIDEO] * 3 + [TrackType.AUDIO] * 2)

    def test_track_type_mismatch(self):
        tl = Timeline.with_default_tracks()
        with self.assertRaises(TrackTypeMismatch):
            tl.add_item(TimelineItem(media=_audio(), duration=1.0, track=0))
        with self.assertRaises(TrackTypeMismatch):
            tl.add_item(TimelineItem(media=_video(), duration=1.0, track=3))
        self.assertEqual(tl.items, [])

    def test_effects_on_any_track(self):
        tl = Timeline.with_default_tracks()
        tl.add_item(TimelineItem(media=MediaFile.effect(EffectType.BLUR), duration=1.0, track=4))
        self.assertEqual(len(tl.items), 1)

    def test_move_item_validates(self):
        tl = Timeline.with_default_tracks()
        item = TimelineItem(media=_video(), duration=1.0, track=0)
        tl.add_item(item)
        tl.move_item(item.uuid, 4.0, track=1)
        self.assertEqual((item.start_time, item.track), (4.0, 1))
        with self.assertRaises(TrackTypeMismatch):
            tl.move_item(item.uuid, 5.0, track=3)
        self.assertEqual((item.start_time, item.track), (4.0, 1))

    def test_duration_and_snapshot(self):
        tl = Timeline.with_default_tracks()
        tl.add_item(TimelineItem(media=_video(), start_time=2.0, duration=3.0, track=0))
        tl.add_item(TimelineItem(media=_audio(), start_time=0.0, duration=4.0, track=3))
        self.assertAlmostEqual(tl.duration, 5.0)
        snap = tl.snapshot()
        self.assertIsInstance(snap, tuple)
        self.assertEqual(len(snap), 2)

    def test_duplicate_track_index(self):
        tl = Timeline.with_default_tracks()
        with self.assertRaises(ValueError):
            tl.add_track(Track(index=0))

    def test_round_trip(self):
        reg = MediaRegistry()
        m = _video()
        reg.add(m)
        tl = Timeline.with_default_tracks()
        tl.add_item(TimelineItem(media=m, start_time=1.0, duration=2.0, track=1))
        tl2 = Timeline.from_dict(tl.to_dict(), reg)
        self.assertEqual(len(tl2.tracks), 5)
        self.assertEqual(tl2.items[0].start_time, 1.0)


class TestTrackVolumes(unittest.TestCase):
    def test_default(self):
        self.assertEqual(TrackVolumes().get("anything"), 100)

    def test_clamped(self):
        v = TrackVolumes()
        v.set("a", 250)
        v.set("b", -10)
        self.assertEqual(v.get("a"), 200)
        self.assertEqual(v.get("b"), 0)

    def test_reset(self):
        v = TrackVolumes({"a": 50})
        v.reset()
        self.assertEqual(v.get("a"), 100)


# ---- Project -------------------------------------------------------------

class TestProject(unittest.TestCase):
    def _build(self):
        p = Project(name="Demo")
        m = _video()
        fade = MediaFile.effect(EffectType.FADE_IN)
        p.media_registry.add(m)
        p.media_registry.add(fade)
        clip = TimelineItem(media=m, start_time=0.0, duration=4.0, track=0)
        p.timeline.add_item(clip)
        p.timeline.add_item(TimelineItem(media=fade, start_time=0.0, duration=2.0, track=0))
        p.volumes.set(clip.uuid, 150)
        p.settings = RuntimeConfig(export_quality="high").to_dict()
        return p, clip

    def test_save_load_round_trip(self):
        p, clip = self._build()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "demo.ctp")
            p.save(path)
            p2 = Project.load(path)

        self.assertEqual(p2.name, "Demo")
        self.assertEqual(len(p2.timeline.items), 2)
        self.assertEqual(p2.volumes.get(clip.uuid), 150)
        self.assertEqual(RuntimeConfig.from_dict(p2.settings).export_quality, "high")
        # Items resolve to the loaded registry's records
        self.assertIs(p2.timeline.items[0].media, p2.media_registry.get(clip.media.uuid))


class TestRuntimeConfig(unittest.TestCase):
    def test_unknown_fields_ignored(self):
        cfg = RuntimeConfig.from_dict({"export_fps": 60, "legacy_option": True})
        self.assertEqual(cfg.export_fps, 60)

    def test_reset(self):
        cfg = RuntimeConfig(export_quality="fast")
        cfg.reset_to_defaults()
        self.assertEqual(cfg.export_quality, "balanced")


if __name__ == "__main__":
    unittest.main()
