"""
Shared fixtures: offscreen Qt, fake media handles and a scriptable loader.

The fakes stand in for decoders so pipeline tests run without media files or
FFmpeg; everything else (cache, compositor, mix graph, drivers) is real.
"""
import os
import sys
import threading

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import numpy as np
import pytest
from pydub import AudioSegment
from PyQt6.QtGui import QColor, QImage

from config import AUDIO_SAMPLE_RATE, AUDIO_CHANNELS, AUDIO_SAMPLE_WIDTH
from core.media_handles import MediaHandle
from core.resource_cache import MediaResourceCache
from models.media import MediaFile, MediaKind
from models.timeline import TimelineItem


def solid_image(color, width=64, height=36) -> QImage:
    image = QImage(width, height, QImage.Format.Format_ARGB32_Premultiplied)
    image.fill(QColor(color))
    return image


def constant_audio(level: int, seconds: float) -> AudioSegment:
    """Stereo 16-bit audio whose every sample equals *level*."""
    frames = int(round(seconds * AUDIO_SAMPLE_RATE))
    samples = np.full(frames * AUDIO_CHANNELS, level, dtype=np.int16)
    return AudioSegment(
        data=samples.tobytes(),
        sample_width=AUDIO_SAMPLE_WIDTH,
        frame_rate=AUDIO_SAMPLE_RATE,
        channels=AUDIO_CHANNELS,
    )


class FakeImageHandle(MediaHandle):
    kind = MediaKind.IMAGE

    def __init__(self, color="red", width=64, height=36):
        super().__init__("fake-image")
        self.image = solid_image(color, width, height)
        self.closed = False

    def current_image(self):
        return self.image

    def close(self):
        self.closed = True


class FakeVideoHandle(MediaHandle):
    """Frame-stepping handle that records how it was driven."""

    kind = MediaKind.VIDEO
    time_based = True

    def __init__(self, color="blue", fps=30, width=64, height=36, audio=None, lag_frames=None,
                 duration=None):
        super().__init__("fake-video")
        self.duration = duration
        self.frame_interval = 1.0 / fps
        self.image = solid_image(color, width, height)
        self.seeks = []
        self.advances = 0
        self.closed = False
        self._audio = audio
        # Decode at most this many frames per advance, to simulate a slow decoder
        self.lag_frames = lag_frames

    def seek(self, seconds):
        self.seeks.append(seconds)
        self.position = max(0.0, seconds)

    def advance_to(self, seconds, max_frames=None):
        self.advances += 1
        limit = self.lag_frames if self.lag_frames is not None else max_frames
        decoded = 0
        while self.position + self.frame_interval <= seconds + 1e-9:
            if limit is not None and decoded >= limit:
                break
            self.position += self.frame_interval
            decoded += 1

    def current_image(self):
        return self.image

    def audio(self):
        return self._audio

    def close(self):
        self.closed = True


class FakeAudioHandle(MediaHandle):
    kind = MediaKind.AUDIO
    time_based = True

    def __init__(self, segment):
        super().__init__("fake-audio")
        self.segment = segment
        self.closed = False

    def audio(self):
        return self.segment

    def close(self):
        self.closed = True


class RecordingBus:
    """Audio bus that remembers what the mix graph asked of it."""

    def __init__(self):
        self.positions = {}
        self.gains = {}
        self.playing = set()
        self.seeks = []
        self.released = None
        self.volume = 1.0

    def position(self, item):
        return self.positions.get(item.uuid)

    def seek(self, item, seconds):
        self.seeks.append((item.uuid, seconds))
        self.positions[item.uuid] = seconds

    def set_gain(self, item, gain):
        self.gains[item.uuid] = gain

    def play(self, item):
        self.playing.add(item.uuid)

    def pause(self, item):
        self.playing.discard(item.uuid)

    def pause_all(self):
        self.playing.clear()

    def release(self, present_ids):
        self.released = set(present_ids)

    def set_volume(self, volume):
        self.volume = volume


class FakeLoader:
    """Loader keyed by media path.

    Each registered path maps to a zero-argument factory. Paths may also be
    marked as failing or as blocking until released.
    """

    def __init__(self):
        self.factories = {}
        self.failing = set()
        self.gates = {}
        self.calls = []
        self._lock = threading.Lock()

    def register(self, path, factory):
        self.factories[path] = factory

    def fail(self, path):
        self.failing.add(path)

    def block(self, path):
        gate = threading.Event()
        self.gates[path] = gate
        return gate

    def __call__(self, item):
        path = item.media.path
        with self._lock:
            self.calls.append(path)
        gate = self.gates.get(path)
        if gate is not None:
            gate.wait(5)
        if path in self.failing:
            raise OSError(f"cannot decode {path}")
        return self.factories[path]()


def make_item(kind, path="", start=0.0, duration=1.0, track=0, offset=0.0, **media_kwargs):
    media = MediaFile(kind=kind, path=path, name=path, duration=duration + offset, **media_kwargs)
    return TimelineItem(media=media, start_time=start, duration=duration, track=track,
                        media_start_offset=offset)


def make_effect(effect_type, start=0.0, duration=1.0, intensity=None, track=0):
    media = MediaFile.effect(effect_type, intensity=intensity)
    return TimelineItem(media=media, start_time=start, duration=duration, track=track)


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def cache(loader):
    cache = MediaResourceCache(loader, timeout=2.0, max_workers=2)
    yield cache
    cache.shutdown()
