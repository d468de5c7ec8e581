"""
Media Handles - decodable resources behind timeline items.

Every handle is created by HandleFactory on a loader thread and then owned by
the MediaResourceCache. Video frames are decoded with an FFmpeg rawvideo pipe
(sequential decode, restart on seek), audio with pydub.
"""
from __future__ import annotations

from fractions import Fraction
from typing import Optional
import json
import logging
import subprocess
import threading

from pydub import AudioSegment
from PyQt6.QtGui import QImage

from config import AUDIO_SAMPLE_RATE, AUDIO_CHANNELS, AUDIO_SAMPLE_WIDTH
from core.errors import ResourceLoadFailure
from models.media import MediaKind

logger = logging.getLogger(__name__)

# Half a frame at 60fps, absorbs float noise when stepping by 1/fps
_POSITION_EPSILON = 1.0 / 120.0


def probe_media(path: str) -> dict:
    """Probe a source with ffprobe.

    Returns:
        dict with duration, width, height, fps (Fraction) and has_audio
    """
    out = subprocess.check_output(
        [
            "ffprobe",
            "-v",
            "error",
            "-show_entries",
            "format=duration:stream=codec_type,width,height,r_frame_rate",
            "-of",
            "json",
            path,
        ],
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    data = json.loads(out)
    info = {
        "duration": float(data.get("format", {}).get("duration", 0.0) or 0.0),
        "width": 0,
        "height": 0,
        "fps": Fraction(30, 1),
        "has_audio": False,
    }
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and not info["width"]:
            info["width"] = int(stream.get("width", 0))
            info["height"] = int(stream.get("height", 0))
            rate = stream.get("r_frame_rate", "30/1")
            try:
                fps = Fraction(rate)
            except (ValueError, ZeroDivisionError):
                fps = Fraction(30, 1)
            if fps > 0:
                info["fps"] = fps
        elif stream.get("codec_type") == "audio":
            info["has_audio"] = True
    return info


def _to_mix_format(segment: AudioSegment) -> AudioSegment:
    """Convert to the sample rate / channels / width every bus mixes in."""
    return (
        segment.set_frame_rate(AUDIO_SAMPLE_RATE)
        .set_channels(AUDIO_CHANNELS)
        .set_sample_width(AUDIO_SAMPLE_WIDTH)
    )


class MediaHandle:
    """Base handle. Subclasses override what their media supports."""

    kind: MediaKind
    # True when the handle has a playback position that must track timeline time
    time_based = False
    # Source length in seconds, where the decoder knows it
    duration: Optional[float] = None
    # True once a sequential decoder has run out of frames
    at_end = False

    def __init__(self, path: str):
        self.path = path
        self.position = 0.0

    def seek(self, seconds: float) -> None:
        self.position = max(0.0, seconds)

    def advance_to(self, seconds: float, max_frames: Optional[int] = None) -> None:
        self.position = max(self.position, seconds)

    def current_image(self) -> Optional[QImage]:
        return None

    def audio(self) -> Optional[AudioSegment]:
        return None

    def close(self) -> None:
        pass


class ImageHandle(MediaHandle):
    """A still image decoded once into a QImage."""

    kind = MediaKind.IMAGE

    def __init__(self, path: str):
        super().__init__(path)
        image = QImage(path)
        if image.isNull():
            raise ResourceLoadFailure(path, "image could not be decoded")
        self._image = image.convertToFormat(QImage.Format.Format_ARGB32_Premultiplied)

    def current_image(self) -> Optional[QImage]:
        return self._image

    def close(self) -> None:
        self._image = QImage()


class AudioHandle(MediaHandle):
    """A fully decoded audio source, normalised to the mix format."""

    kind = MediaKind.AUDIO
    time_based = True

    def __init__(self, path: str):
        super().__init__(path)
        try:
            segment = AudioSegment.from_file(path)
        except Exception as e:
            raise ResourceLoadFailure(path, f"audio decode failed: {e}") from e
        self._segment = _to_mix_format(segment)

    def audio(self) -> Optional[AudioSegment]:
        return self._segment

    def close(self) -> None:
        self._segment = None


class VideoHandle(MediaHandle):
    """Sequential frame decoder over an FFmpeg rawvideo pipe.

    `position` is the source timestamp of the frame currently held. Moving
    forward decodes frame by frame; seek() restarts the pipe at the new
    position, so callers only seek when the drift is large.
    """

    kind = MediaKind.VIDEO
    time_based = True

    def __init__(self, path: str, max_height: Optional[int] = None):
        super().__init__(path)
        try:
            info = probe_media(path)
        except (subprocess.CalledProcessError, OSError, ValueError) as e:
            raise ResourceLoadFailure(path, f"probe failed: {e}") from e
        if not info["width"] or not info["height"]:
            raise ResourceLoadFailure(path, "no video stream")

        self.duration = info["duration"]
        self.has_audio = info["has_audio"]
        self.fps = info["fps"]
        self.frame_interval = float(1 / self.fps)

        width, height = info["width"], info["height"]
        if max_height and height > max_height:
            width = int(width * max_height / height) // 2 * 2
            height = max_height
        self.width = width
        self.height = height
        self._scaled = (width, height) != (info["width"], info["height"])
        self._frame_bytes = width * height * 4

        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None
        self._frame: Optional[bytes] = None
        self._image: Optional[QImage] = None
        self._eof = False
        self._soundtrack: Optional[AudioSegment] = None
        self._soundtrack_loaded = False

        self._open_at(0.0)

    # -- Decoding ---------------------------------------------------------

    def _open_at(self, seconds: float) -> None:
        self._kill()
        cmd = ["ffmpeg", "-v", "error", "-ss", f"{seconds:.3f}", "-i", self.path, "-an"]
        if self._scaled:
            cmd += ["-vf", f"scale={self.width}:{self.height}"]
        cmd += ["-f", "rawvideo", "-pix_fmt", "rgba", "-"]
        self._proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            bufsize=self._frame_bytes,
        )
        self._eof = False
        self.position = seconds
        self._read_frame()

    def _read_frame(self) -> bool:
        if self._proc is None or self._proc.stdout is None or self._eof:
            return False
        data = self._proc.stdout.read(self._frame_bytes)
        if len(data) < self._frame_bytes:
            # Past the last frame: hold what we have
            self._eof = True
            return False
        self._frame = data
        self._image = None
        return True

    def _kill(self) -> None:
        if self._proc is not None:
            try:
                self._proc.kill()
                self._proc.wait(timeout=2)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug("FFmpeg decoder for %s did not exit cleanly: %s", self.path, e)
            self._proc = None

    @property
    def at_end(self) -> bool:
        return self._eof

    def seek(self, seconds: float) -> None:
        with self._lock:
            self._open_at(max(0.0, seconds))

    def advance_to(self, seconds: float, max_frames: Optional[int] = None) -> None:
        """Decode forward until the held frame covers *seconds*.

        Args:
            seconds: Target source position
            max_frames: Stop after this many frames even if behind
        """
        with self._lock:
            decoded = 0
            while self.position + self.frame_interval <= seconds + _POSITION_EPSILON:
                if max_frames is not None and decoded >= max_frames:
                    break
                if not self._read_frame():
                    break
                self.position += self.frame_interval
                decoded += 1

    def current_image(self) -> Optional[QImage]:
        with self._lock:
            if self._frame is None:
                return None
            if self._image is None:
                self._image = QImage(
                    self._frame, self.width, self.height, self.width * 4,
                    QImage.Format.Format_RGBA8888,
                ).copy()
            return self._image

    def audio(self) -> Optional[AudioSegment]:
        if not self.has_audio:
            return None
        if not self._soundtrack_loaded:
            self._soundtrack_loaded = True
            try:
                segment = AudioSegment.from_file(self.path)
                self._soundtrack = _to_mix_format(segment)
            except Exception as e:
                logger.warning("Soundtrack of %s could not be decoded: %s", self.path, e)
                self._soundtrack = None
        return self._soundtrack

    def close(self) -> None:
        with self._lock:
            self._kill()
            self._frame = None
            self._image = None
            self._soundtrack = None


class HandleFactory:
    """Creates the handle that matches an item's media kind."""

    def __init__(self, max_video_height: Optional[int] = None):
        self.max_video_height = max_video_height

    def __call__(self, item) -> Optional[MediaHandle]:
        media = item.media
        if media.kind == MediaKind.IMAGE:
            return ImageHandle(media.path)
        if media.kind == MediaKind.VIDEO:
            return VideoHandle(media.path, max_height=self.max_video_height)
        if media.kind == MediaKind.AUDIO:
            return AudioHandle(media.path)
        # Effects have no decodable resource
        return None
