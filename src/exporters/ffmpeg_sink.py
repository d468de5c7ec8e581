"""\
FFmpeg Frame Sink - pipes composed frames into libx264 and muxes the mixdown.

Frames arrive as raw RGBA over stdin and are encoded into a temporary video
next to the output. finalize() muxes that video with the WAV mixdown into the
final file; abort() kills the encoder and deletes every partial file, so a
cancelled export never leaves an artifact behind.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional
import logging
import os
import shutil
import subprocess
import tempfile

from core.errors import SetupFailure

logger = logging.getLogger(__name__)


def ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


class FfmpegFrameSink:
    """Frame sink writing an H.264/AAC MP4 through FFmpeg subprocesses."""

    def __init__(
        self,
        output_path: str | Path,
        width: int,
        height: int,
        fps: int,
        bitrate: str = "5000k",
        x264_preset: str = "veryfast",
    ):
        self.output_path = Path(output_path)
        self.width = width
        self.height = height
        self.fps = fps
        self.bitrate = bitrate
        self.x264_preset = x264_preset

        self._proc: Optional[subprocess.Popen] = None
        self._log = None
        self._video_path: Optional[str] = None
        self._frames = 0

    @property
    def frames_written(self) -> int:
        return self._frames

    def open(self) -> None:
        if not ffmpeg_available():
            raise SetupFailure("FFmpeg was not found on PATH")

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, self._video_path = tempfile.mkstemp(
            prefix=".cliptrack_", suffix=".mp4", dir=str(self.output_path.parent)
        )
        os.close(fd)

        cmd = [
            "ffmpeg", "-y", "-hide_banner", "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.fps),
            "-i", "-",
            "-an",
            "-c:v", "libx264",
            "-preset", self.x264_preset,
            "-b:v", self.bitrate,
            "-pix_fmt", "yuv420p",
            self._video_path,
        ]
        # stderr goes to a file so a chatty encoder can never block on a full pipe
        self._log = tempfile.TemporaryFile()
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=self._log,
            )
        except OSError as e:
            self._cleanup_files()
            raise SetupFailure(f"FFmpeg could not be started: {e}") from e

    def write(self, frame: bytes) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise RuntimeError("Sink is not open")
        expected = self.width * self.height * 4
        if len(frame) != expected:
            raise ValueError(f"Frame has {len(frame)} bytes, expected {expected}")
        try:
            self._proc.stdin.write(frame)
        except BrokenPipeError as e:
            raise RuntimeError(f"FFmpeg encoder exited early\n{self._log_tail()}") from e
        self._frames += 1

    def finalize(self, audio_path: Optional[str | Path] = None) -> Path:
        """Close the encoder and mux the mixdown into the output file."""
        if self._proc is None:
            raise RuntimeError("Sink is not open")

        if self._proc.stdin is not None:
            self._proc.stdin.close()
        rc = self._proc.wait()
        self._proc = None
        if rc != 0:
            tail = self._log_tail()
            self._cleanup_files()
            raise RuntimeError(f"FFmpeg encoding failed (code={rc})\n{tail}")

        cmd = ["ffmpeg", "-y", "-hide_banner", "-v", "error", "-i", self._video_path]
        if audio_path is not None and Path(audio_path).exists():
            cmd += ["-i", str(audio_path), "-map", "0:v:0", "-map", "1:a:0", "-c:a", "aac"]
        cmd += ["-c:v", "copy", "-movflags", "+faststart", str(self.output_path)]

        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        try:
            if proc.returncode != 0:
                if self.output_path.exists():
                    self.output_path.unlink()
                raise RuntimeError(f"FFmpeg mux failed (code={proc.returncode})\n{proc.stdout[-2000:]}")
        finally:
            self._cleanup_files()

        logger.info("Wrote %d frames to %s", self._frames, self.output_path)
        return self.output_path

    def abort(self) -> None:
        """Kill the encoder and remove every partial file."""
        if self._proc is not None:
            try:
                if self._proc.stdin is not None:
                    self._proc.stdin.close()
            except OSError:
                pass
            self._proc.kill()
            self._proc.wait()
            self._proc = None
        self._cleanup_files()

    def _log_tail(self) -> str:
        if self._log is None:
            return ""
        self._log.seek(0)
        return self._log.read().decode("utf-8", errors="replace")[-2000:]

    def _cleanup_files(self) -> None:
        if self._video_path and os.path.exists(self._video_path):
            os.remove(self._video_path)
        self._video_path = None
        if self._log is not None:
            self._log.close()
            self._log = None
