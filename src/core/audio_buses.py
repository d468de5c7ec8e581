"""
Audio Buses - output backends for AudioMixGraph.

PlayerBus   plays each source live through its own QMediaPlayer/QAudioOutput
            pair (preview).
MixdownBus  renders the mix span by span into an in-memory PCM buffer from
            pydub segments (export), then applies optional dynamics shaping
            and writes a WAV file.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import logging

from pydub import AudioSegment
from pydub.effects import compress_dynamic_range
from pydub.utils import ratio_to_db
from PyQt6.QtCore import QObject, QUrl
from PyQt6.QtMultimedia import QMediaPlayer, QAudioOutput

from config import AUDIO_SAMPLE_RATE, AUDIO_CHANNELS, AUDIO_SAMPLE_WIDTH

logger = logging.getLogger(__name__)

# Media statuses in which QMediaPlayer reports a meaningful position
_READY_STATUSES = (
    QMediaPlayer.MediaStatus.LoadedMedia,
    QMediaPlayer.MediaStatus.BufferingMedia,
    QMediaPlayer.MediaStatus.BufferedMedia,
    QMediaPlayer.MediaStatus.EndOfMedia,
)


class PlayerBus(QObject):
    """
    Live output: one cached player per audio-bearing item.

    Players are created on first use and kept until release()/cleanup(), so
    an item that leaves and re-enters the active set starts instantly.
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        # item id -> (player, audio_output)
        self._players: dict[str, tuple[QMediaPlayer, QAudioOutput]] = {}
        # Position requested while the source was still loading
        self._pending_seek: dict[str, float] = {}
        self._gains: dict[str, float] = {}
        self._volume: float = 1.0  # Master volume (0.0 to 1.0)

    def _get_or_create_player(self, item) -> Optional[tuple[QMediaPlayer, QAudioOutput]]:
        if item.uuid in self._players:
            return self._players[item.uuid]
        if not item.media.path or not Path(item.media.path).exists():
            return None

        audio_output = QAudioOutput()
        audio_output.setVolume(0.0)

        player = QMediaPlayer()
        player.setAudioOutput(audio_output)
        player.setSource(QUrl.fromLocalFile(item.media.path))

        item_id = item.uuid

        def on_media_status_changed(status):
            # Apply a seek that arrived before the media was ready
            if status == QMediaPlayer.MediaStatus.LoadedMedia and item_id in self._pending_seek:
                player.setPosition(int(self._pending_seek.pop(item_id) * 1000))

        player.mediaStatusChanged.connect(on_media_status_changed)
        player.errorOccurred.connect(
            lambda error, msg: logger.warning("Preview audio for item %s failed: %s", item_id, msg)
        )

        self._players[item_id] = (player, audio_output)
        return self._players[item_id]

    def position(self, item) -> Optional[float]:
        if item.uuid in self._pending_seek:
            return self._pending_seek[item.uuid]
        entry = self._players.get(item.uuid)
        if entry is None:
            return None
        player, _ = entry
        if player.mediaStatus() not in _READY_STATUSES:
            return None
        return player.position() / 1000.0

    def seek(self, item, seconds: float) -> None:
        entry = self._get_or_create_player(item)
        if entry is None:
            return
        player, _ = entry
        if player.mediaStatus() in _READY_STATUSES:
            player.setPosition(int(seconds * 1000))
        else:
            self._pending_seek[item.uuid] = seconds

    def set_gain(self, item, gain: float) -> None:
        self._gains[item.uuid] = gain
        entry = self._players.get(item.uuid)
        if entry is None:
            return
        _, audio_output = entry
        # QAudioOutput cannot boost; levels above 100% play at full scale
        audio_output.setVolume(max(0.0, min(1.0, gain * self._volume)))

    def play(self, item) -> None:
        entry = self._get_or_create_player(item)
        if entry is None:
            return
        player, _ = entry
        if player.playbackState() != QMediaPlayer.PlaybackState.PlayingState:
            player.play()

    def pause(self, item) -> None:
        entry = self._players.get(item.uuid)
        if entry is None:
            return
        player, _ = entry
        if player.playbackState() == QMediaPlayer.PlaybackState.PlayingState:
            player.pause()

    def pause_all(self) -> None:
        for player, _ in self._players.values():
            if player.playbackState() == QMediaPlayer.PlaybackState.PlayingState:
                player.pause()

    @property
    def volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> None:
        """Set master volume (0.0 to 1.0)."""
        self._volume = max(0.0, min(1.0, volume))
        for item_id, (_, audio_output) in self._players.items():
            gain = self._gains.get(item_id, 0.0)
            audio_output.setVolume(max(0.0, min(1.0, gain * self._volume)))

    def release(self, present_ids) -> None:
        """Drop players for items no longer on the timeline."""
        present = set(present_ids)
        for item_id in [i for i in self._players if i not in present]:
            player, audio_output = self._players.pop(item_id)
            player.stop()
            player.setSource(QUrl())
            player.deleteLater()
            audio_output.deleteLater()
            self._pending_seek.pop(item_id, None)
            self._gains.pop(item_id, None)

    def cleanup(self) -> None:
        """Cleanup all resources"""
        self.release(())


class MixdownBus:
    """
    Offline output: renders contiguous spans of the mix in timeline order.

    Args:
        cache: MediaResourceCache holding the decoded sources
        owner: Cache owner tag (export)
        dynamics: Apply dynamic range compression to the finished mix
        acquire_timeout: Per-span wait for a source (None uses the cache default)
    """

    def __init__(self, cache, owner: str, dynamics: bool = False,
                 acquire_timeout: Optional[float] = None):
        self.cache = cache
        self.owner = owner
        self.dynamics = dynamics
        self.acquire_timeout = acquire_timeout
        self._items: dict[str, object] = {}
        self._cursors: dict[str, float] = {}
        self._gains: dict[str, float] = {}
        self._playing: set[str] = set()
        self._pcm = bytearray()
        self._rendered_ms = 0

    def position(self, item) -> Optional[float]:
        return self._cursors.get(item.uuid)

    def seek(self, item, seconds: float) -> None:
        self._items[item.uuid] = item
        self._cursors[item.uuid] = max(0.0, seconds)

    def set_gain(self, item, gain: float) -> None:
        self._gains[item.uuid] = gain

    def play(self, item) -> None:
        self._items[item.uuid] = item
        self._playing.add(item.uuid)

    def pause(self, item) -> None:
        self._playing.discard(item.uuid)

    def pause_all(self) -> None:
        self._playing.clear()

    def release(self, present_ids) -> None:
        present = set(present_ids)
        for item_id in [i for i in self._items if i not in present]:
            del self._items[item_id]
            self._cursors.pop(item_id, None)
            self._gains.pop(item_id, None)
            self._playing.discard(item_id)

    @staticmethod
    def _silence(duration_ms: int) -> AudioSegment:
        return (
            AudioSegment.silent(duration=duration_ms, frame_rate=AUDIO_SAMPLE_RATE)
            .set_channels(AUDIO_CHANNELS)
            .set_sample_width(AUDIO_SAMPLE_WIDTH)
        )

    def render_span(self, start: float, end: float) -> AudioSegment:
        """Mix every playing source over [start, end) and append it to the output.

        Span edges are quantised to whole milliseconds so consecutive spans
        tile the timeline without gaps or overlaps.
        """
        start_ms = int(round(start * 1000))
        end_ms = int(round(end * 1000))
        duration_ms = max(0, end_ms - start_ms)
        if duration_ms == 0:
            return self._silence(0)

        submixes: dict[int, AudioSegment] = {}
        for item_id in sorted(self._playing):
            item = self._items[item_id]
            cursor = self._cursors.get(item_id, item.media_start_offset)
            self._cursors[item_id] = cursor + duration_ms / 1000.0

            gain = self._gains.get(item_id, 0.0)
            if gain <= 0.0:
                continue
            handle = self.cache.acquire(item, self.owner, timeout=self.acquire_timeout)
            source = handle.audio() if handle is not None else None
            if source is None:
                continue

            cursor_ms = int(round(cursor * 1000))
            piece = source[cursor_ms:cursor_ms + duration_ms]
            if len(piece) == 0:
                continue
            if gain != 1.0:
                piece = piece.apply_gain(ratio_to_db(gain))

            submix = submixes.get(item.track)
            if submix is None:
                submix = self._silence(duration_ms)
            submixes[item.track] = submix.overlay(piece)

        chunk = self._silence(duration_ms)
        for track in sorted(submixes):
            chunk = chunk.overlay(submixes[track])

        self._pcm.extend(chunk.raw_data)
        self._rendered_ms += duration_ms
        return chunk

    @property
    def rendered_seconds(self) -> float:
        return self._rendered_ms / 1000.0

    def mix(self) -> AudioSegment:
        mix = AudioSegment(
            data=bytes(self._pcm),
            sample_width=AUDIO_SAMPLE_WIDTH,
            frame_rate=AUDIO_SAMPLE_RATE,
            channels=AUDIO_CHANNELS,
        )
        if self.dynamics and len(mix) > 0:
            mix = compress_dynamic_range(mix)
        return mix

    def finish(self, output_path: str | Path) -> Path:
        """Write the finished mix as WAV."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.mix().export(str(output_path), format="wav")
        return output_path

