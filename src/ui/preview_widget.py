"""
Preview Widget - Live composition preview with transport controls
"""
from typing import Optional

from PyQt6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QLabel, QPushButton, QSlider, QStyle
)
from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtGui import QImage, QPixmap

from core.audio_buses import PlayerBus
from core.playback import PlaybackSynchronizer, PLAYING, SEEKING


class PreviewWidget(QWidget):
    """Shows frames rendered by a PlaybackSynchronizer and drives its transport"""

    # Signal emitted when playback position changes (seconds)
    position_changed = pyqtSignal(float)

    def __init__(self, cache, volumes, parent=None, synchronizer: Optional[PlaybackSynchronizer] = None):
        super().__init__(parent)
        self._last_image: Optional[QImage] = None
        self.is_seeking = False

        if synchronizer is None:
            synchronizer = PlaybackSynchronizer(cache, volumes, PlayerBus(self), parent=self)
        self.synchronizer = synchronizer
        self.synchronizer.frame_ready.connect(self._on_frame_ready)
        self.synchronizer.position_changed.connect(self._on_position_changed)
        self.synchronizer.state_changed.connect(self._on_state_changed)

        self._setup_ui()

    def _setup_ui(self):
        """Setup the UI"""
        layout = QVBoxLayout(self)
        layout.setContentsMargins(5, 5, 5, 5)

        # Frame display
        self.image_label = QLabel()
        self.image_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.image_label.setMinimumSize(320, 180)
        self.image_label.setStyleSheet("""
            QLabel {
                background-color: #000000;
                border: 1px solid #333;
                border-radius: 4px;
            }
        """)
        self.image_label.setText("Preview\n\nOpen a project and press play")
        layout.addWidget(self.image_label, 1)

        # Time display
        time_layout = QHBoxLayout()
        self.time_label = QLabel("0:00 / 0:00")
        self.time_label.setStyleSheet("font-family: monospace;")
        time_layout.addWidget(self.time_label)
        layout.addLayout(time_layout)

        # Seek slider
        self.seek_slider = QSlider(Qt.Orientation.Horizontal)
        self.seek_slider.setRange(0, 1000)
        self.seek_slider.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.seek_slider.sliderMoved.connect(self._on_seek)
        self.seek_slider.sliderPressed.connect(self._on_seek_start)
        self.seek_slider.sliderReleased.connect(self._on_seek_end)
        layout.addWidget(self.seek_slider)

        # Playback controls
        controls_layout = QHBoxLayout()

        self.status_label = QLabel("Idle")
        self.status_label.setStyleSheet("color: gray;")
        self.status_label.setFixedWidth(60)
        controls_layout.addWidget(self.status_label)

        controls_layout.addStretch()

        self.btn_start = QPushButton()
        self.btn_start.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaSkipBackward))
        self.btn_start.setToolTip("Go to start")
        self.btn_start.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.btn_start.clicked.connect(self._go_to_start)
        self.btn_start.setFixedWidth(40)
        controls_layout.addWidget(self.btn_start)

        self.btn_play = QPushButton()
        self.btn_play.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaPlay))
        self.btn_play.setToolTip("Play/Stop")
        self.btn_play.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.btn_play.clicked.connect(self.toggle_playback)
        self.btn_play.setFixedWidth(40)
        controls_layout.addWidget(self.btn_play)

        self.btn_stop = QPushButton()
        self.btn_stop.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaStop))
        self.btn_stop.setToolTip("Stop")
        self.btn_stop.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.btn_stop.clicked.connect(self.stop)
        self.btn_stop.setFixedWidth(40)
        controls_layout.addWidget(self.btn_stop)

        self.btn_end = QPushButton()
        self.btn_end.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaSkipForward))
        self.btn_end.setToolTip("Go to end")
        self.btn_end.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.btn_end.clicked.connect(self._go_to_end)
        self.btn_end.setFixedWidth(40)
        controls_layout.addWidget(self.btn_end)

        controls_layout.addStretch()

        # Master volume
        volume_icon = QLabel()
        volume_icon.setPixmap(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaVolume).pixmap(16, 16))
        controls_layout.addWidget(volume_icon)

        self.volume_slider = QSlider(Qt.Orientation.Horizontal)
        self.volume_slider.setRange(0, 100)
        self.volume_slider.setValue(100)
        self.volume_slider.setFixedWidth(100)
        self.volume_slider.setToolTip("Preview volume")
        self.volume_slider.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        self.volume_slider.valueChanged.connect(self._on_volume_changed)
        controls_layout.addWidget(self.volume_slider)

        layout.addLayout(controls_layout)

    # -- Timeline ----------------------------------------------------------

    def set_items(self, items):
        """Load a timeline snapshot and show the frame at the current position"""
        self.synchronizer.set_items(items)
        self._update_time_label(self.synchronizer.position)
        self.synchronizer.refresh()

    @property
    def total_duration(self) -> float:
        return self.synchronizer.duration

    # -- Transport ---------------------------------------------------------

    def toggle_playback(self):
        self.synchronizer.toggle()

    def stop(self):
        self.synchronizer.stop()

    def seek(self, seconds: float):
        self.synchronizer.seek(seconds)

    def _on_volume_changed(self, value: int):
        self.synchronizer.set_volume(value / 100.0)

    def _go_to_start(self):
        self.synchronizer.seek(0.0)

    def _go_to_end(self):
        self.synchronizer.seek(self.total_duration)

    def _on_seek_start(self):
        """Called when user starts dragging the seek slider"""
        self.is_seeking = True

    def _on_seek_end(self):
        """Called when user releases the seek slider"""
        self.is_seeking = False
        self.synchronizer.seek(self._slider_to_seconds(self.seek_slider.value()))

    def _on_seek(self, value: int):
        """Handle seek slider drag"""
        self._update_time_label(self._slider_to_seconds(value))

    def _slider_to_seconds(self, value: int) -> float:
        return value / 1000 * self.total_duration

    # -- Synchronizer signals ----------------------------------------------

    def _on_frame_ready(self, image: QImage):
        self._last_image = image
        self._show_image()

    def _show_image(self):
        if self._last_image is None or self._last_image.isNull():
            return
        pixmap = QPixmap.fromImage(self._last_image).scaled(
            self.image_label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        )
        self.image_label.setPixmap(pixmap)

    def _on_position_changed(self, seconds: float):
        if self.is_seeking:
            return

        self.position_changed.emit(seconds)
        self._update_time_label(seconds)

        if self.total_duration > 0:
            self.seek_slider.blockSignals(True)
            self.seek_slider.setValue(int(seconds / self.total_duration * 1000))
            self.seek_slider.blockSignals(False)

    def _on_state_changed(self, state: str):
        if state == PLAYING:
            self.btn_play.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaPause))
            self.status_label.setText("Playing")
            self.status_label.setStyleSheet("color: #4CAF50;")
        elif state == SEEKING:
            self.status_label.setText("Seeking")
            self.status_label.setStyleSheet("color: orange;")
        else:  # stopped
            self.btn_play.setIcon(self.style().standardIcon(QStyle.StandardPixmap.SP_MediaPlay))
            self.status_label.setText("Stopped")
            self.status_label.setStyleSheet("color: gray;")

    def _format_time(self, seconds: float) -> str:
        """Format seconds as M:SS"""
        seconds = int(seconds)
        return f"{seconds // 60}:{seconds % 60:02d}"

    def _update_time_label(self, seconds: float):
        self.time_label.setText(f"{self._format_time(seconds)} / {self._format_time(self.total_duration)}")

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._show_image()

    def cleanup(self):
        """Stop playback and release preview resources"""
        self.synchronizer.cleanup()
        if isinstance(self.synchronizer.bus, PlayerBus):
            self.synchronizer.bus.cleanup()
