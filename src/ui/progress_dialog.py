from PyQt6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QLabel, QProgressBar, QPushButton
)
from PyQt6.QtCore import Qt, pyqtSignal

from exporters.export_encoder import ExportProgress, ExportState

_STATE_TEXT = {
    ExportState.IDLE: "Waiting...",
    ExportState.PREPARING: "Loading media...",
    ExportState.RENDERING: "Rendering frames...",
    ExportState.ENCODING: "Encoding...",
    ExportState.COMPLETED: "Done",
    ExportState.ERROR: "Failed",
    ExportState.CANCELLED: "Cancelled",
}


class ProgressDialog(QDialog):
    """Export progress dialog: progress bar, throughput and a cancel button"""

    cancelled = pyqtSignal()

    def __init__(self, parent=None, title="Export"):
        super().__init__(parent)
        self.setWindowTitle(title)
        self.setFixedWidth(400)
        self.setWindowFlags(
            Qt.WindowType.Dialog |
            Qt.WindowType.CustomizeWindowHint |
            Qt.WindowType.WindowTitleHint
        )
        self.setModal(True)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(25, 25, 25, 20)
        layout.setSpacing(15)

        self.status_label = QLabel("Preparing...")
        self.status_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.status_label.setStyleSheet("font-weight: bold; color: #CCCCCC;")
        layout.addWidget(self.status_label)

        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        self.progress_bar.setValue(0)
        self.progress_bar.setTextVisible(True)
        self.progress_bar.setFixedHeight(18)
        layout.addWidget(self.progress_bar)

        # Frames and frames/s
        self.detail_label = QLabel("")
        self.detail_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.detail_label.setStyleSheet("color: gray; font-family: monospace;")
        layout.addWidget(self.detail_label)

        btn_layout = QHBoxLayout()
        btn_layout.addStretch()
        self.cancel_btn = QPushButton("Cancel")
        self.cancel_btn.setFixedWidth(100)
        self.cancel_btn.setCursor(Qt.CursorShape.PointingHandCursor)
        self.cancel_btn.clicked.connect(self._on_cancel)
        btn_layout.addWidget(self.cancel_btn)
        btn_layout.addStretch()
        layout.addLayout(btn_layout)

        self._is_cancelled = False
        self._is_finished = False

        self.adjustSize()
        self.setFixedSize(self.width(), self.sizeHint().height())

    def update_progress(self, progress: ExportProgress):
        """Update progress bar, status and throughput"""
        self.progress_bar.setValue(progress.percent)
        if not self._is_cancelled:
            self.status_label.setText(_STATE_TEXT.get(progress.state, ""))
        if progress.total_frames:
            self.detail_label.setText(
                f"{progress.frames_done} / {progress.total_frames} frames"
                f"  ({progress.throughput:.1f} fps)"
            )

    def mark_finished(self):
        """Allow the dialog to close once the export reached a terminal state"""
        self._is_finished = True

    def _on_cancel(self):
        """Handle cancel button click"""
        self._is_cancelled = True
        self.cancel_btn.setEnabled(False)
        self.cancel_btn.setText("Cancelling...")
        self.status_label.setText("Cancelling... please wait")
        self.cancelled.emit()

    def closeEvent(self, event):
        """Prevent closing dialog by X button during processing"""
        if self._is_cancelled or self._is_finished:
            event.accept()
        else:
            event.ignore()
