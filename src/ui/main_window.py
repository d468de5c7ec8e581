"""
Main Window - Project preview, track volumes and export
"""
import logging
from pathlib import Path
from typing import Optional

from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QPushButton, QFileDialog, QSplitter, QSpinBox, QGroupBox,
    QMessageBox, QTableWidget, QTableWidgetItem, QHeaderView, QDialog
)
from PyQt6.QtCore import Qt
from PyQt6.QtGui import QAction, QKeySequence

from core.media_handles import HandleFactory
from core.resource_cache import MediaResourceCache, PREVIEW
from exporters.export_encoder import ExportState
from models import Project
from runtime_config import RuntimeConfig, get_config, set_config

from .export_settings_dialog import ExportSettingsDialog
from .preview_widget import PreviewWidget
from .progress_dialog import ProgressDialog
from .threads import ExportThread

logger = logging.getLogger(__name__)

PROJECT_FILTER = "Cliptrack Project (*.ctp);;All Files (*)"


class MainWindow(QMainWindow):
    """Main application window"""

    def __init__(self):
        super().__init__()
        self.setWindowTitle("Cliptrack")
        self.setMinimumSize(1100, 700)

        self.project = Project()
        self.project_path: Optional[str] = None
        self._export_thread: Optional[ExportThread] = None
        self._progress_dialog: Optional[ProgressDialog] = None

        # One cache shared by preview and export; export decodes at full size
        self.cache = MediaResourceCache(HandleFactory(), timeout=get_config().resource_load_timeout)

        self._setup_ui()
        self._setup_menu_bar()

    def _setup_menu_bar(self):
        """Setup the menu bar with File menu"""
        menu_bar = self.menuBar()
        file_menu = menu_bar.addMenu("&File")

        open_action = QAction("&Open Project...", self)
        open_action.setShortcut(QKeySequence.StandardKey.Open)
        open_action.triggered.connect(self._open_project)
        file_menu.addAction(open_action)

        file_menu.addSeparator()

        save_action = QAction("&Save", self)
        save_action.setShortcut(QKeySequence.StandardKey.Save)
        save_action.triggered.connect(self._save_project)
        file_menu.addAction(save_action)

        save_as_action = QAction("Save &As...", self)
        save_as_action.setShortcut(QKeySequence("Ctrl+Shift+S"))
        save_as_action.triggered.connect(self._save_project_as)
        file_menu.addAction(save_as_action)

        file_menu.addSeparator()

        export_action = QAction("&Export Video...", self)
        export_action.setShortcut(QKeySequence("Ctrl+E"))
        export_action.triggered.connect(self._export_video)
        file_menu.addAction(export_action)

    def _setup_ui(self):
        """Setup the main UI layout"""
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)

        splitter = QSplitter(Qt.Orientation.Horizontal)

        self.preview_widget = PreviewWidget(self.cache, self.project.volumes, parent=self)
        splitter.addWidget(self.preview_widget)

        mixer_group = QGroupBox("Mixer")
        mixer_layout = QVBoxLayout(mixer_group)
        self.mixer_table = QTableWidget(0, 3)
        self.mixer_table.setHorizontalHeaderLabels(["Item", "Track", "Volume %"])
        self.mixer_table.horizontalHeader().setSectionResizeMode(0, QHeaderView.ResizeMode.Stretch)
        self.mixer_table.verticalHeader().setVisible(False)
        mixer_layout.addWidget(self.mixer_table)

        self.btn_reset_volumes = QPushButton("Reset volumes")
        self.btn_reset_volumes.clicked.connect(self._reset_volumes)
        mixer_layout.addWidget(self.btn_reset_volumes)
        splitter.addWidget(mixer_group)

        splitter.setSizes([750, 350])
        main_layout.addWidget(splitter, 1)

        bottom = QHBoxLayout()
        bottom.addStretch()
        self.btn_export = QPushButton("Export Video")
        self.btn_export.clicked.connect(self._export_video)
        bottom.addWidget(self.btn_export)
        main_layout.addLayout(bottom)

        self.statusBar().showMessage("Ready")

    # -- Project -----------------------------------------------------------

    def open_project_file(self, path: str):
        """Load a project file and show it in the preview"""
        try:
            project = Project.load(path)
        except Exception as e:
            logger.exception("Failed to open project %s", path)
            QMessageBox.critical(self, "Error", f"Could not open project:\n{e}")
            return

        self.preview_widget.stop()
        self.cache.release_owner(PREVIEW)
        self.project = project
        self.project_path = path
        set_config(RuntimeConfig.from_dict(project.settings))
        self._apply_runtime_config()

        self.preview_widget.synchronizer.mix_graph.volumes = project.volumes
        self.preview_widget.set_items(project.timeline.snapshot())
        self._populate_mixer()

        self.setWindowTitle(f"Cliptrack - {Path(path).name}")
        self.statusBar().showMessage(f"Opened project: {path}")

    def _apply_runtime_config(self):
        """Push pipeline tuning from the runtime config into the live objects"""
        config = get_config()
        self.cache.timeout = config.resource_load_timeout
        self.preview_widget.synchronizer.set_seek_tolerance(config.seek_tolerance)

    def _open_project(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open Project", "", PROJECT_FILTER)
        if path:
            self.open_project_file(path)

    def _save_project(self):
        if self.project_path:
            self._save_to_file(self.project_path)
        else:
            self._save_project_as()

    def _save_project_as(self):
        path, _ = QFileDialog.getSaveFileName(self, "Save Project", "", PROJECT_FILTER)
        if path:
            if not path.endswith('.ctp'):
                path += '.ctp'
            self._save_to_file(path)
            self.project_path = path
            self.setWindowTitle(f"Cliptrack - {Path(path).name}")

    def _save_to_file(self, path: str):
        self.project.settings = get_config().to_dict()
        try:
            self.project.save(path)
        except OSError as e:
            QMessageBox.critical(self, "Error", f"Could not save project:\n{e}")
            return
        self.statusBar().showMessage(f"Saved: {path}")

    # -- Mixer -------------------------------------------------------------

    def _populate_mixer(self):
        items = [i for i in self.project.timeline.items if not i.is_effect and i.media.has_audio]
        self.mixer_table.setRowCount(len(items))
        for row, item in enumerate(items):
            name = item.media.name or Path(item.media.path).name
            self.mixer_table.setItem(row, 0, QTableWidgetItem(name))
            self.mixer_table.setItem(row, 1, QTableWidgetItem(str(item.track)))

            spin = QSpinBox()
            spin.setRange(0, 200)
            spin.setSuffix(" %")
            spin.setValue(int(self.project.volumes.get(item.uuid)))
            spin.valueChanged.connect(
                lambda value, item_id=item.uuid: self._on_volume_changed(item_id, value)
            )
            self.mixer_table.setCellWidget(row, 2, spin)

    def _on_volume_changed(self, item_id: str, value: int):
        self.project.volumes.set(item_id, value)
        self.preview_widget.synchronizer.refresh()

    def _reset_volumes(self):
        self.project.volumes.reset()
        self._populate_mixer()
        self.preview_widget.synchronizer.refresh()

    # -- Export ------------------------------------------------------------

    def _export_video(self):
        if self._export_thread is not None:
            return
        if not self.project.timeline.items:
            QMessageBox.warning(self, "Export", "The timeline is empty.")
            return

        dialog = ExportSettingsDialog(self)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return
        self._apply_runtime_config()

        path, _ = QFileDialog.getSaveFileName(self, "Export Video", "output.mp4", "Video Files (*.mp4)")
        if not path:
            return

        # Only one driver runs at a time
        self.preview_widget.stop()

        self._export_thread = ExportThread(
            self.project.timeline.snapshot(),
            self.project.volumes,
            self.cache,
            dialog.export_settings(path),
        )
        self._progress_dialog = ProgressDialog(self)
        self._progress_dialog.cancelled.connect(self._export_thread.cancel)
        self._export_thread.progress.connect(self._progress_dialog.update_progress)
        self._export_thread.finished.connect(self._on_export_finished)

        self.btn_export.setEnabled(False)
        self._export_thread.start()
        self._progress_dialog.show()

    def _on_export_finished(self, result):
        if self._progress_dialog is not None:
            self._progress_dialog.mark_finished()
            self._progress_dialog.close()
            self._progress_dialog = None
        if self._export_thread is not None:
            self._export_thread.wait()
            self._export_thread = None
        self.btn_export.setEnabled(True)

        if result.state == ExportState.COMPLETED:
            self.statusBar().showMessage(
                f"Export finished: {result.frames_written} frames at {result.throughput:.1f} fps"
            )
            QMessageBox.information(self, "Export", f"Video saved:\n{result.output_path}")
        elif result.state == ExportState.CANCELLED:
            self.statusBar().showMessage("Export cancelled")
        else:
            self.statusBar().showMessage("Export failed")
            QMessageBox.critical(self, "Export", f"Export failed:\n{result.error}")

        self.preview_widget.synchronizer.refresh()

    def closeEvent(self, event):
        if self._export_thread is not None:
            self._export_thread.cancel()
            self._export_thread.wait()
        self.preview_widget.cleanup()
        self.cache.shutdown()
        super().closeEvent(event)
