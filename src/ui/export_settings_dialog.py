"""
Export Settings Dialog - quality preset, aspect ratio, frame rate and dynamics
"""
from PyQt6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QFormLayout, QGroupBox,
    QLabel, QComboBox, QCheckBox, QPushButton
)

from config import ASPECT_RATIOS, FRAME_RATES, QUALITY_PRESETS
from exporters.export_encoder import ExportSettings, resolve_resolution
from runtime_config import get_config


class ExportSettingsDialog(QDialog):
    """
    Dialog for configuring export settings before rendering.
    Values are loaded from and saved back to the RuntimeConfig.
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Export Settings")
        self.setModal(True)

        # Load settings from persistent runtime config
        config = get_config()
        self.settings = {
            'preset': config.export_quality,
            'aspect_ratio': config.export_aspect_ratio,
            'fps': config.export_fps,
            'dynamics': config.export_dynamics,
        }

        self._setup_ui()
        self._update_resolution_label()

    def _setup_ui(self):
        layout = QVBoxLayout(self)

        video_group = QGroupBox("Video")
        video_form = QFormLayout()
        video_form.setSpacing(10)
        video_form.setContentsMargins(10, 10, 10, 10)

        self.combo_preset = QComboBox()
        self.combo_preset.addItems(list(QUALITY_PRESETS))
        self.combo_preset.setCurrentText(self.settings['preset'])
        self.combo_preset.currentTextChanged.connect(self._on_setting_changed)
        video_form.addRow("Quality:", self.combo_preset)

        self.combo_aspect = QComboBox()
        self.combo_aspect.addItems(list(ASPECT_RATIOS))
        self.combo_aspect.setCurrentText(self.settings['aspect_ratio'])
        self.combo_aspect.currentTextChanged.connect(self._on_setting_changed)
        video_form.addRow("Aspect ratio:", self.combo_aspect)

        self.combo_fps = QComboBox()
        self.combo_fps.addItems([str(fps) for fps in FRAME_RATES])
        self.combo_fps.setCurrentText(str(self.settings['fps']))
        self.combo_fps.currentTextChanged.connect(self._on_setting_changed)
        video_form.addRow("Frame rate:", self.combo_fps)

        self.lbl_resolution = QLabel()
        self.lbl_resolution.setStyleSheet("color: gray;")
        video_form.addRow("Resolution:", self.lbl_resolution)

        video_group.setLayout(video_form)
        layout.addWidget(video_group)

        audio_group = QGroupBox("Audio")
        audio_layout = QVBoxLayout()
        self.chk_dynamics = QCheckBox("Compress dynamic range")
        self.chk_dynamics.setChecked(self.settings['dynamics'])
        self.chk_dynamics.toggled.connect(self._on_setting_changed)
        audio_layout.addWidget(self.chk_dynamics)
        audio_group.setLayout(audio_layout)
        layout.addWidget(audio_group)

        btn_layout = QHBoxLayout()
        self.btn_reset = QPushButton("Reset")
        self.btn_reset.clicked.connect(self._reset_to_defaults)
        btn_layout.addWidget(self.btn_reset)
        btn_layout.addStretch()

        self.btn_cancel = QPushButton("Cancel")
        self.btn_cancel.clicked.connect(self.reject)
        btn_layout.addWidget(self.btn_cancel)

        self.btn_export = QPushButton("Export")
        self.btn_export.setDefault(True)
        self.btn_export.clicked.connect(self.accept)
        btn_layout.addWidget(self.btn_export)
        layout.addLayout(btn_layout)

    def _on_setting_changed(self):
        self.settings['preset'] = self.combo_preset.currentText()
        self.settings['aspect_ratio'] = self.combo_aspect.currentText()
        self.settings['fps'] = int(self.combo_fps.currentText())
        self.settings['dynamics'] = self.chk_dynamics.isChecked()
        self._update_resolution_label()

    def _update_resolution_label(self):
        width, height = resolve_resolution(self.settings['aspect_ratio'], self.settings['preset'])
        self.lbl_resolution.setText(f"{width} x {height}")

    def _reset_to_defaults(self):
        config = get_config()
        config.reset_to_defaults()
        self.combo_preset.setCurrentText(config.export_quality)
        self.combo_aspect.setCurrentText(config.export_aspect_ratio)
        self.combo_fps.setCurrentText(str(config.export_fps))
        self.chk_dynamics.setChecked(config.export_dynamics)
        self._on_setting_changed()

    def accept(self):
        """Save settings to RuntimeConfig and accept dialog"""
        config = get_config()
        config.export_quality = self.settings['preset']
        config.export_aspect_ratio = self.settings['aspect_ratio']
        config.export_fps = self.settings['fps']
        config.export_dynamics = self.settings['dynamics']
        super().accept()

    def get_settings(self):
        return self.settings

    def export_settings(self, output_path: str) -> ExportSettings:
        return ExportSettings(
            output_path=output_path,
            preset=self.settings['preset'],
            aspect_ratio=self.settings['aspect_ratio'],
            fps=self.settings['fps'],
            dynamics=self.settings['dynamics'],
            seek_tolerance=get_config().seek_tolerance,
        )
