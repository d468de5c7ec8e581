from PyQt6.QtCore import QThread, pyqtSignal
import logging

from exporters.export_encoder import ExportEncoder, ExportProgress, ExportResult, ExportState

logger = logging.getLogger(__name__)


class ExportThread(QThread):
    """Background thread running one ExportEncoder to a terminal state"""
    progress = pyqtSignal(object)  # ExportProgress
    finished = pyqtSignal(object)  # ExportResult

    def __init__(self, items, volumes, cache, settings, sink_factory=None):
        super().__init__()
        kwargs = {}
        if sink_factory is not None:
            kwargs['sink_factory'] = sink_factory
        self.encoder = ExportEncoder(
            items, volumes, cache, settings,
            progress_callback=self._on_progress,
            **kwargs,
        )

    def cancel(self):
        """Request cancellation of the export"""
        self.encoder.cancel()

    def run(self):
        try:
            result = self.encoder.run()
        except Exception as e:
            # run() reports failures as results; this is only a safety net
            logger.exception("Export thread crashed")
            result = ExportResult(state=ExportState.ERROR, error=str(e))
        self.finished.emit(result)

    def _on_progress(self, progress: ExportProgress):
        """Callback from encoder for progress updates"""
        self.progress.emit(progress)
