import logging
from typing import List, Optional

from PyQt6.QtCore import QThread, pyqtSignal

from .models import RunOutcome, RunStatus, TextBlock
from .offline_translator import OfflineTranslator
from .pipeline import ScreenTranslationPipeline
from .settings import SettingsSnapshot

logger = logging.getLogger(__name__)


class PipelineWorker(QThread):
    """Runs one pipeline pass (or a re-translation) off the UI thread"""

    run_finished = pyqtSignal(object)  # RunOutcome
    status_update = pyqtSignal(str)

    def __init__(self, pipeline: ScreenTranslationPipeline, snapshot: SettingsSnapshot,
                 generation: int, blocks: Optional[List[TextBlock]] = None):
        super().__init__()
        self.pipeline = pipeline
        self.snapshot = snapshot
        self.generation = generation
        self.blocks = blocks

    def run(self):
        try:
            if self.blocks is None:
                self.status_update.emit("Capturing screen...")
                outcome = self.pipeline.run(self.snapshot, self.generation)
            else:
                self.status_update.emit(f"Re-translating {len(self.blocks)} regions...")
                outcome = self.pipeline.retranslate(self.blocks, self.snapshot, self.generation)
        except Exception as e:
            logger.error(f"Translation worker error: {e}")
            outcome = RunOutcome(RunStatus.FAILED, self.generation, message=str(e))
        self.run_finished.emit(outcome)


class ModelWarmupWorker(QThread):
    """Preloads the on-device model so the first offline run does not stall"""

    warmup_finished = pyqtSignal(bool, str)

    def __init__(self, translator: OfflineTranslator):
        super().__init__()
        self.translator = translator

    def run(self):
        try:
            ok = self.translator.is_model_cached() and self.translator.ensure_loaded()
            err = "" if ok else (self.translator.last_error or "Model is not installed")
            self.warmup_finished.emit(ok, err)
        except Exception as e:
            logger.error(f"Model warmup error: {e}")
            self.warmup_finished.emit(False, str(e))
